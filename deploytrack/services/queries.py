"""
Read-only views over deployment records.

Every call takes the caller's AuthContext explicitly. Users may read only
their own deployments; admins may read everything.
"""

import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from deploytrack.database.models import Deployment, DeploymentStatus
from deploytrack.database.repositories import DeploymentRepository, DeploymentFilter
from deploytrack.errors import Forbidden, ValidationError


@dataclass(frozen=True)
class AuthContext:
    user_id: int
    is_admin: bool = False

    def can_read(self, owner_id: int) -> bool:
        return self.is_admin or self.user_id == owner_id


class DeploymentQueries:

    def __init__(self, repo: DeploymentRepository, max_page_size: int = 100):
        self.repo = repo
        self.max_page_size = max_page_size

    async def get(self, ctx: AuthContext, deployment_id: uuid.UUID) -> Deployment:
        deployment = await self.repo.get(deployment_id)
        if not ctx.can_read(deployment.user_id):
            raise Forbidden("Deployment does not belong to user")
        return deployment

    async def list_for_user(
        self,
        ctx: AuthContext,
        user_id: int,
        limit: int = 20,
        offset: int = 0,
        status: Optional[DeploymentStatus] = None
    ) -> Tuple[List[Deployment], int]:
        """One page of a user's deployments, newest first, with the total match count."""
        if not ctx.can_read(user_id):
            raise Forbidden("Cannot list deployments of another user")
        if limit < 1 or limit > self.max_page_size:
            raise ValidationError(f"limit must be between 1 and {self.max_page_size}")
        if offset < 0:
            raise ValidationError("offset must not be negative")
        return await self.repo.page(
            DeploymentFilter(user_id=user_id, status=status),
            limit=limit,
            offset=offset
        )

    async def counts_by_status(self, ctx: AuthContext, user_id: Optional[int] = None) -> Dict[DeploymentStatus, int]:
        """Per-status counts for one user, or across all users for admins passing no user_id."""
        if user_id is None and not ctx.is_admin:
            user_id = ctx.user_id
        if user_id is not None and not ctx.can_read(user_id):
            raise Forbidden("Cannot count deployments of another user")
        return await self.repo.count_by_status(DeploymentFilter(user_id=user_id))
