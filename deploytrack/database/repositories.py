from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, and_, or_
from sqlalchemy.exc import IntegrityError
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, List, Dict, Tuple, AsyncIterator, Any
import logging
import re
import uuid

from deploytrack.errors import ValidationError, NotFound, Forbidden, Conflict
from .models import Deployment, DeploymentStatus, AutoDeployRule, next_timestamp, utcnow

logger = logging.getLogger(__name__)

COMMIT_HASH_PATTERN = re.compile(r'^[0-9a-f]{40}$')

# Fields fixed at creation; update() refuses to touch them
IMMUTABLE_FIELDS = frozenset({
    "id", "user_id", "repository", "branch", "auto_deploy",
    "webhook_id", "retry_of_id", "created_at",
})


def normalize_commit_hash(commit_hash: Optional[str]) -> Optional[str]:
    """Lower-case a commit hash and check it is 40 hex characters; None passes through."""
    if commit_hash is None:
        return None
    commit_hash = commit_hash.strip().lower()
    if not COMMIT_HASH_PATTERN.match(commit_hash):
        raise ValidationError("commit_hash must be 40 hexadecimal characters")
    return commit_hash


def _require_text(name: str, value: Optional[str]) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{name} must not be empty")
    return value


@dataclass
class DeploymentFilter:
    """Equality filters for listing deployments; None means unfiltered."""
    user_id: Optional[int] = None
    status: Optional[DeploymentStatus] = None
    server_id: Optional[int] = None
    repository: Optional[str] = None
    branch: Optional[str] = None

    def clauses(self) -> list:
        clauses = []
        if self.user_id is not None:
            clauses.append(Deployment.user_id == self.user_id)
        if self.status is not None:
            clauses.append(Deployment.status == self.status)
        if self.server_id is not None:
            clauses.append(Deployment.server_id == self.server_id)
        if self.repository is not None:
            clauses.append(Deployment.repository == self.repository)
        if self.branch is not None:
            clauses.append(Deployment.branch == self.branch)
        return clauses


class DeploymentRepository:
    """Repository for deployments table operations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        user_id: int,
        repository: str,
        branch: str,
        server_id: Optional[int] = None,
        auto_deploy: bool = False,
        commit_hash: Optional[str] = None,
        webhook_id: Optional[str] = None,
        retry_of_id: Optional[uuid.UUID] = None
    ) -> Deployment:
        """Create a new deployment record with status PENDING"""
        now = utcnow()
        deployment = Deployment(
            user_id=user_id,
            server_id=server_id,
            repository=_require_text("repository", repository),
            branch=_require_text("branch", branch),
            status=DeploymentStatus.PENDING,
            commit_hash=normalize_commit_hash(commit_hash),
            auto_deploy=bool(auto_deploy),
            webhook_id=webhook_id,
            retry_of_id=retry_of_id,
            log="",
            created_at=now,
            updated_at=now
        )
        self.session.add(deployment)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise Conflict(f"Deployment could not be stored: {e.orig}") from e
        await self.session.refresh(deployment)
        return deployment

    async def find(self, deployment_id: uuid.UUID) -> Optional[Deployment]:
        result = await self.session.execute(
            select(Deployment)
            .where(Deployment.id == deployment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get(self, deployment_id: uuid.UUID) -> Deployment:
        """Get deployment by ID, always re-read from the database"""
        deployment = await self.find(deployment_id)
        if deployment is None:
            raise NotFound(f"Deployment {deployment_id} not found")
        return deployment

    async def get_by_webhook_id(self, webhook_id: str) -> Optional[Deployment]:
        result = await self.session.execute(
            select(Deployment)
            .where(Deployment.webhook_id == webhook_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update(
        self,
        deployment_id: uuid.UUID,
        values: Dict[str, Any],
        expected_updated_at: datetime
    ) -> Deployment:
        """
        Apply `values` only if the record still carries `expected_updated_at`.

        commit_hash is write-once: it may be set while empty or rewritten
        with the same value, never changed.

        Raises:
            ValidationError: values touch an immutable field or change a set commit_hash
            NotFound: the record does not exist
            Conflict: another writer changed the record since it was read
        """
        touched = IMMUTABLE_FIELDS.intersection(values)
        if touched:
            raise ValidationError(f"Immutable fields cannot be updated: {', '.join(sorted(touched))}")

        stmt = (
            update(Deployment)
            .where(Deployment.id == deployment_id)
            .where(Deployment.updated_at == expected_updated_at)
        )
        commit_hash = None
        if "commit_hash" in values:
            commit_hash = normalize_commit_hash(values["commit_hash"])
            if commit_hash is None:
                raise ValidationError("commit_hash cannot be cleared")
            values = dict(values, commit_hash=commit_hash)
            stmt = stmt.where(or_(Deployment.commit_hash.is_(None), Deployment.commit_hash == commit_hash))

        values = dict(values, updated_at=next_timestamp(expected_updated_at))
        result = await self.session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        await self.session.commit()

        if result.rowcount == 0:
            # Distinguish a missing record or a pinned commit from a lost compare-and-set
            current = await self.get(deployment_id)
            if commit_hash is not None and current.commit_hash not in (None, commit_hash):
                raise ValidationError(f"Deployment {deployment_id} is pinned to commit {current.commit_hash}")
            raise Conflict(f"Deployment {deployment_id} was modified concurrently")
        return await self.get(deployment_id)

    async def list(self, filter: Optional[DeploymentFilter] = None, page_size: int = 100) -> AsyncIterator[Deployment]:
        """
        Yield matching deployments newest first.

        Pages are fetched lazily with a (created_at, id) keyset, so the sequence
        stays finite and well-ordered even while records are being updated.
        Each call starts a fresh iteration.
        """
        clauses = (filter or DeploymentFilter()).clauses()
        last = None
        while True:
            stmt = (
                select(Deployment)
                .where(*clauses)
                .order_by(Deployment.created_at.desc(), Deployment.id.desc())
                .limit(page_size)
                .execution_options(populate_existing=True)
            )
            if last is not None:
                stmt = stmt.where(or_(
                    Deployment.created_at < last.created_at,
                    and_(Deployment.created_at == last.created_at, Deployment.id < last.id)
                ))
            result = await self.session.execute(stmt)
            rows = result.scalars().all()
            for row in rows:
                yield row
            if len(rows) < page_size:
                return
            last = rows[-1]

    async def page(
        self,
        filter: Optional[DeploymentFilter] = None,
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[Deployment], int]:
        """Get one page of deployments ordered by created_at DESC, plus the total count"""
        clauses = (filter or DeploymentFilter()).clauses()
        total = await self.session.scalar(
            select(func.count()).select_from(Deployment).where(*clauses)
        )
        result = await self.session.execute(
            select(Deployment)
            .where(*clauses)
            .order_by(Deployment.created_at.desc(), Deployment.id.desc())
            .limit(limit)
            .offset(offset)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all()), total or 0

    async def count_by_status(self, filter: Optional[DeploymentFilter] = None) -> Dict[DeploymentStatus, int]:
        clauses = (filter or DeploymentFilter()).clauses()
        result = await self.session.execute(
            select(Deployment.status, func.count())
            .where(*clauses)
            .group_by(Deployment.status)
        )
        counts = {status: 0 for status in DeploymentStatus}
        for status, count in result.all():
            counts[DeploymentStatus(status)] = count
        return counts


class AutoDeployRuleRepository:
    """Repository for auto_deploy_rules table operations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find(self, repository: str, branch: str) -> Optional[AutoDeployRule]:
        result = await self.session.execute(
            select(AutoDeployRule)
            .where(AutoDeployRule.repository == repository)
            .where(AutoDeployRule.branch == branch)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def enable(
        self,
        user_id: int,
        repository: str,
        branch: str,
        server_id: Optional[int] = None,
        is_admin: bool = False
    ) -> AutoDeployRule:
        """
        Create the rule for a repository/branch pair, or update its target server.

        Only the rule's owner or an admin may change an existing rule; an admin
        change hands the rule to `user_id`.

        Raises:
            ValidationError: repository or branch is empty
            Forbidden: the pair already belongs to another user
            Conflict: the same pair was created concurrently
        """
        repository = _require_text("repository", repository)
        branch = _require_text("branch", branch)

        rule = await self.find(repository, branch)
        if rule is None:
            rule = AutoDeployRule(
                user_id=user_id,
                server_id=server_id,
                repository=repository,
                branch=branch
            )
            self.session.add(rule)
        else:
            if rule.user_id != user_id:
                if not is_admin:
                    raise Forbidden(f"Auto-deploy for {repository}@{branch} belongs to another user")
                logger.info(
                    f"Auto-deploy rule for {repository}@{branch} moves from user {rule.user_id} to {user_id}",
                    extra={"repository": repository, "branch": branch}
                )
            rule.user_id = user_id
            rule.server_id = server_id
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise Conflict(f"Auto-deploy rule for {repository}@{branch} was created concurrently") from e
        await self.session.refresh(rule)
        return rule

    async def disable(self, user_id: int, repository: str, branch: str, is_admin: bool = False) -> None:
        rule = await self.find(repository, branch)
        if rule is None:
            raise NotFound(f"No auto-deploy rule for {repository}@{branch}")
        if rule.user_id != user_id and not is_admin:
            raise Forbidden("Auto-deploy rule does not belong to user")
        await self.session.execute(
            delete(AutoDeployRule).where(AutoDeployRule.id == rule.id)
        )
        await self.session.commit()

    async def get_user_rules(self, user_id: int) -> List[AutoDeployRule]:
        result = await self.session.execute(
            select(AutoDeployRule)
            .where(AutoDeployRule.user_id == user_id)
            .order_by(AutoDeployRule.created_at.desc())
        )
        return list(result.scalars().all())
