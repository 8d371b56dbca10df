"""
Shared FastAPI dependencies: caller identity and per-request service wiring.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from deploytrack.config import Settings
from deploytrack.database.connection import get_db
from deploytrack.database.repositories import DeploymentRepository, AutoDeployRuleRepository
from deploytrack.services.queries import AuthContext, DeploymentQueries
from deploytrack.services.state_machine import DeploymentStateMachine


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


async def get_auth_context(
    x_user_id: Optional[int] = Header(None, alias="X-User-Id"),
    x_user_admin: bool = Header(False, alias="X-User-Admin")
) -> AuthContext:
    """
    Build the caller's AuthContext from headers set by the authenticating gateway.

    Raises:
        HTTPException: 401 when no user id was supplied
    """
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return AuthContext(user_id=x_user_id, is_admin=x_user_admin)


async def require_admin(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not ctx.is_admin:
        raise HTTPException(status_code=403, detail="Administrator privileges required")
    return ctx


def get_deployment_repository(db: AsyncSession = Depends(get_db)) -> DeploymentRepository:
    return DeploymentRepository(db)


def get_rule_repository(db: AsyncSession = Depends(get_db)) -> AutoDeployRuleRepository:
    return AutoDeployRuleRepository(db)


def get_state_machine(
    repo: DeploymentRepository = Depends(get_deployment_repository),
    settings: Settings = Depends(get_settings)
) -> DeploymentStateMachine:
    return DeploymentStateMachine(repo, log_append_attempts=settings.log_append_attempts)


def get_queries(
    repo: DeploymentRepository = Depends(get_deployment_repository),
    settings: Settings = Depends(get_settings)
) -> DeploymentQueries:
    return DeploymentQueries(repo, max_page_size=settings.max_page_size)
