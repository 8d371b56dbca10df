"""
Deployment API Endpoints

User-facing endpoints for deployment records:
- POST /api/deployments: Request a new deployment
- GET /api/deployments: List a user's deployments, newest first
- GET /api/deployments/stats: Counts per status
- GET /api/deployments/{id}: Get one deployment
- POST /api/deployments/{id}/cancel: Request cancellation
- POST /api/deployments/{id}/retry: Retry a finished deployment

Users see only their own records unless the gateway marks them as admin.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query

from deploytrack.apis.dependencies import (
    get_auth_context,
    get_deployment_repository,
    get_rule_repository,
    get_settings,
    get_state_machine,
    get_queries
)
from deploytrack.config import Settings
from deploytrack.database.models import DeploymentStatus
from deploytrack.database.repositories import DeploymentRepository, AutoDeployRuleRepository
from deploytrack.services.deployment_service import request_deployment
from deploytrack.services.queries import AuthContext, DeploymentQueries
from deploytrack.services.state_machine import DeploymentStateMachine
from deploytrack.utilities.schemas import (
    CreateDeploymentRequest,
    DeploymentResponse,
    DeploymentListResponse,
    StatusCountsResponse
)

router = APIRouter(prefix="/api/deployments", tags=["deployments"])


@router.post("", status_code=201)
async def create_deployment(
    request: CreateDeploymentRequest,
    ctx: AuthContext = Depends(get_auth_context),
    deployments: DeploymentRepository = Depends(get_deployment_repository),
    rules: AutoDeployRuleRepository = Depends(get_rule_repository)
) -> DeploymentResponse:
    """
    Request a deployment of repository@branch for the calling user.

    Raises:
        ValidationError (400): repository or branch is empty
        Forbidden (403): auto_deploy requested for a pair owned by another user
    """
    deployment = await request_deployment(
        deployments,
        rules,
        user_id=ctx.user_id,
        repository=request.repository,
        branch=request.branch,
        server_id=request.server_id,
        auto_deploy=request.auto_deploy,
        is_admin=ctx.is_admin
    )
    return DeploymentResponse.from_model(deployment)


@router.get("")
async def list_deployments(
    user_id: Optional[int] = None,
    status: Optional[DeploymentStatus] = None,
    limit: Optional[int] = Query(None),
    offset: int = 0,
    ctx: AuthContext = Depends(get_auth_context),
    queries: DeploymentQueries = Depends(get_queries),
    settings: Settings = Depends(get_settings)
) -> DeploymentListResponse:
    """List deployments of `user_id` (default: the caller), newest first."""
    user_id = ctx.user_id if user_id is None else user_id
    limit = settings.default_page_size if limit is None else limit
    items, total = await queries.list_for_user(ctx, user_id, limit=limit, offset=offset, status=status)
    return DeploymentListResponse(
        deployments=[DeploymentResponse.from_model(d) for d in items],
        total=total,
        limit=limit,
        offset=offset
    )


@router.get("/stats")
async def deployment_stats(
    user_id: Optional[int] = None,
    ctx: AuthContext = Depends(get_auth_context),
    queries: DeploymentQueries = Depends(get_queries)
) -> StatusCountsResponse:
    counts = await queries.counts_by_status(ctx, user_id=user_id)
    return StatusCountsResponse(
        counts={status.value: count for status, count in counts.items()},
        total=sum(counts.values())
    )


@router.get("/{deployment_id}")
async def get_deployment(
    deployment_id: uuid.UUID,
    ctx: AuthContext = Depends(get_auth_context),
    queries: DeploymentQueries = Depends(get_queries)
) -> DeploymentResponse:
    """
    Get deployment status and details.

    Raises:
        NotFound (404): Deployment not found
        Forbidden (403): Deployment does not belong to user
    """
    deployment = await queries.get(ctx, deployment_id)
    return DeploymentResponse.from_model(deployment)


@router.post("/{deployment_id}/cancel")
async def cancel_deployment(
    deployment_id: uuid.UUID,
    ctx: AuthContext = Depends(get_auth_context),
    queries: DeploymentQueries = Depends(get_queries),
    machine: DeploymentStateMachine = Depends(get_state_machine)
) -> DeploymentResponse:
    """
    Request cancellation of a pending or running deployment.

    A running build is stopped by its executor once it observes the
    cancelled status.
    """
    await queries.get(ctx, deployment_id)
    deployment = await machine.cancel(deployment_id)
    return DeploymentResponse.from_model(deployment)


@router.post("/{deployment_id}/retry", status_code=201)
async def retry_deployment(
    deployment_id: uuid.UUID,
    ctx: AuthContext = Depends(get_auth_context),
    queries: DeploymentQueries = Depends(get_queries),
    machine: DeploymentStateMachine = Depends(get_state_machine)
) -> DeploymentResponse:
    """Create a new pending deployment that retries a finished one."""
    await queries.get(ctx, deployment_id)
    deployment = await machine.retry(deployment_id)
    return DeploymentResponse.from_model(deployment)
