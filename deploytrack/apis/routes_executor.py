"""
Executor API Endpoints

Called by the external build executor, which authenticates as an admin:
- POST /api/executor/deployments/{id}/running: Claim a pending deployment
- POST /api/executor/deployments/{id}/log: Append build output
- POST /api/executor/deployments/{id}/complete: Record the outcome
- POST /api/servers/{server_id}/detach: Forget a removed server
"""

import uuid

from fastapi import APIRouter, Depends

from deploytrack.apis.dependencies import require_admin, get_state_machine
from deploytrack.services.queries import AuthContext
from deploytrack.services.state_machine import DeploymentStateMachine
from deploytrack.utilities.schemas import (
    StartDeploymentRequest,
    AppendLogRequest,
    CompleteDeploymentRequest,
    DeploymentResponse,
    DetachServerResponse
)

router = APIRouter(prefix="/api", tags=["executor"])


@router.post("/executor/deployments/{deployment_id}/running")
async def start_deployment(
    deployment_id: uuid.UUID,
    request: StartDeploymentRequest,
    ctx: AuthContext = Depends(require_admin),
    machine: DeploymentStateMachine = Depends(get_state_machine)
) -> DeploymentResponse:
    """
    Claim a pending deployment.

    Raises:
        InvalidTransition (409): commit hash missing or record not pending
        Conflict (409): another executor claimed the record first
    """
    deployment = await machine.transition_to_running(deployment_id, request.commit_hash)
    return DeploymentResponse.from_model(deployment)


@router.post("/executor/deployments/{deployment_id}/log")
async def append_log(
    deployment_id: uuid.UUID,
    request: AppendLogRequest,
    ctx: AuthContext = Depends(require_admin),
    machine: DeploymentStateMachine = Depends(get_state_machine)
) -> DeploymentResponse:
    deployment = await machine.append_log(deployment_id, request.chunk)
    return DeploymentResponse.from_model(deployment)


@router.post("/executor/deployments/{deployment_id}/complete")
async def complete_deployment(
    deployment_id: uuid.UUID,
    request: CompleteDeploymentRequest,
    ctx: AuthContext = Depends(require_admin),
    machine: DeploymentStateMachine = Depends(get_state_machine)
) -> DeploymentResponse:
    deployment = await machine.transition_to_terminal(deployment_id, request.outcome)
    return DeploymentResponse.from_model(deployment)


@router.post("/servers/{server_id}/detach")
async def detach_server(
    server_id: int,
    ctx: AuthContext = Depends(require_admin),
    machine: DeploymentStateMachine = Depends(get_state_machine)
) -> DetachServerResponse:
    """Clear the server reference on deployments after the server was removed."""
    detached = await machine.detach_server(server_id)
    return DetachServerResponse(server_id=server_id, detached=detached)
