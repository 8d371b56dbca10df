import uuid
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from deploytrack.database.models import Deployment, DeploymentStatus, AutoDeployRule

# ============================================
# REQUEST MODELS
# ============================================

class CreateDeploymentRequest(BaseModel):
    repository: str = Field(..., description="Repository full name, e.g. org/app")
    branch: str = "main"
    server_id: Optional[int] = None
    auto_deploy: bool = False

class StartDeploymentRequest(BaseModel):
    commit_hash: Optional[str] = None

class AppendLogRequest(BaseModel):
    chunk: str

class CompleteDeploymentRequest(BaseModel):
    outcome: DeploymentStatus

class AutoDeployRuleRequest(BaseModel):
    repository: str
    branch: str = "main"
    server_id: Optional[int] = None

# ============================================
# RESPONSE MODELS
# ============================================

def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None

class DeploymentResponse(BaseModel):
    """Response model for a deployment record"""
    id: uuid.UUID
    user_id: int
    server_id: Optional[int]
    repository: str
    branch: str
    status: str
    commit_hash: Optional[str]
    auto_deploy: bool
    retry_of_id: Optional[uuid.UUID]
    log: str
    created_at: str
    updated_at: str
    completed_at: Optional[str]

    @classmethod
    def from_model(cls, deployment: Deployment) -> "DeploymentResponse":
        return cls(
            id=deployment.id,
            user_id=deployment.user_id,
            server_id=deployment.server_id,
            repository=deployment.repository,
            branch=deployment.branch,
            status=deployment.status.value,
            commit_hash=deployment.commit_hash,
            auto_deploy=deployment.auto_deploy,
            retry_of_id=deployment.retry_of_id,
            log=deployment.log or "",
            created_at=_iso(deployment.created_at),
            updated_at=_iso(deployment.updated_at),
            completed_at=_iso(deployment.completed_at)
        )

class DeploymentListResponse(BaseModel):
    deployments: List[DeploymentResponse]
    total: int
    limit: int
    offset: int

class StatusCountsResponse(BaseModel):
    counts: Dict[str, int]
    total: int

class AutoDeployRuleResponse(BaseModel):
    id: uuid.UUID
    user_id: int
    server_id: Optional[int]
    repository: str
    branch: str
    created_at: str

    @classmethod
    def from_model(cls, rule: AutoDeployRule) -> "AutoDeployRuleResponse":
        return cls(
            id=rule.id,
            user_id=rule.user_id,
            server_id=rule.server_id,
            repository=rule.repository,
            branch=rule.branch,
            created_at=_iso(rule.created_at)
        )

class WebhookResponse(BaseModel):
    received: bool = True
    message: str
    deployment_id: Optional[uuid.UUID] = None

class DetachServerResponse(BaseModel):
    server_id: int
    detached: int
