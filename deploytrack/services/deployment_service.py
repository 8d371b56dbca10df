"""
Deployment Service Layer

User-initiated deployment requests. Webhook-initiated ones go through
webhook_ingestor; executor progress goes through state_machine.
"""

import logging
from typing import Optional

from deploytrack.database.models import Deployment
from deploytrack.database.repositories import DeploymentRepository, AutoDeployRuleRepository

# Configure logging
logger = logging.getLogger(__name__)


async def request_deployment(
    deployments: DeploymentRepository,
    rules: AutoDeployRuleRepository,
    user_id: int,
    repository: str,
    branch: str,
    server_id: Optional[int] = None,
    auto_deploy: bool = False,
    is_admin: bool = False
) -> Deployment:
    """
    Create a pending deployment on behalf of a user.

    Flow:
    1. If auto_deploy is requested, enable the auto-deploy rule for the
       repository/branch pair so later pushes create deployments too
    2. Create the deployment record with status PENDING

    A refused rule leaves no deployment behind.

    Args:
        deployments: Deployment repository
        rules: Auto-deploy rule repository
        user_id: Owner of the deployment
        repository: Repository full name, e.g. "org/app"
        branch: Branch to deploy
        server_id: Target server, if any
        auto_deploy: Whether pushes to this branch should deploy automatically
        is_admin: Whether the caller may take over another user's rule

    Returns:
        The new Deployment

    Raises:
        ValidationError: repository or branch is empty
        Forbidden: the auto-deploy rule belongs to another user
        Conflict: the auto-deploy rule was created concurrently
    """
    if auto_deploy:
        await rules.enable(
            user_id=user_id,
            repository=repository,
            branch=branch,
            server_id=server_id,
            is_admin=is_admin
        )

    deployment = await deployments.create(
        user_id=user_id,
        repository=repository,
        branch=branch,
        server_id=server_id,
        auto_deploy=auto_deploy
    )
    logger.info(
        f"Deployment {deployment.id} requested for {deployment.repository}@{deployment.branch}",
        extra={
            "deployment_id": str(deployment.id),
            "user_id": user_id,
            "auto_deploy": auto_deploy
        }
    )
    return deployment
