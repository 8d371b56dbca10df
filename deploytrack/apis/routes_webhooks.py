"""GitHub webhook endpoint that turns push events into auto-deployments."""
import json
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from deploytrack.apis.dependencies import get_deployment_repository, get_rule_repository, get_settings
from deploytrack.config import Settings
from deploytrack.database.repositories import DeploymentRepository, AutoDeployRuleRepository
from deploytrack.services.webhook_ingestor import PushEventParser, WebhookIngestor
from deploytrack.utilities.schemas import WebhookResponse
from deploytrack.utilities.signatures import verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/github")
async def github_webhook(
    request: Request,
    x_github_event: str = Header(None, alias="X-GitHub-Event"),
    x_github_delivery: str = Header(None, alias="X-GitHub-Delivery"),
    x_hub_signature_256: str = Header(None, alias="X-Hub-Signature-256"),
    settings: Settings = Depends(get_settings),
    deployments: DeploymentRepository = Depends(get_deployment_repository),
    rules: AutoDeployRuleRepository = Depends(get_rule_repository)
) -> WebhookResponse:
    """Receive a GitHub event; pushes to auto-deploy branches queue a deployment."""
    body_bytes = await request.body()

    if not verify_webhook_signature(body_bytes, settings.github_webhook_secret, x_hub_signature_256):
        logger.warning("Webhook signature verification failed", extra={"webhook_id": x_github_delivery})
        raise HTTPException(status_code=401, detail="Invalid signature")

    try:
        payload = json.loads(body_bytes)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload"
        )

    logger.info(f"Received GitHub event: {x_github_event}", extra={"webhook_id": x_github_delivery})

    if x_github_event != "push":
        return WebhookResponse(message=f"Event type {x_github_event} ignored")

    event = PushEventParser.parse(x_github_delivery, payload)
    if event is None:
        return WebhookResponse(message="Push does not target a branch")

    deployment = await WebhookIngestor(deployments, rules).ingest_event(event)
    if deployment is None:
        return WebhookResponse(message=f"No auto-deploy configured for {event.repository}@{event.branch}")

    return WebhookResponse(message="Deployment queued", deployment_id=deployment.id)
