"""
Webhook Event Ingestion

Turns push notifications into pending deployments for repository/branch pairs
that have auto-deploy enabled. Ingestion is idempotent per webhook delivery
id: a redelivered event returns the record it produced the first time.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from deploytrack.database.models import Deployment
from deploytrack.database.repositories import DeploymentRepository, AutoDeployRuleRepository
from deploytrack.errors import Conflict, ValidationError

logger = logging.getLogger(__name__)

BRANCH_REF_PREFIX = "refs/heads/"
NULL_COMMIT = "0" * 40


@dataclass(frozen=True)
class PushEvent:
    webhook_id: str
    repository: str
    branch: str
    commit_hash: str


class PushEventParser:
    """Parser for GitHub push webhook payloads."""

    @staticmethod
    def parse(webhook_id: Optional[str], payload: Dict[str, Any]) -> Optional[PushEvent]:
        """Extract a PushEvent, or None for pushes that cannot trigger a deployment."""
        if not webhook_id:
            raise ValidationError("Webhook delivery id is required")

        ref = payload.get("ref") or ""
        if not isinstance(ref, str):
            raise ValidationError("Push payload ref must be a string")
        if not ref.startswith(BRANCH_REF_PREFIX):
            logger.debug(f"Ignoring push to non-branch ref: {ref}")
            return None

        if payload.get("deleted") or payload.get("after") == NULL_COMMIT:
            logger.debug(f"Ignoring branch deletion for {ref}")
            return None

        repository_info = payload.get("repository") or {}
        if not isinstance(repository_info, dict):
            raise ValidationError("Push payload repository must be an object")
        repository = repository_info.get("full_name")
        commit_hash = payload.get("after")
        if not repository or not commit_hash:
            logger.warning("Push payload missing repository or commit", extra={"webhook_id": webhook_id})
            raise ValidationError("Push payload must include repository.full_name and after")
        if not isinstance(repository, str) or not isinstance(commit_hash, str):
            raise ValidationError("Push payload repository.full_name and after must be strings")

        return PushEvent(
            webhook_id=webhook_id,
            repository=repository,
            branch=ref[len(BRANCH_REF_PREFIX):],
            commit_hash=commit_hash
        )


class WebhookIngestor:
    """Maps push events onto new pending deployments."""

    def __init__(self, deployments: DeploymentRepository, rules: AutoDeployRuleRepository):
        self.deployments = deployments
        self.rules = rules

    async def ingest(
        self,
        webhook_id: str,
        repository: str,
        branch: str,
        commit_hash: str
    ) -> Optional[Deployment]:
        """
        Record a push notification.

        Returns:
            The deployment created for this delivery, the one created by an
            earlier delivery of the same webhook_id, or None when the pair has
            no auto-deploy rule.
        """
        if not webhook_id:
            raise ValidationError("webhook_id must not be empty")

        existing = await self.deployments.get_by_webhook_id(webhook_id)
        if existing is not None:
            logger.info(
                f"Webhook {webhook_id} already ingested as deployment {existing.id}",
                extra={"webhook_id": webhook_id, "deployment_id": str(existing.id)}
            )
            return existing

        rule = await self.rules.find(repository, branch)
        if rule is None:
            logger.info(
                f"No auto-deploy configured for {repository}@{branch}",
                extra={"webhook_id": webhook_id, "repository": repository, "branch": branch}
            )
            return None

        try:
            deployment = await self.deployments.create(
                user_id=rule.user_id,
                repository=repository,
                branch=branch,
                server_id=rule.server_id,
                auto_deploy=True,
                commit_hash=commit_hash,
                webhook_id=webhook_id
            )
        except Conflict:
            # A concurrent delivery of the same webhook won the unique constraint
            winner = await self.deployments.get_by_webhook_id(webhook_id)
            if winner is None:
                raise
            logger.info(
                f"Webhook {webhook_id} ingested concurrently as deployment {winner.id}",
                extra={"webhook_id": webhook_id, "deployment_id": str(winner.id)}
            )
            return winner

        logger.info(
            f"Auto-deploy of {repository}@{branch} queued as deployment {deployment.id}",
            extra={
                "webhook_id": webhook_id,
                "deployment_id": str(deployment.id),
                "commit_hash": deployment.commit_hash
            }
        )
        return deployment

    async def ingest_event(self, event: PushEvent) -> Optional[Deployment]:
        return await self.ingest(event.webhook_id, event.repository, event.branch, event.commit_hash)
