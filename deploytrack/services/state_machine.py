"""
Deployment State Machine

Enforces the deployment status lifecycle:

    pending -> running -> succeeded | failed | cancelled
    pending -> cancelled

Every transition is a compare-and-set on the record's updated_at, so the
transition into RUNNING doubles as the lock that makes one executor the owner
of a record. Log appends go through their own retried write path and never
hold up status changes.
"""

import logging
import uuid
from typing import Dict, FrozenSet, Optional

from deploytrack.database.models import Deployment, DeploymentStatus, TERMINAL_STATUSES, next_timestamp
from deploytrack.database.repositories import DeploymentRepository, DeploymentFilter, normalize_commit_hash
from deploytrack.errors import Conflict, InvalidTransition, ValidationError
from deploytrack.utilities.text_utils import clean_log_chunk

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[DeploymentStatus, FrozenSet[DeploymentStatus]] = {
    DeploymentStatus.PENDING: frozenset({DeploymentStatus.RUNNING, DeploymentStatus.CANCELLED}),
    DeploymentStatus.RUNNING: frozenset({
        DeploymentStatus.SUCCEEDED,
        DeploymentStatus.FAILED,
        DeploymentStatus.CANCELLED,
    }),
    DeploymentStatus.SUCCEEDED: frozenset(),
    DeploymentStatus.FAILED: frozenset(),
    DeploymentStatus.CANCELLED: frozenset(),
}


def check_transition(current: DeploymentStatus, target: DeploymentStatus) -> None:
    """Raise InvalidTransition unless current -> target is an allowed edge."""
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(f"Cannot move deployment from {current.value} to {target.value}")


class DeploymentStateMachine:
    """
    Applies status transitions to deployment records held in a DeploymentRepository.

    Returned records are live objects of the repository's session: a later
    transition on the same id refreshes them in place. Copy any field that
    must be compared across transitions before making the next call.
    """

    def __init__(self, repo: DeploymentRepository, log_append_attempts: int = 5):
        self.repo = repo
        self.log_append_attempts = log_append_attempts

    async def transition_to_running(self, deployment_id: uuid.UUID, commit_hash: Optional[str]) -> Deployment:
        """
        Claim a pending deployment for execution.

        The commit hash is written in the same update as the status change.
        Two executors racing for the same record get exactly one winner; the
        other sees Conflict, whether it lost the compare-and-set or read the
        record after the winner committed.
        """
        if not commit_hash:
            raise InvalidTransition("A commit hash is required to start a deployment")
        try:
            commit_hash = normalize_commit_hash(commit_hash)
        except ValidationError as e:
            raise InvalidTransition(e.message) from e

        deployment = await self.repo.get(deployment_id)
        if deployment.status == DeploymentStatus.RUNNING:
            raise Conflict(f"Deployment {deployment_id} is already running")
        check_transition(deployment.status, DeploymentStatus.RUNNING)
        if deployment.commit_hash and deployment.commit_hash != commit_hash:
            raise InvalidTransition(
                f"Deployment {deployment_id} is pinned to commit {deployment.commit_hash}"
            )

        deployment = await self.repo.update(
            deployment_id,
            {"status": DeploymentStatus.RUNNING, "commit_hash": commit_hash},
            expected_updated_at=deployment.updated_at
        )
        logger.info(
            f"Deployment {deployment_id} running at {commit_hash}",
            extra={"deployment_id": str(deployment_id), "commit_hash": commit_hash}
        )
        return deployment

    async def transition_to_terminal(self, deployment_id: uuid.UUID, outcome: DeploymentStatus) -> Deployment:
        """Finish a deployment; a lost compare-and-set is re-read and retried once."""
        if outcome not in TERMINAL_STATUSES:
            raise InvalidTransition(f"{outcome.value} is not a terminal status")
        try:
            return await self._finish(deployment_id, outcome)
        except Conflict:
            logger.info(
                f"Deployment {deployment_id} changed while finishing, retrying once",
                extra={"deployment_id": str(deployment_id)}
            )
            return await self._finish(deployment_id, outcome)

    async def cancel(self, deployment_id: uuid.UUID) -> Deployment:
        """
        Request cancellation.

        A running executor must notice the cancelled status and stop on its own;
        nothing here interrupts work in progress.
        """
        return await self.transition_to_terminal(deployment_id, DeploymentStatus.CANCELLED)

    async def _finish(self, deployment_id: uuid.UUID, outcome: DeploymentStatus) -> Deployment:
        deployment = await self.repo.get(deployment_id)
        check_transition(deployment.status, outcome)
        deployment = await self.repo.update(
            deployment_id,
            {"status": outcome, "completed_at": next_timestamp(deployment.updated_at)},
            expected_updated_at=deployment.updated_at
        )
        log = logger.warning if outcome == DeploymentStatus.FAILED else logger.info
        log(
            f"Deployment {deployment_id} {outcome.value}",
            extra={"deployment_id": str(deployment_id), "status": outcome.value}
        )
        return deployment

    async def append_log(self, deployment_id: uuid.UUID, chunk: str) -> Deployment:
        """
        Append executor output to a running deployment's log.

        Retried on Conflict up to log_append_attempts times, independently of
        status transitions.
        """
        text = clean_log_chunk(chunk)
        for attempt in range(1, self.log_append_attempts + 1):
            deployment = await self.repo.get(deployment_id)
            if deployment.status != DeploymentStatus.RUNNING:
                raise InvalidTransition(
                    f"Cannot append to the log of a deployment in status {deployment.status.value}"
                )
            if not text:
                return deployment
            try:
                return await self.repo.update(
                    deployment_id,
                    {"log": (deployment.log or "") + text},
                    expected_updated_at=deployment.updated_at
                )
            except Conflict:
                logger.debug(
                    f"Log append for {deployment_id} lost a race (attempt {attempt})",
                    extra={"deployment_id": str(deployment_id), "attempt": attempt}
                )
        raise Conflict(
            f"Log append for deployment {deployment_id} failed after {self.log_append_attempts} attempts"
        )

    async def retry(self, deployment_id: uuid.UUID) -> Deployment:
        """Start over from a finished deployment with a new pending record pointing back at it."""
        previous = await self.repo.get(deployment_id)
        if previous.status not in TERMINAL_STATUSES:
            raise InvalidTransition(
                f"Only finished deployments can be retried, {deployment_id} is {previous.status.value}"
            )
        deployment = await self.repo.create(
            user_id=previous.user_id,
            repository=previous.repository,
            branch=previous.branch,
            server_id=previous.server_id,
            auto_deploy=previous.auto_deploy,
            retry_of_id=previous.id
        )
        logger.info(
            f"Deployment {deployment.id} retries {previous.id}",
            extra={"deployment_id": str(deployment.id), "retry_of_id": str(previous.id)}
        )
        return deployment

    async def detach_server(self, server_id: int) -> int:
        """Clear the server reference on every deployment that points at a removed server."""
        detached = 0
        async for deployment in self.repo.list(DeploymentFilter(server_id=server_id)):
            try:
                await self.repo.update(
                    deployment.id,
                    {"server_id": None},
                    expected_updated_at=deployment.updated_at
                )
            except Conflict:
                current = await self.repo.get(deployment.id)
                if current.server_id != server_id:
                    continue
                await self.repo.update(
                    deployment.id,
                    {"server_id": None},
                    expected_updated_at=current.updated_at
                )
            detached += 1
        logger.info(
            f"Detached {detached} deployments from server {server_id}",
            extra={"server_id": server_id, "count": detached}
        )
        return detached
