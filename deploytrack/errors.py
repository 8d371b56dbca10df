"""
Deployment Tracker Errors

Every error is scoped to a single operation; none of them is fatal to the process.
"""


class DeploymentError(Exception):
    """Base exception for deployment tracker errors"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(DeploymentError):
    """Bad input. Not retried, surfaced to the caller."""
    status_code = 400


class NotFound(DeploymentError):
    status_code = 404


class Forbidden(DeploymentError):
    status_code = 403


class Conflict(DeploymentError):
    """The record changed since it was read. Re-read and retry at most once."""
    status_code = 409


class InvalidTransition(DeploymentError):
    """The requested status edge is not allowed from the record's current status."""
    status_code = 409
