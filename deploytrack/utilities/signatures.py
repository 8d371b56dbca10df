"""Webhook signature verification."""
import hmac
import hashlib
import logging
from typing import Optional

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def sign_payload(payload_body: bytes, secret_token: str) -> str:
    """Compute the X-Hub-Signature-256 header value for a payload."""
    digest = hmac.new(
        secret_token.encode('utf-8'),
        msg=payload_body,
        digestmod=hashlib.sha256
    ).hexdigest()
    return SIGNATURE_PREFIX + digest


def verify_webhook_signature(
    payload_body: bytes,
    secret_token: str,
    signature: Optional[str]
) -> bool:
    """Verify that the payload was sent by GitHub by validating its SHA256 HMAC.

    Args:
        payload_body: Raw request body as received
        secret_token: Webhook secret shared with GitHub (GITHUB_WEBHOOK_SECRET)
        signature: X-Hub-Signature-256 header value

    Returns:
        True if signature is valid, False otherwise. An empty secret disables
        verification and always returns True.
    """
    if not secret_token:
        logger.warning("Webhook secret not configured, skipping signature verification")
        return True

    if not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False

    return hmac.compare_digest(sign_payload(payload_body, secret_token), signature)
