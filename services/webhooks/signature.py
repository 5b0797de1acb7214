"""HMAC-SHA256 signature validation for inbound chat webhooks.

The messaging provider signs the raw request body with a shared secret and
sends the hex digest, optionally prefixed with ``sha256=``.
"""

import hashlib
import hmac
import logging

from services.shared.config import Settings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-webhook-signature"
_PREFIX = "sha256="


def _as_bytes(body: bytes | str) -> bytes:
    return body.encode("utf-8") if isinstance(body, str) else body


def compute_signature(body: bytes | str, secret: str) -> str:
    """Hex HMAC-SHA256 of the raw body."""
    return hmac.new(secret.encode("utf-8"), _as_bytes(body), hashlib.sha256).hexdigest()


def validate_signature(body: bytes | str, signature: str, secret: str) -> bool:
    """Check a supplied signature against the raw body.

    Args:
        body: Raw request body exactly as received
        signature: Supplied hex digest, with or without ``sha256=`` prefix
        secret: Shared secret

    Returns:
        True if the digests match
    """
    supplied = signature.strip()
    if supplied.lower().startswith(_PREFIX):
        supplied = supplied[len(_PREFIX) :]

    try:
        supplied_digest = bytes.fromhex(supplied)
    except ValueError:
        return False
    expected_digest = bytes.fromhex(compute_signature(body, secret))

    if len(supplied_digest) != len(expected_digest):
        return False
    return hmac.compare_digest(expected_digest, supplied_digest)


class SignatureVerifier:
    """Applies the webhook signature policy from settings."""

    def __init__(self, settings: Settings) -> None:
        self.secret = settings.webhook_secret
        self.require_signature = settings.webhook_require_signature
        if not self.secret:
            logger.warning("Webhook secret not configured; signature validation is disabled")

    def verify(self, body: bytes | str, signature: str | None) -> bool:
        """Decide whether a webhook request is authentic enough to process.

        Args:
            body: Raw request body
            signature: Value of the signature header, if any

        Returns:
            False only when the request must be rejected
        """
        if not self.secret:
            logger.warning("Webhook accepted without signature validation (no secret configured)")
            return True

        if not signature:
            if self.require_signature:
                logger.error("Webhook rejected: signature required but missing")
                return False
            logger.warning("Webhook received without signature while a webhook secret is set")
            return True

        if not validate_signature(body, signature, self.secret):
            logger.error("Invalid webhook signature")
            return False
        return True
