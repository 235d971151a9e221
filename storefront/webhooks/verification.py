"""Webhook signature verification, constant-time HMAC.

Security contract:
- Lemon Squeezy sends X-Signature: hex HMAC-SHA256 of the raw body
- Comparison uses hmac.compare_digest() (no timing leaks)
- Failure -> AuthenticationError before any payload parsing
- Missing secret -> reject (fail-closed), unless Settings.allow_unsigned_webhooks
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping

from storefront.config import Settings
from storefront.errors import AuthenticationError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-signature"


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 digest of body under secret."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """True if signature is the HMAC-SHA256 hex digest of body.

    Args:
        body: Raw request body bytes
        signature: Value of the X-Signature header
        secret: Shared webhook signing secret
    """
    if not secret or not signature:
        return False
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected, signature.strip())


def check_webhook_signature(
    settings: Settings, body: bytes, headers: Mapping[str, str]
) -> None:
    """Raise AuthenticationError unless the delivery is acceptable.

    Args:
        settings: Application settings (secret and bypass flag)
        body: Raw request body
        headers: Request headers, lowercase keys
    """
    if not settings.verifies_webhooks:
        logger.warning("Skipping webhook signature verification (unsigned mode)")
        return
    if not settings.webhook_secret:
        logger.warning("LEMONSQUEEZY_WEBHOOK_SECRET not set, rejecting webhook")
        raise AuthenticationError("Invalid signature")

    signature = headers.get(SIGNATURE_HEADER)
    if not verify_signature(body, signature, settings.webhook_secret):
        raise AuthenticationError("Invalid signature")
