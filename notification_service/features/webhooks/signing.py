"""HMAC signing and backoff of outbound webhooks."""

from __future__ import annotations

import base64
import hashlib
import hmac
from datetime import timedelta

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_TYPE_HEADER = "X-Webhook-Event-Type"
NOTIFICATION_ID_HEADER = "X-Webhook-Notification-Id"
RETRY_ATTEMPT_HEADER = "X-Webhook-Retry-Attempt"


def sign_payload(secret: str, payload: str) -> str:
    """Base64-encoded HMAC-SHA256 of ``payload`` keyed with ``secret``."""
    digest = hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(secret: str, payload: str, provided_signature: str | None) -> bool:
    """Recompute the signature of ``payload`` and compare in constant time."""
    if not provided_signature:
        return False
    expected = sign_payload(secret, payload)
    return hmac.compare_digest(expected.encode("ascii"), provided_signature.strip().encode("ascii", "replace"))


def webhook_retry_delay(retry_count: int) -> timedelta:
    """Delay before the next webhook attempt: ``2 ** retry_count`` minutes.

    Example:
        >>> [webhook_retry_delay(n).total_seconds() / 60 for n in range(1, 6)]
        [2.0, 4.0, 8.0, 16.0, 32.0]
    """
    if retry_count < 0:
        raise ValueError("retry_count must be >= 0")
    return timedelta(minutes=2**retry_count)
