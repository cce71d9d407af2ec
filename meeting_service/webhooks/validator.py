"""Webhook signature verification.

The platform signs ``v0:{timestamp}:{raw body}`` with HMAC-SHA256 using
the app's secret token and sends ``v0=<hex digest>`` in
``x-zm-signature`` together with ``x-zm-request-timestamp``.
"""

import hashlib
import hmac
import logging
import time

from meeting_service.core.errors import UnauthorizedError

logger = logging.getLogger(__name__)


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign(body: bytes, timestamp: str, secret: str) -> str:
    """Signature header value for a body and timestamp."""
    return "v0=" + _hmac_hex(secret, f"v0:{timestamp}:".encode("utf-8") + body)


def verify_signature(
    body: bytes,
    signature: str | None,
    timestamp: str | None,
    secret: str,
    replay_window_seconds: int,
    now: float | None = None,
) -> None:
    """Reject requests that are unsigned, forged or outside the replay window.

    Raises:
        UnauthorizedError: On any verification failure.
    """
    if not secret:
        logger.error("Webhook secret token is not configured")
        raise UnauthorizedError("Webhook verification is not configured")
    if not signature or not timestamp:
        raise UnauthorizedError("Missing webhook signature")

    try:
        sent_at = int(timestamp)
    except ValueError:
        raise UnauthorizedError("Malformed webhook timestamp") from None
    # Timestamps are seconds; tolerate senders using milliseconds
    if sent_at > 10**11:
        sent_at //= 1000
    current = time.time() if now is None else now
    if abs(current - sent_at) > replay_window_seconds:
        logger.warning(f"Webhook timestamp {timestamp} outside replay window")
        raise UnauthorizedError("Webhook timestamp outside the allowed window")

    expected = sign(body, timestamp, secret)
    if not hmac.compare_digest(expected, signature):
        logger.warning("Webhook signature mismatch")
        raise UnauthorizedError("Invalid webhook signature")


def url_validation_response(plain_token: str, secret: str) -> dict:
    """Answer to the endpoint URL validation handshake."""
    return {
        "plainToken": plain_token,
        "encryptedToken": _hmac_hex(secret, plain_token.encode("utf-8")),
    }
