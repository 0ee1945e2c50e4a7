"""
Storefront Core Security Utilities

JWT handling for admin/customer callers and payment webhook signatures.
"""

import hashlib
import hmac
import time
from datetime import datetime, timedelta

from jose import JWTError, jwt

from core.config import get_settings
from core.exceptions import WebhookVerificationFailed


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token."""
    runtime_settings = get_settings()
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=24))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, runtime_settings.jwt_secret, algorithm=runtime_settings.jwt_algorithm)


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a locally issued access token."""
    runtime_settings = get_settings()
    try:
        return jwt.decode(
            token,
            runtime_settings.jwt_secret,
            algorithms=[runtime_settings.jwt_algorithm],
        )
    except JWTError:
        return None


# ─── Payment Webhook Signatures ─────────────────────────────────────────────
#
# Header format: "t=<unix seconds>,v1=<hex hmac-sha256 of '<t>.<body>'>"


def sign_webhook_payload(payload: bytes, secret: str, timestamp: int | None = None) -> str:
    """Build a signature header for a payload. Used by the mock provider and tests."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def _parse_signature_header(header: str) -> tuple[int, list[str]]:
    timestamp: int | None = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise WebhookVerificationFailed("Malformed signature timestamp")
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not signatures:
        raise WebhookVerificationFailed("Malformed signature header")
    return timestamp, signatures


def verify_webhook_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance_seconds: int = 300,
    now: float | None = None,
) -> None:
    """
    Verify a payment webhook signature.

    Raises WebhookVerificationFailed when the header is missing or malformed,
    the timestamp is outside the tolerance window, or no v1 signature matches.
    """
    if not header:
        raise WebhookVerificationFailed("Missing webhook signature header")

    timestamp, signatures = _parse_signature_header(header)
    current = time.time() if now is None else now
    if tolerance_seconds > 0 and abs(current - timestamp) > tolerance_seconds:
        raise WebhookVerificationFailed("Webhook timestamp outside tolerance window")

    signed = f"{timestamp}.".encode() + payload
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, candidate) for candidate in signatures):
        raise WebhookVerificationFailed("Webhook signature verification failed")
