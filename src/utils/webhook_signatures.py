"""
Webhook signature validation - verify incoming provider webhooks are authentic.

Supported providers:
- ElevenLabs: HMAC-SHA256 via ElevenLabs-Signature ("t=<ts>,v0=<hex>") over "<ts>.<body>"
- Daily: base64 HMAC-SHA256 via X-Webhook-Signature over "<X-Webhook-Timestamp>.<body>"
- SignWell: hex HMAC-SHA256 of the raw body via X-Signwell-Signature
"""
import base64
import binascii
import hashlib
import hmac
import logging
import time
from typing import Optional

logger = logging.getLogger(__name__)

# Reject ElevenLabs signatures older than this (replay protection)
SIGNATURE_TOLERANCE_SECONDS = 1800


def validate_hmac_sha256(
    secret: str,
    signature: str,
    body: bytes,
    header_prefix: str = "sha256=",
) -> bool:
    """
    Validate generic HMAC-SHA256 webhook signature.
    Handles signatures with optional prefix (e.g., "sha256=...").
    Returns True if valid, False if invalid.
    """
    if not secret or not signature:
        return False

    sig = signature
    if sig.startswith(header_prefix):
        sig = sig[len(header_prefix):]

    try:
        expected = hmac.new(
            secret.encode("utf-8"),
            body,
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, sig.lower())
    except Exception as e:
        logger.error("HMAC-SHA256 validation error: %s", str(e))
        return False


def validate_elevenlabs_signature(
    secret: str,
    header: str,
    body: bytes,
    now: Optional[float] = None,
) -> bool:
    """Validate an ElevenLabs-Signature header of the form "t=<unix>,v0=<hex>"."""
    if not secret or not header:
        return False

    parts = dict(
        item.split("=", 1) for item in header.split(",") if "=" in item
    )
    timestamp = parts.get("t", "")
    digest = parts.get("v0", "")
    if not timestamp or not digest:
        return False

    try:
        ts = int(timestamp)
    except ValueError:
        return False
    current = now if now is not None else time.time()
    if abs(current - ts) > SIGNATURE_TOLERANCE_SECONDS:
        logger.warning("ElevenLabs signature timestamp outside tolerance")
        return False

    signed = f"{timestamp}.".encode("utf-8") + body
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, digest.lower())


def validate_daily_signature(
    secret: str,
    signature: str,
    timestamp: str,
    body: bytes,
) -> bool:
    """Validate a Daily webhook: secret is base64, signature is base64 HMAC of "<ts>.<body>"."""
    if not secret or not signature or not timestamp:
        return False
    try:
        key = base64.b64decode(secret)
    except (binascii.Error, ValueError):
        logger.error("DAILY_WEBHOOK_SECRET is not valid base64")
        return False

    signed = f"{timestamp}.".encode("utf-8") + body
    expected = base64.b64encode(
        hmac.new(key, signed, hashlib.sha256).digest()
    ).decode("ascii")
    return hmac.compare_digest(expected, signature)


def compute_payload_hash(body: bytes) -> str:
    """Compute SHA-256 hash of raw payload for dedup and audit."""
    return hashlib.sha256(body).hexdigest()


async def validate_webhook_source(source: str, request, body: bytes) -> bool:
    """
    Validate webhook signature based on source type.
    Returns True if valid or if no secret is configured (soft enforcement
    outside production).
    """
    from src.config import get_settings
    settings = get_settings()
    strict_prod = settings.app_env == "production" and not settings.allow_unsigned_webhooks

    def _missing_secret(source_name: str, secret_name: str) -> bool:
        if strict_prod:
            logger.error(
                "Missing %s in production for source '%s' - rejecting webhook",
                secret_name,
                source_name,
            )
            return True
        logger.warning(
            "%s not set - accepting %s webhook without signature verification. "
            "Configure the secret for production (ALLOW_UNSIGNED_WEBHOOKS defaults to false).",
            secret_name,
            source_name,
        )
        return False

    if source == "elevenlabs":
        secret = settings.elevenlabs_webhook_secret
        if not secret:
            return not _missing_secret(source, "ELEVENLABS_WEBHOOK_SECRET")
        header = request.headers.get("ElevenLabs-Signature", "")
        return validate_elevenlabs_signature(secret, header, body)

    if source == "daily":
        secret = settings.daily_webhook_secret
        if not secret:
            return not _missing_secret(source, "DAILY_WEBHOOK_SECRET")
        return validate_daily_signature(
            secret,
            request.headers.get("X-Webhook-Signature", ""),
            request.headers.get("X-Webhook-Timestamp", ""),
            body,
        )

    if source == "signwell":
        secret = settings.signwell_webhook_secret
        if not secret:
            return not _missing_secret(source, "SIGNWELL_WEBHOOK_SECRET")
        sig = request.headers.get("X-Signwell-Signature", "")
        return validate_hmac_sha256(secret, sig, body)

    logger.error("Unknown webhook source '%s' - rejecting", source)
    return False
