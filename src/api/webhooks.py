"""
Webhook endpoints - receive provider events (ElevenLabs, SignWell, Daily).

Every accepted request is stored in webhook_events and committed BEFORE any
processing, so nothing is lost if processing fails. One synchronous attempt
follows; its failures are recorded on the row and picked up by the retry
worker. Providers get a 2xx for anything recognized to avoid provider-side
redelivery.

Security layers (in order):
1. Signature validation (per-source)
2. Audit trail (webhook_events table)
3. Payload processing
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Request, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import get_db
from src.exceptions import PayloadParseError
from src.models.webhook_event import ProcessingStatus, WebhookSource
from src.schemas.api_responses import WebhookAck
from src.schemas.webhook_payloads import guess_event_type, parse_provider_payload
from src.services.event_store import record_event
from src.services.processing import attempt_processing
from src.utils.alerting import AlertType, send_alert
from src.utils.webhook_signatures import validate_webhook_source, compute_payload_hash

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhook", tags=["webhooks"])

# Providers whose contract expects a 5xx when the receiver itself breaks
FAIL_LOUD_SOURCES = (WebhookSource.SIGNWELL, WebhookSource.DAILY)


async def _validate_signature(source: str, request: Request, body: bytes) -> None:
    """Validate webhook signature and raise 401 if invalid."""
    is_valid = await validate_webhook_source(source, request, body)
    if not is_valid:
        client_ip = request.client.host if request.client else "unknown"
        logger.warning(
            "Invalid webhook signature: source=%s ip=%s",
            source, client_ip,
            extra={"source": source},
        )
        await send_alert(
            AlertType.WEBHOOK_SIGNATURE_INVALID,
            f"Rejected {source} webhook with invalid signature from {client_ip}",
            severity="warning",
        )
        raise HTTPException(status_code=401, detail="Invalid webhook signature")


def _decode_json(body: bytes):
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")


async def _receive(source: str, request: Request, db: AsyncSession):
    body = await request.body()
    await _validate_signature(source, request, body)
    raw = _decode_json(body)

    parse_failed = False
    correlation_key: Optional[str] = None
    try:
        normalized = parse_provider_payload(source, raw)
        event_type = normalized.event_type
        correlation_key = normalized.correlation_key
    except PayloadParseError as e:
        # Stored anyway; the processing attempt records the parse failure
        logger.warning("Unparseable %s payload: %s", source, str(e), extra={"source": source})
        event_type = guess_event_type(raw)
        parse_failed = True

    event_id: Optional[str] = None
    try:
        event = await record_event(
            db,
            source=source,
            event_type=event_type[:80],
            raw_payload=raw,
            payload_hash=compute_payload_hash(body),
            correlation_key=correlation_key[:128] if correlation_key else None,
        )
        await db.commit()
        event_id = str(event.id)

        if not correlation_key and not parse_failed:
            logger.warning(
                "%s %s event %s has no correlation key - stored without processing",
                source, event_type, event_id[:8],
                extra={"event_id": event_id, "source": source, "event_type": event_type},
            )
            return WebhookAck(event_id=event_id, status=ProcessingStatus.PENDING)

        outcome = await attempt_processing(db, event)
        return WebhookAck(event_id=str(outcome.event_id), status=outcome.status)

    except Exception as e:
        logger.error(
            "%s webhook receiver error: %s", source, str(e),
            exc_info=True, extra={"source": source},
        )
        await db.rollback()
        if event_id is None or source in FAIL_LOUD_SOURCES:
            return JSONResponse(status_code=500, content={"error": "Internal processing error"})
        return WebhookAck(event_id=event_id, status=ProcessingStatus.PENDING)


@router.post("/elevenlabs", response_model=WebhookAck)
async def elevenlabs_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """ElevenLabs post-call webhook - upserts the call log for the conversation."""
    return await _receive(WebhookSource.ELEVENLABS, request, db)


@router.post("/signwell", response_model=WebhookAck)
async def signwell_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """SignWell document webhook - drives the sequential signing state machine."""
    return await _receive(WebhookSource.SIGNWELL, request, db)


@router.post("/daily", response_model=WebhookAck)
async def daily_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Daily video webhook - meeting lifecycle and recordings."""
    return await _receive(WebhookSource.DAILY, request, db)
