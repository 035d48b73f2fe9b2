"""
Per-provider event processors.

Each processor takes a parsed NormalizedEvent, applies its business writes to
the session (no commit), and returns a ProcessingResult. Processors must be
safe to run twice for the same event: writes are upserts keyed by the
provider's correlation id.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import PayloadParseError, ResourceNotFoundError
from src.models.call_log import CallLog
from src.models.doc_instance import DocInstance
from src.models.meeting_session import MeetingSession
from src.models.webhook_event import WebhookEvent
from src.schemas.webhook_payloads import (
    DailyEventPayload,
    ElevenLabsConversation,
    ElevenLabsPostCallPayload,
    NormalizedEvent,
    SignWellEventPayload,
    from_unix,
)
from src.services import signing
from src.utils.backoff import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ProcessingResult:
    linked_resource_id: Optional[str] = None
    action: str = "processed"
    changed: bool = True


# --- ElevenLabs ---

async def upsert_call_log(
    db: AsyncSession,
    conversation_id: str,
    conv: ElevenLabsConversation,
    webhook_event_id: Optional[uuid.UUID] = None,
) -> tuple[CallLog, bool]:
    """
    Create or update the call log for a conversation. Shared by the post-call
    webhook and the conversation backfill. Flushes, does not commit.

    Returns (call_log, created).
    """
    result = await db.execute(
        select(CallLog).where(CallLog.elevenlabs_conversation_id == conversation_id)
    )
    call_log = result.scalar_one_or_none()
    created = call_log is None
    if created:
        call_log = CallLog(elevenlabs_conversation_id=conversation_id)
        db.add(call_log)

    call_log.elevenlabs_agent_id = conv.agent_id
    call_log.caller_phone = conv.call.from_number
    call_log.summary = conv.summary()
    call_log.transcript = conv.transcript_text()
    call_log.recording_url = conv.call.recording_url
    call_log.call_started_at = conv.started_at() or call_log.call_started_at or utcnow()
    call_log.call_ended_at = conv.ended_at()
    call_log.duration_seconds = conv.duration_seconds()
    call_log.outcome = conv.outcome()
    call_log.call_status = conv.status
    call_log.ended_reason = conv.call.ended_reason
    call_log.call_cost_credits = conv.call.call_cost_credits
    call_log.call_cost_usd = round(conv.cost_usd(), 6)
    if webhook_event_id is not None:
        call_log.webhook_event_id = webhook_event_id
    await db.flush()
    return call_log, created


async def process_elevenlabs(
    db: AsyncSession, event: WebhookEvent, normalized: NormalizedEvent,
) -> ProcessingResult:
    """Upsert the call log for a finished conversation."""
    payload: ElevenLabsPostCallPayload = normalized.payload
    conversation_id = normalized.require_correlation_key()

    call_log, created = await upsert_call_log(
        db, conversation_id, payload.data, webhook_event_id=event.id,
    )

    logger.info(
        "Call log %s for conversation %s",
        "created" if created else "updated", conversation_id[:12],
        extra={"event_id": str(event.id), "correlation_key": conversation_id},
    )
    return ProcessingResult(linked_resource_id=str(call_log.id), action="call_log_upserted")


# --- SignWell ---

def _parse_instance_id(key: str) -> uuid.UUID:
    try:
        return uuid.UUID(key)
    except ValueError as e:
        raise PayloadParseError(f"instanceId is not a valid UUID: {key[:40]}") from e


async def process_signwell(
    db: AsyncSession, event: WebhookEvent, normalized: NormalizedEvent,
) -> ProcessingResult:
    """Drive the sequential signing state machine from a SignWell event."""
    payload: SignWellEventPayload = normalized.payload
    instance_id = _parse_instance_id(normalized.require_correlation_key())

    instance = await db.get(DocInstance, instance_id)
    if instance is None:
        raise ResourceNotFoundError(f"Document instance {str(instance_id)[:8]} not found")
    signers = await signing.load_signers(db, instance.id)
    if payload.data.document.id and not instance.signwell_document_id:
        instance.signwell_document_id = payload.data.document.id

    now = utcnow()
    kind = payload.kind
    changed = False

    if kind == "document_viewed":
        signer = _match_signer(signers, payload.signing_order, payload.signer_email)
        if signer is not None:
            changed = signing.mark_viewed(signer, now)
    elif kind == "document_signed":
        changed = signing.record_provider_signature(
            instance, signers, payload.signing_order, payload.signer_email, now,
        )
    elif kind == "document_completed":
        changed = signing.complete_instance(instance, signers, payload.final_pdf_url, now)
    elif kind in ("document_declined", "document_canceled"):
        signer = _match_signer(signers, payload.signing_order, payload.signer_email)
        changed = signing.record_decline(instance, signer, now)
    else:
        logger.info(
            "Unhandled SignWell event type %s - recorded only", kind,
            extra={"event_id": str(event.id), "event_type": kind},
        )

    await db.flush()
    return ProcessingResult(
        linked_resource_id=str(instance.id), action=f"signing_{kind}", changed=changed,
    )


def _match_signer(signers, signing_order: Optional[int], email: Optional[str]):
    if signing_order is not None:
        for s in signers:
            if s.signing_order == signing_order:
                return s
    if email:
        for s in signers:
            if s.email.lower() == email.lower():
                return s
    return None


# --- Daily ---

async def process_daily(
    db: AsyncSession, event: WebhookEvent, normalized: NormalizedEvent,
) -> ProcessingResult:
    """Upsert the meeting session for a room lifecycle or recording event."""
    payload: DailyEventPayload = normalized.payload
    room_name = normalized.require_correlation_key()
    body = payload.payload

    result = await db.execute(
        select(MeetingSession).where(MeetingSession.room_name == room_name)
    )
    session = result.scalar_one_or_none()
    if session is None:
        session = MeetingSession(room_name=room_name)
        db.add(session)

    if body.meeting_id:
        session.meeting_id = body.meeting_id

    kind = payload.kind
    if kind == "meeting.started":
        if session.status != "ended":
            session.status = "live"
        session.started_at = session.started_at or from_unix(body.start_ts or payload.event_ts)
    elif kind == "meeting.ended":
        session.status = "ended"
        session.started_at = session.started_at or from_unix(body.start_ts)
        session.ended_at = from_unix(body.end_ts or payload.event_ts) or utcnow()
        if body.duration is not None:
            session.duration_seconds = int(body.duration)
    elif kind == "recording.ready-to-download":
        session.recording_url = body.download_link
    else:
        logger.info(
            "Unhandled Daily event type %s - recorded only", kind,
            extra={"event_id": str(event.id), "event_type": kind},
        )

    await db.flush()
    return ProcessingResult(linked_resource_id=str(session.id), action=f"meeting_{kind}")


Processor = Callable[[AsyncSession, WebhookEvent, NormalizedEvent], Awaitable[ProcessingResult]]

PROCESSORS: dict[str, Processor] = {
    "elevenlabs": process_elevenlabs,
    "signwell": process_signwell,
    "daily": process_daily,
}
