"""
Downstream side-effect dispatcher.

Runs after an event's success has been committed. Exactly once per delivery:
the webhook_dispatches row is flushed before any external call, so a second
run for the same event hits the unique webhook_event_id, and a provider
redelivery of an identical body hits the unique (source, payload_hash).

Nothing here may revert the event's success. Failures are logged, alerted
and recorded on the dispatch row when possible.
"""
import logging
import uuid
from typing import Optional

import httpx
from sqlalchemy import and_, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.models.call_log import CallLog
from src.models.meeting_session import MeetingSession
from src.models.webhook_dispatch import WebhookDispatch
from src.models.webhook_event import WebhookEvent, WebhookSource
from src.services.event_sink import EventSink, build_event_sink
from src.services.processors import ProcessingResult
from src.utils.alerting import AlertType, send_alert
from src.utils.backoff import utcnow

logger = logging.getLogger(__name__)


async def already_dispatched(db: AsyncSession, event: WebhookEvent) -> bool:
    """True if this event, or an identical earlier delivery of it, was dispatched."""
    result = await db.execute(
        select(WebhookDispatch.id).where(
            or_(
                WebhookDispatch.webhook_event_id == event.id,
                and_(
                    WebhookDispatch.source == event.source,
                    WebhookDispatch.payload_hash == event.payload_hash,
                ),
            )
        ).limit(1)
    )
    return result.scalar_one_or_none() is not None


async def _mark_linked_processed(db: AsyncSession, event: WebhookEvent, result: ProcessingResult) -> None:
    """Provider-specific follow-up write on the linked business record."""
    if not result.linked_resource_id:
        return
    if event.source == WebhookSource.ELEVENLABS:
        call_log = await db.get(CallLog, uuid.UUID(result.linked_resource_id))
        if call_log is not None:
            call_log.webhook_status = "processed"
            call_log.webhook_event_id = event.id
    elif event.source == WebhookSource.DAILY:
        session = await db.get(MeetingSession, uuid.UUID(result.linked_resource_id))
        if session is not None:
            session.webhook_status = "processed"


async def _send_notification(payload: dict) -> tuple[str, Optional[str]]:
    """POST the outcome to the configured notification URL. Returns (status, error)."""
    settings = get_settings()
    if not settings.notification_webhook_url:
        return "skipped", None
    try:
        async with httpx.AsyncClient(timeout=settings.notification_timeout_seconds) as client:
            response = await client.post(settings.notification_webhook_url, json=payload)
            response.raise_for_status()
        return "sent", None
    except httpx.HTTPError as e:
        logger.warning(
            "Notification for event %s failed: %s", payload["event_id"][:8], str(e),
            extra={"event_id": payload["event_id"]},
        )
        return "failed", str(e)[:500]


async def dispatch_side_effects(
    db: AsyncSession,
    event: WebhookEvent,
    result: ProcessingResult,
    sink: Optional[EventSink] = None,
) -> Optional[WebhookDispatch]:
    """
    Perform downstream effects for a successfully processed event.
    Returns the dispatch row, or None if already dispatched or failed. Never raises.
    """
    event_id = event.id
    event_ref = str(event_id)
    try:
        if await already_dispatched(db, event):
            logger.info(
                "Side effects for event %s (or an identical delivery) already dispatched", event_ref[:8],
                extra={"event_id": event_ref},
            )
            return None

        dispatch = WebhookDispatch(
            webhook_event_id=event_id,
            source=event.source,
            payload_hash=event.payload_hash,
            action=result.action[:50],
            linked_resource_id=result.linked_resource_id,
        )
        db.add(dispatch)
        await db.flush()

        await _mark_linked_processed(db, event, result)

        record = {
            "type": "webhook_processed",
            "event_id": event_ref,
            "source": event.source,
            "event_type": event.event_type,
            "action": result.action,
            "linked_resource_id": result.linked_resource_id,
            "changed": result.changed,
            "timestamp": utcnow().isoformat(),
        }
        status, error = await _send_notification(record)
        dispatch.notification_status = status
        dispatch.notification_error = error

        await (sink or build_event_sink()).append(record)
        await db.commit()

        logger.info(
            "Dispatched side effects for event %s (%s, notification=%s)",
            event_ref[:8], result.action, status,
            extra={"event_id": event_ref, "source": event.source},
        )
        return dispatch

    except IntegrityError:
        await db.rollback()
        logger.info(
            "Concurrent dispatch detected for event %s - skipping", event_ref[:8],
            extra={"event_id": event_ref},
        )
        return None
    except Exception as e:
        await db.rollback()
        logger.error(
            "Side-effect dispatch failed for event %s: %s", event_ref[:8], str(e),
            exc_info=True, extra={"event_id": event_ref},
        )
        await send_alert(
            AlertType.DISPATCH_FAILED,
            f"Side-effect dispatch failed for webhook event {event_ref[:8]}: {str(e)[:200]}",
            severity="warning",
            extra={"event_id": event_ref},
        )
        return None
