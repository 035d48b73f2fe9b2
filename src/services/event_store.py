"""
Webhook event store - durable record of every inbound provider event.

All mutations are single-row updates keyed by event id; no cross-row locking.
Status transitions:
    pending → success | failed
    failed  → success | failed | max_retries_exceeded
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from src.models.webhook_event import WebhookEvent, ProcessingStatus
from src.utils.backoff import MAX_RETRIES, utcnow
from src.utils.logging import get_correlation_id

logger = logging.getLogger(__name__)

LAST_ERROR_MAX_CHARS = 2000


async def record_event(
    db: AsyncSession,
    source: str,
    event_type: str,
    raw_payload: dict,
    payload_hash: str,
    correlation_key: Optional[str] = None,
) -> WebhookEvent:
    """Insert a new pending event. Caller commits."""
    event = WebhookEvent(
        source=source,
        event_type=event_type,
        payload_hash=payload_hash,
        raw_payload=raw_payload,
        correlation_key=correlation_key,
        correlation_id=get_correlation_id(),
        processing_status=ProcessingStatus.PENDING,
        processing_attempts=0,
    )
    db.add(event)
    await db.flush()
    logger.info(
        "Webhook event recorded: source=%s type=%s id=%s",
        source, event_type, str(event.id)[:8],
        extra={"event_id": str(event.id), "source": source},
    )
    return event


async def get_event(db: AsyncSession, event_id: uuid.UUID) -> Optional[WebhookEvent]:
    return await db.get(WebhookEvent, event_id)


async def fetch_retry_candidates(db: AsyncSession, limit: int) -> list[WebhookEvent]:
    """Pending/failed events under the retry ceiling, oldest received first."""
    result = await db.execute(
        select(WebhookEvent)
        .where(
            WebhookEvent.processing_status.in_(ProcessingStatus.RETRYABLE),
            WebhookEvent.processing_attempts < MAX_RETRIES,
        )
        .order_by(WebhookEvent.received_at)
        .limit(limit)
    )
    return list(result.scalars().all())


def mark_attempt_succeeded(
    event: WebhookEvent,
    attempts: int,
    now: datetime,
    linked_resource_id: Optional[str] = None,
) -> None:
    event.processing_attempts = attempts
    event.last_attempt_at = now
    event.processing_status = ProcessingStatus.SUCCESS
    event.processed_at = now
    event.last_error = None
    if linked_resource_id:
        event.linked_resource_id = linked_resource_id


def mark_attempt_failed(
    event: WebhookEvent,
    attempts: int,
    now: datetime,
    error: str,
) -> bool:
    """Record a failed attempt. Returns True when the retry budget is exhausted."""
    event.processing_attempts = attempts
    event.last_attempt_at = now
    event.last_error = (error or "unknown error")[:LAST_ERROR_MAX_CHARS]
    event.processed_at = None

    if attempts >= MAX_RETRIES:
        event.processing_status = ProcessingStatus.MAX_RETRIES_EXCEEDED
        logger.error(
            "Webhook event %s exhausted retries (%d/%d): %s",
            str(event.id)[:8], attempts, MAX_RETRIES, event.last_error[:100],
            extra={"event_id": str(event.id), "source": event.source},
        )
        return True

    event.processing_status = ProcessingStatus.FAILED
    logger.warning(
        "Webhook event %s attempt %d/%d failed: %s",
        str(event.id)[:8], attempts, MAX_RETRIES, event.last_error[:100],
        extra={"event_id": str(event.id), "source": event.source, "attempt": attempts},
    )
    return False


async def requeue_event(db: AsyncSession, event_id: uuid.UUID) -> Optional[WebhookEvent]:
    """
    Operator replay: put a failed or exhausted event back in the retry queue
    with a fresh retry budget. Successful events are left untouched.
    """
    event = await db.get(WebhookEvent, event_id)
    if event is None:
        return None
    if event.processing_status == ProcessingStatus.SUCCESS:
        return event

    previous = event.processing_status
    event.processing_status = ProcessingStatus.PENDING
    event.processing_attempts = 0
    event.last_attempt_at = None
    await db.flush()
    logger.info(
        "Webhook event %s requeued (was %s)", str(event.id)[:8], previous,
        extra={"event_id": str(event.id), "source": event.source},
    )
    return event


async def status_counts(db: AsyncSession) -> dict:
    """Aggregate counts by status and by source/status for admin dashboards."""
    result = await db.execute(
        select(WebhookEvent.source, WebhookEvent.processing_status, func.count())
        .group_by(WebhookEvent.source, WebhookEvent.processing_status)
    )
    by_status: dict[str, int] = {}
    by_source: dict[str, dict[str, int]] = {}
    for source, status, count in result.all():
        by_status[status] = by_status.get(status, 0) + count
        by_source.setdefault(source, {})[status] = count
    return {
        "by_status": by_status,
        "by_source": by_source,
        "total": sum(by_status.values()),
        "generated_at": utcnow().isoformat(),
    }
