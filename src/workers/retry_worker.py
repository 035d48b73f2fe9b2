"""
Retry worker - re-attempts pending/failed webhook events with exponential backoff.

Invoked by an external scheduler through POST /api/v1/webhook-events/retry, or
in-process every RETRY_WORKER_INTERVAL_SECONDS when RETRY_WORKER_ENABLED.
Overlapping runs are not locked against each other; processors are
idempotent upserts and dispatch is guarded by webhook_dispatches.
"""
import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.models.webhook_event import ProcessingStatus, WebhookEvent
from src.services.event_sink import EventSink
from src.services.event_store import fetch_retry_candidates
from src.services.processing import attempt_processing
from src.utils.alerting import AlertType, send_alert
from src.utils.backoff import is_due, utcnow
from src.utils.logging import correlation_scope
from src.utils.redis_client import write_heartbeat

logger = logging.getLogger(__name__)

WORKER_NAME = "retry_worker"


@dataclass
class RetryRunStats:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    total_pending: int = 0

    def as_dict(self) -> dict:
        return asdict(self)


def resolve_batch_limit(limit: Optional[int]) -> int:
    """Apply the default batch size (when no limit is given) and the hard cap."""
    settings = get_settings()
    if limit is None:
        limit = settings.retry_batch_default
    if limit < 1:
        raise ValueError(f"Batch limit must be at least 1, got {limit}")
    return min(limit, settings.retry_batch_max)


async def run_retry_batch(
    db: AsyncSession,
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
    delay: Optional[float] = None,
    sink: Optional[EventSink] = None,
) -> RetryRunStats:
    """
    Process one batch of retry candidates, oldest first.
    Events still inside their backoff window are skipped. A processing
    failure on one event never aborts the batch; an event-store failure
    propagates to the caller.
    """
    settings = get_settings()
    limit = resolve_batch_limit(limit)
    if delay is None:
        delay = settings.retry_inter_event_delay_seconds
    checked_at = now or utcnow()

    candidates = await fetch_retry_candidates(db, limit)
    stats = RetryRunStats(total_pending=len(candidates))

    # Collect ids up front: each attempt commits or rolls back, expiring loaded rows
    due_ids = [
        e.id for e in candidates
        if is_due(e.last_attempt_at, e.processing_attempts, checked_at)
    ]
    logger.info(
        "Retry batch: %d candidates, %d due (limit=%d)",
        len(candidates), len(due_ids), limit,
    )

    for i, event_id in enumerate(due_ids):
        if i > 0 and delay > 0:
            await asyncio.sleep(delay)

        event = await db.get(WebhookEvent, event_id)
        if event is None or event.processing_status not in ProcessingStatus.RETRYABLE:
            continue
        # Processor failures are contained on the row; anything raised here is
        # the event store itself failing and aborts the batch
        outcome = await attempt_processing(db, event, now=now, sink=sink)

        stats.processed += 1
        if outcome.succeeded:
            stats.succeeded += 1
        else:
            stats.failed += 1

    if stats.total_pending >= limit:
        await send_alert(
            AlertType.RETRY_BACKLOG_HIGH,
            f"Retry batch hit its limit ({limit}); backlog may be growing",
            severity="warning",
            extra=stats.as_dict(),
        )

    return stats


async def run_retry_worker():
    """In-process retry loop. Runs continuously."""
    settings = get_settings()
    logger.info("Retry worker started (interval=%ds)", settings.retry_worker_interval_seconds)

    while True:
        with correlation_scope():
            try:
                stats = await _process_pending_retries()
                if stats.processed > 0:
                    logger.info(
                        "Retry worker processed %d events (%d succeeded, %d failed)",
                        stats.processed, stats.succeeded, stats.failed,
                    )
            except Exception as e:
                logger.error("Retry worker error: %s", str(e), exc_info=True)
                await send_alert(
                    AlertType.RETRY_WORKER_FAILED,
                    f"Retry worker cycle failed: {str(e)[:200]}",
                )

        await write_heartbeat(WORKER_NAME)
        await asyncio.sleep(settings.retry_worker_interval_seconds)


async def _process_pending_retries() -> RetryRunStats:
    """Run one batch in a fresh session."""
    from src.database import async_session_factory

    async with async_session_factory() as db:
        return await run_retry_batch(db)
