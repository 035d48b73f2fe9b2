"""
Shared processing routine - used by the receiver (first attempt) and the
retry worker (later attempts).

One attempt = parse the stored payload, run the provider processor, record
the outcome on the event row, commit. Processor failures are contained: the
partial writes are rolled back and the failure is written to the row in its
own commit. Side effects are dispatched only after success is committed.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.models.webhook_event import ProcessingStatus, WebhookEvent
from src.schemas.webhook_payloads import parse_provider_payload
from src.services.dispatcher import dispatch_side_effects
from src.services.event_sink import EventSink
from src.services.event_store import mark_attempt_failed, mark_attempt_succeeded
from src.services.processors import PROCESSORS
from src.utils.alerting import AlertType, send_alert
from src.utils.backoff import MAX_RETRIES, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ProcessingOutcome:
    event_id: uuid.UUID
    status: str
    attempts: int
    linked_resource_id: Optional[str] = None
    error: Optional[str] = None
    skipped: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status == ProcessingStatus.SUCCESS


async def attempt_processing(
    db: AsyncSession,
    event: WebhookEvent,
    now: Optional[datetime] = None,
    sink: Optional[EventSink] = None,
) -> ProcessingOutcome:
    """
    Run one processing attempt for a stored event.

    Terminal rows are returned untouched. Raises only if the event store itself
    fails (commit of the outcome), never for processor errors.
    """
    event_id = event.id
    if event.processing_status in ProcessingStatus.TERMINAL:
        return ProcessingOutcome(
            event_id=event_id,
            status=event.processing_status,
            attempts=event.processing_attempts,
            linked_resource_id=event.linked_resource_id,
            skipped=True,
        )

    now = now or utcnow()
    source = event.source
    attempts = (event.processing_attempts or 0) + 1
    log_extra = {"event_id": str(event_id), "source": source, "attempt": attempts}

    try:
        normalized = parse_provider_payload(source, event.raw_payload)
        processor = PROCESSORS[source]
        result = await processor(db, event, normalized)
        mark_attempt_succeeded(event, attempts, now, result.linked_resource_id)
        await db.commit()
    except Exception as e:
        await db.rollback()
        error = f"{type(e).__name__}: {e}"
        logger.warning(
            "Processing attempt %d for %s event %s failed: %s",
            attempts, source, str(event_id)[:8], error[:200],
            extra=log_extra,
        )

        # Rollback expires loaded state; re-read the row before recording the failure
        event = await db.get(WebhookEvent, event_id)
        if event is None:
            raise
        exhausted = mark_attempt_failed(event, attempts, now, error)
        await db.commit()

        if exhausted:
            await send_alert(
                AlertType.WEBHOOK_RETRIES_EXHAUSTED,
                f"{source} webhook event {str(event_id)[:8]} ({event.event_type}) "
                f"failed {MAX_RETRIES} times: {error[:200]}",
                extra={"event_id": str(event_id), "source": source},
            )
        return ProcessingOutcome(
            event_id=event_id,
            status=event.processing_status,
            attempts=attempts,
            error=event.last_error,
        )

    logger.info(
        "Processed %s event %s on attempt %d (%s)",
        source, str(event_id)[:8], attempts, result.action,
        extra=log_extra,
    )
    await dispatch_side_effects(db, event, result, sink)
    return ProcessingOutcome(
        event_id=event_id,
        status=ProcessingStatus.SUCCESS,
        attempts=attempts,
        linked_resource_id=result.linked_resource_id,
    )
