"""
Webhook event operations - retry worker trigger, backlog stats, operator requeue.

POST /api/v1/webhook-events/retry is the scheduler entrypoint (cron / platform
scheduled job). Per-event failures stay on their rows; only event-store
failures surface as 500.
"""
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import get_db
from src.models.webhook_event import ProcessingStatus
from src.schemas.api_responses import (
    RequeueResponse,
    RetryRunRequest,
    RetryRunResponse,
    WebhookEventStats,
)
from src.services.event_store import requeue_event, status_counts
from src.utils.alerting import AlertType, send_alert
from src.workers.retry_worker import run_retry_batch

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/webhook-events", tags=["webhook-events"])


@router.post("/retry", response_model=RetryRunResponse)
async def retry_webhook_events(
    payload: Optional[RetryRunRequest] = Body(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Run one retry batch. Body is optional: {"limit": n} (default 50, max 100)."""
    limit = payload.limit if payload else None
    try:
        stats = await run_retry_batch(db, limit=limit)
    except Exception as e:
        logger.error("Retry batch failed: %s", str(e), exc_info=True)
        await send_alert(
            AlertType.RETRY_WORKER_FAILED,
            f"Retry endpoint failed: {str(e)[:200]}",
        )
        raise HTTPException(status_code=500, detail={"ok": False, "error": "Retry batch failed"})

    logger.info(
        "Retry batch complete: processed=%d succeeded=%d failed=%d pending=%d",
        stats.processed, stats.succeeded, stats.failed, stats.total_pending,
    )
    return RetryRunResponse(ok=True, **stats.as_dict())


@router.get("/stats", response_model=WebhookEventStats)
async def webhook_event_stats(db: AsyncSession = Depends(get_db)):
    """Counts by processing status and by source."""
    return WebhookEventStats(**await status_counts(db))


@router.post("/{event_id}/requeue", response_model=RequeueResponse)
async def requeue_webhook_event(
    event_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Reset a failed or exhausted event to pending with a fresh retry budget."""
    event = await requeue_event(db, event_id)
    if event is None:
        raise HTTPException(status_code=404, detail="Webhook event not found")

    return RequeueResponse(
        event_id=str(event.id),
        status=event.processing_status,
        processing_attempts=event.processing_attempts,
        requeued=event.processing_status == ProcessingStatus.PENDING,
    )
