"""
Tests for src/workers/retry_worker.py - batch selection, backoff eligibility,
max-retry termination and per-event isolation.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import OperationalError

from src.models.webhook_event import ProcessingStatus, WebhookEvent
from src.schemas.api_responses import RetryRunRequest
from src.services.processors import ProcessingResult
from src.utils.alerting import AlertType
from src.workers.retry_worker import (
    RetryRunStats,
    _process_pending_retries,
    resolve_batch_limit,
    run_retry_batch,
)


def _ok_processor(linked=None):
    return AsyncMock(return_value=ProcessingResult(linked_resource_id=linked, action="test"))


class TestBatchLimit:
    def test_default(self):
        assert resolve_batch_limit(None) == 50

    def test_capped_at_max(self):
        assert resolve_batch_limit(500) == 100

    def test_explicit(self):
        assert resolve_batch_limit(10) == 10

    @pytest.mark.parametrize("limit", [0, -5])
    def test_non_positive_rejected(self, limit):
        with pytest.raises(ValueError):
            resolve_batch_limit(limit)

    def test_request_schema_matches(self):
        """The HTTP body rejects what resolve_batch_limit rejects."""
        with pytest.raises(ValidationError):
            RetryRunRequest(limit=0)
        assert RetryRunRequest(limit=1).limit == 1


class TestEligibility:
    async def test_failed_once_ten_minutes_ago_is_retried(self, db, make_event, daily_payload, sink):
        now = datetime.now(timezone.utc)
        event = await make_event(
            "daily", daily_payload(), status=ProcessingStatus.FAILED,
            attempts=1, last_attempt_at=now - timedelta(minutes=10),
        )
        event_id = event.id

        stats = await run_retry_batch(db, now=now, delay=0, sink=sink)

        assert stats.processed == 1
        assert stats.succeeded == 1
        refreshed = await db.get(WebhookEvent, event_id)
        assert refreshed.processing_status == ProcessingStatus.SUCCESS
        assert refreshed.processing_attempts == 2

    async def test_inside_backoff_window_is_skipped(self, db, make_event, daily_payload, sink):
        now = datetime.now(timezone.utc)
        await make_event(
            "daily", daily_payload(), status=ProcessingStatus.FAILED,
            attempts=2, last_attempt_at=now - timedelta(minutes=10),
        )

        stats = await run_retry_batch(db, now=now, delay=0, sink=sink)

        assert stats.total_pending == 1
        assert stats.processed == 0

    async def test_pending_never_attempted_is_due(self, db, make_event, daily_payload, sink):
        await make_event("daily", daily_payload())

        stats = await run_retry_batch(db, delay=0, sink=sink)

        assert stats.processed == 1
        assert stats.succeeded == 1

    async def test_terminal_rows_not_selected(self, db, make_event, daily_payload, sink):
        await make_event("daily", daily_payload(), status=ProcessingStatus.SUCCESS, attempts=1)
        await make_event("daily", daily_payload(), status=ProcessingStatus.MAX_RETRIES_EXCEEDED, attempts=5)

        stats = await run_retry_batch(db, delay=0, sink=sink)

        assert stats == RetryRunStats()


class TestMaxRetries:
    async def test_fifth_failure_terminates(self, db, make_event, elevenlabs_payload, sink):
        now = datetime.now(timezone.utc)
        event = await make_event(
            "elevenlabs", elevenlabs_payload(), status=ProcessingStatus.FAILED,
            attempts=4, last_attempt_at=now - timedelta(hours=5),
        )
        event_id = event.id
        failing = AsyncMock(side_effect=RuntimeError("provider 503"))

        with (
            patch.dict("src.services.processing.PROCESSORS", {"elevenlabs": failing}),
            patch("src.services.processing.send_alert", new_callable=AsyncMock) as mock_alert,
        ):
            stats = await run_retry_batch(db, now=now, delay=0, sink=sink)

        assert stats.failed == 1
        refreshed = await db.get(WebhookEvent, event_id)
        assert refreshed.processing_status == ProcessingStatus.MAX_RETRIES_EXCEEDED
        assert refreshed.processing_attempts == 5
        assert mock_alert.call_args.args[0] == AlertType.WEBHOOK_RETRIES_EXHAUSTED

        # Excluded from every later batch
        later = await run_retry_batch(db, now=now + timedelta(days=1), delay=0, sink=sink)
        assert later.total_pending == 0
        assert failing.await_count == 1

    async def test_repeated_failures_walk_the_schedule(self, db, make_event, elevenlabs_payload, sink):
        event = await make_event("elevenlabs", elevenlabs_payload())
        event_id = event.id
        failing = AsyncMock(side_effect=RuntimeError("down"))
        now = datetime.now(timezone.utc)

        with (
            patch.dict("src.services.processing.PROCESSORS", {"elevenlabs": failing}),
            patch("src.services.processing.send_alert", new_callable=AsyncMock),
        ):
            for _ in range(7):
                now += timedelta(hours=5)
                await run_retry_batch(db, now=now, delay=0, sink=sink)

        refreshed = await db.get(WebhookEvent, event_id)
        assert refreshed.processing_status == ProcessingStatus.MAX_RETRIES_EXCEEDED
        assert refreshed.processing_attempts == 5
        assert failing.await_count == 5


class TestBatchIsolation:
    async def test_one_failure_does_not_abort_batch(self, db, make_event, daily_payload, sink):
        base = datetime.now(timezone.utc) - timedelta(hours=1)
        ids = []
        for i, room in enumerate(("room-a", "room-b", "room-c")):
            event = await make_event(
                "daily", daily_payload(room=room), received_at=base + timedelta(minutes=i),
            )
            ids.append(event.id)

        calls = []

        async def _flaky(db_, event_, normalized):
            calls.append(event_.id)
            if event_.id == ids[1]:
                raise RuntimeError("second event broke")
            return ProcessingResult(action="test")

        with patch.dict("src.services.processing.PROCESSORS", {"daily": _flaky}):
            stats = await run_retry_batch(db, delay=0, sink=sink)

        assert calls == ids
        assert (stats.processed, stats.succeeded, stats.failed) == (3, 2, 1)
        statuses = [(await db.get(WebhookEvent, i)).processing_status for i in ids]
        assert statuses == [ProcessingStatus.SUCCESS, ProcessingStatus.FAILED, ProcessingStatus.SUCCESS]
        broken = await db.get(WebhookEvent, ids[1])
        assert broken.processing_attempts == 1
        assert "second event broke" in broken.last_error

    async def test_event_store_failure_aborts_batch(self, db, make_event, daily_payload, sink):
        event = await make_event("daily", daily_payload())
        event_id = event.id
        store_down = OperationalError("UPDATE webhook_events", {}, Exception("db down"))

        with patch.object(db, "commit", AsyncMock(side_effect=store_down)):
            with pytest.raises(OperationalError):
                await run_retry_batch(db, delay=0, sink=sink)

        await db.rollback()
        refreshed = await db.get(WebhookEvent, event_id)
        assert refreshed.processing_status == ProcessingStatus.PENDING
        assert refreshed.processing_attempts == 0

    async def test_sleeps_between_events(self, db, make_event, daily_payload, sink):
        for room in ("room-a", "room-b", "room-c"):
            await make_event("daily", daily_payload(room=room))

        with (
            patch.dict("src.services.processing.PROCESSORS", {"daily": _ok_processor()}),
            patch("src.workers.retry_worker.asyncio.sleep", new_callable=AsyncMock) as mock_sleep,
        ):
            await run_retry_batch(db, delay=0.2, sink=sink)

        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(0.2)

    async def test_backlog_alert_when_batch_full(self, db, make_event, daily_payload, sink):
        for room in ("room-a", "room-b"):
            await make_event("daily", daily_payload(room=room))

        with (
            patch.dict("src.services.processing.PROCESSORS", {"daily": _ok_processor()}),
            patch("src.workers.retry_worker.send_alert", new_callable=AsyncMock) as mock_alert,
        ):
            await run_retry_batch(db, limit=2, delay=0, sink=sink)

        mock_alert.assert_awaited_once()
        assert mock_alert.call_args.args[0] == AlertType.RETRY_BACKLOG_HIGH


class TestWorkerCycle:
    async def test_process_pending_uses_fresh_session(self):
        session = AsyncMock()
        factory_cm = AsyncMock()
        factory_cm.__aenter__.return_value = session

        with (
            patch("src.database.async_session_factory", return_value=factory_cm),
            patch(
                "src.workers.retry_worker.run_retry_batch",
                new_callable=AsyncMock,
                return_value=RetryRunStats(processed=1, succeeded=1),
            ) as mock_batch,
        ):
            stats = await _process_pending_retries()

        assert stats.succeeded == 1
        mock_batch.assert_awaited_once_with(session)
