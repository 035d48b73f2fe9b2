"""
Tests for src/services/dispatcher.py and src/services/event_sink.py -
exactly-once side effects, best-effort notifications.
"""
import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from sqlalchemy import func, select

from src.models.webhook_dispatch import WebhookDispatch
from src.models.webhook_event import ProcessingStatus, WebhookEvent
from src.services.dispatcher import already_dispatched, dispatch_side_effects
from src.services.event_sink import (
    InMemoryEventSink,
    LoggingEventSink,
    RedisEventSink,
    build_event_sink,
)
from src.services.processors import ProcessingResult
from src.utils.alerting import AlertType


async def _dispatch_count(db) -> int:
    result = await db.execute(select(func.count()).select_from(WebhookDispatch))
    return result.scalar_one()


class TestExactlyOnce:
    async def test_second_dispatch_is_skipped(self, db, make_event, daily_payload, sink):
        event = await make_event("daily", daily_payload(), status=ProcessingStatus.SUCCESS, attempts=1)
        result = ProcessingResult(action="meeting_meeting.ended")

        first = await dispatch_side_effects(db, event, result, sink)
        second = await dispatch_side_effects(db, event, result, sink)

        assert first is not None
        assert first.notification_status == "skipped"
        assert second is None
        assert await _dispatch_count(db) == 1
        assert len(sink.events) == 1
        assert await already_dispatched(db, event) is True

    async def test_redelivered_body_is_skipped(self, db, make_event, daily_payload, sink):
        """A second stored row with the same source and body hash dispatches nothing."""
        payload = daily_payload()
        first = await make_event(
            "daily", payload, status=ProcessingStatus.SUCCESS, attempts=1, payload_hash="a" * 64,
        )
        again = await make_event(
            "daily", payload, status=ProcessingStatus.SUCCESS, attempts=1, payload_hash="a" * 64,
        )

        assert await dispatch_side_effects(db, first, ProcessingResult(action="x"), sink) is not None
        assert await dispatch_side_effects(db, again, ProcessingResult(action="x"), sink) is None
        assert await _dispatch_count(db) == 1
        assert len(sink.events) == 1

    async def test_same_body_other_source_dispatches(self, db, make_event, daily_payload, sink):
        first = await make_event(
            "daily", daily_payload(), status=ProcessingStatus.SUCCESS, attempts=1, payload_hash="b" * 64,
        )
        other = await make_event(
            "signwell", daily_payload(), status=ProcessingStatus.SUCCESS, attempts=1, payload_hash="b" * 64,
        )

        await dispatch_side_effects(db, first, ProcessingResult(action="x"), sink)
        await dispatch_side_effects(db, other, ProcessingResult(action="x"), sink)

        assert await _dispatch_count(db) == 2


class TestNotification:
    async def test_sent(self, db, make_event, daily_payload, sink, test_settings):
        test_settings.notification_webhook_url = "https://hooks.example.com/seeksy"
        event = await make_event("daily", daily_payload(), status=ProcessingStatus.SUCCESS, attempts=1)

        response = MagicMock()
        response.raise_for_status = MagicMock()
        client = AsyncMock()
        client.post = AsyncMock(return_value=response)
        client_cm = AsyncMock()
        client_cm.__aenter__.return_value = client

        with patch("src.services.dispatcher.httpx.AsyncClient", return_value=client_cm):
            dispatch = await dispatch_side_effects(db, event, ProcessingResult(action="x"), sink)

        assert dispatch.notification_status == "sent"
        posted = client.post.call_args.kwargs["json"]
        assert posted["event_id"] == str(event.id)
        assert posted["type"] == "webhook_processed"

    async def test_failure_does_not_revert_success(self, db, make_event, daily_payload, sink, test_settings):
        test_settings.notification_webhook_url = "https://hooks.example.com/seeksy"
        event = await make_event("daily", daily_payload(), status=ProcessingStatus.SUCCESS, attempts=1)
        event_id = event.id

        client = AsyncMock()
        client.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        client_cm = AsyncMock()
        client_cm.__aenter__.return_value = client

        with patch("src.services.dispatcher.httpx.AsyncClient", return_value=client_cm):
            dispatch = await dispatch_side_effects(db, event, ProcessingResult(action="x"), sink)

        assert dispatch.notification_status == "failed"
        assert "refused" in dispatch.notification_error
        refreshed = await db.get(WebhookEvent, event_id)
        assert refreshed.processing_status == ProcessingStatus.SUCCESS
        assert len(sink.events) == 1


class TestDispatchFailure:
    async def test_sink_error_is_contained(self, db, make_event, daily_payload):
        event = await make_event("daily", daily_payload(), status=ProcessingStatus.SUCCESS, attempts=1)
        event_id = event.id
        broken_sink = MagicMock()
        broken_sink.append = AsyncMock(side_effect=RuntimeError("sink down"))

        with patch("src.services.dispatcher.send_alert", new_callable=AsyncMock) as mock_alert:
            dispatch = await dispatch_side_effects(db, event, ProcessingResult(action="x"), broken_sink)

        assert dispatch is None
        mock_alert.assert_awaited_once()
        assert mock_alert.call_args.args[0] == AlertType.DISPATCH_FAILED
        assert await _dispatch_count(db) == 0
        refreshed = await db.get(WebhookEvent, event_id)
        assert refreshed.processing_status == ProcessingStatus.SUCCESS


class TestEventSinks:
    async def test_in_memory(self):
        sink = InMemoryEventSink()
        await sink.append({"type": "webhook_processed"})
        assert sink.events == [{"type": "webhook_processed"}]

    async def test_redis_sink_bounded(self, mock_redis):
        sink = RedisEventSink(max_len=10)
        await sink.append({"type": "webhook_processed", "event_id": "e1"})

        key, value = mock_redis.lpush.call_args.args
        assert key == "seeksy:analytics_events"
        assert json.loads(value)["event_id"] == "e1"
        mock_redis.ltrim.assert_awaited_once_with("seeksy:analytics_events", 0, 9)

    async def test_redis_sink_swallows_errors(self, mock_redis):
        mock_redis.lpush.side_effect = ConnectionError("redis down")
        await RedisEventSink().append({"type": "webhook_processed"})

    def test_build_from_settings(self):
        assert isinstance(build_event_sink("redis"), RedisEventSink)
        assert isinstance(build_event_sink("log"), LoggingEventSink)
        assert isinstance(build_event_sink(), LoggingEventSink)
