"""
Analytics event sink - append-only record of processed webhook outcomes.

The sink is injected into the dispatcher rather than held as a module-level
queue, so tests can swap in InMemoryEventSink and production can choose
between structured logs and a bounded Redis list (drained by analytics jobs).
"""
import json
import logging
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)

EVENT_LIST_KEY = "seeksy:analytics_events"
EVENT_LIST_MAX = 1000  # Maximum pending events to keep


class EventSink(Protocol):
    async def append(self, event: dict[str, Any]) -> None:
        ...


class InMemoryEventSink:
    """Collects events in a list. Used by tests and scripts."""

    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    async def append(self, event: dict[str, Any]) -> None:
        self.events.append(event)


class LoggingEventSink:
    """Writes each event as a structured log line."""

    def __init__(self, logger_name: str = "seeksy.analytics") -> None:
        self._logger = logging.getLogger(logger_name)

    async def append(self, event: dict[str, Any]) -> None:
        self._logger.info("analytics_event %s", json.dumps(event, default=str))


class RedisEventSink:
    """
    Pushes events onto a bounded Redis list. Failures are logged and dropped:
    analytics must never affect webhook processing.
    """

    def __init__(self, key: str = EVENT_LIST_KEY, max_len: int = EVENT_LIST_MAX) -> None:
        self.key = key
        self.max_len = max_len

    async def append(self, event: dict[str, Any]) -> None:
        try:
            from src.utils.redis_client import get_redis
            redis = await get_redis()
            await redis.lpush(self.key, json.dumps(event, default=str))
            await redis.ltrim(self.key, 0, self.max_len - 1)
        except Exception as e:
            logger.warning("Failed to append analytics event %s: %s", event.get("type"), str(e))


def build_event_sink(kind: Optional[str] = None) -> EventSink:
    """Construct the configured sink ("log" or "redis")."""
    if kind is None:
        from src.config import get_settings
        kind = get_settings().event_sink
    if kind == "redis":
        return RedisEventSink()
    return LoggingEventSink()
