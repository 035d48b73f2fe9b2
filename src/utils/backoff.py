"""
Retry backoff schedule for webhook events.
Staircase schedule indexed by attempt count; the last step repeats.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

# Backoff schedule (minutes), indexed by processing_attempts
BACKOFF_MINUTES = [1, 5, 15, 60, 240]
MAX_RETRIES = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def backoff_delay(attempts: int) -> timedelta:
    """Delay that must elapse after the attempt numbered `attempts`."""
    idx = min(max(attempts, 0), len(BACKOFF_MINUTES) - 1)
    return timedelta(minutes=BACKOFF_MINUTES[idx])


def backoff_deadline(last_attempt_at: Optional[datetime], attempts: int) -> Optional[datetime]:
    """Earliest time the next attempt may run. None means due immediately."""
    if last_attempt_at is None:
        return None
    return ensure_aware(last_attempt_at) + backoff_delay(attempts)


def is_due(last_attempt_at: Optional[datetime], attempts: int, now: Optional[datetime] = None) -> bool:
    """True once the backoff window for this attempt count has elapsed."""
    deadline = backoff_deadline(last_attempt_at, attempts)
    if deadline is None:
        return True
    return (now or utcnow()) >= deadline
