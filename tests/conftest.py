"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks all external services.
"""
import secrets
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

from src.config import get_settings
from src.database import Base
import src.models  # noqa: F401  (registers all tables on Base.metadata)
from src.models.doc_instance import DocInstance, DocStatus
from src.models.doc_signer import DocSigner
from src.models.webhook_event import ProcessingStatus, WebhookEvent
from src.services.event_sink import InMemoryEventSink


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """No inter-event delay, no outbound notification or alert URLs."""
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("RETRY_INTER_EVENT_DELAY_SECONDS", "0")
    monkeypatch.setenv("NOTIFICATION_WEBHOOK_URL", "")
    monkeypatch.setenv("ALERT_WEBHOOK_URL", "")
    monkeypatch.setenv("SIGNWELL_WEBHOOK_SECRET", "")
    monkeypatch.setenv("ELEVENLABS_WEBHOOK_SECRET", "")
    monkeypatch.setenv("DAILY_WEBHOOK_SECRET", "")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def mock_redis():
    """Mock for async Redis - prevents real Redis calls in tests."""
    with patch("src.utils.redis_client.get_redis") as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
def sink():
    return InMemoryEventSink()


# ---------------------------------------------------------------------------
# Provider payloads
# ---------------------------------------------------------------------------

@pytest.fixture
def elevenlabs_payload():
    def _build(conversation_id: Optional[str] = "conv_abc123", duration: int = 120) -> dict:
        data = {
            "agent_id": "agent_1",
            "status": "done",
            "start_time_unix_secs": 1760000000,
            "call_duration_secs": duration,
            "transcript": [
                {"role": "agent", "message": "Hello, how can I help?"},
                {"role": "user", "message": "I want to reschedule."},
            ],
            "analysis": {
                "transcript_summary": "Caller wants to reschedule.",
                "data_collection_results": {"callback_requested": True},
            },
            "call": {"from_number": "+15125559876"},
        }
        if conversation_id is not None:
            data["conversation_id"] = conversation_id
        return {"type": "post_call_transcription", "event_timestamp": 1760000200, "data": data}
    return _build


@pytest.fixture
def signwell_payload():
    def _build(
        event_type: str,
        instance_id,
        signing_order: Optional[int] = None,
        email: Optional[str] = None,
        pdf_url: Optional[str] = None,
    ) -> dict:
        document = {
            "id": "sw_doc_1",
            "metadata": {"instanceId": str(instance_id)},
            "files": [{"url": pdf_url, "name": "final.pdf"}] if pdf_url else [],
        }
        data = {"document": document}
        if signing_order is not None or email is not None:
            data["recipient"] = {"signing_order": signing_order, "email": email}
        return {"event": {"type": event_type, "time": int(time.time())}, "data": data}
    return _build


@pytest.fixture
def daily_payload():
    def _build(event_type: str = "meeting.ended", room: Optional[str] = "room-1") -> dict:
        body = {"meeting_id": "mtg_1", "start_ts": 1760000000, "end_ts": 1760001800, "duration": 1800}
        if room is not None:
            body["room"] = room
        if event_type == "recording.ready-to-download":
            body["download_link"] = "https://example.com/rec.mp4"
        return {"type": event_type, "id": uuid.uuid4().hex, "event_ts": 1760001800, "payload": body}
    return _build


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_event(db):
    """Insert and commit a webhook event row."""
    async def _make(
        source: str,
        raw_payload: dict,
        status: str = ProcessingStatus.PENDING,
        attempts: int = 0,
        last_attempt_at: Optional[datetime] = None,
        received_at: Optional[datetime] = None,
        correlation_key: Optional[str] = "key",
        payload_hash: Optional[str] = None,
    ) -> WebhookEvent:
        event = WebhookEvent(
            source=source,
            event_type=raw_payload.get("type") or "test",
            payload_hash=payload_hash or secrets.token_hex(32),
            raw_payload=raw_payload,
            correlation_key=correlation_key,
            processing_status=status,
            processing_attempts=attempts,
            last_attempt_at=last_attempt_at,
            received_at=received_at or datetime.now(timezone.utc),
        )
        db.add(event)
        await db.commit()
        return event
    return _make


@pytest.fixture
def signing_doc(db):
    """Create a draft document with seller(1), purchaser(2), chairman(3)."""
    async def _make(
        status: str = DocStatus.DRAFT,
        token_expires_at: Optional[datetime] = None,
    ) -> tuple[DocInstance, list[DocSigner]]:
        instance = DocInstance(title="Share Purchase Agreement", status=status)
        db.add(instance)
        await db.flush()
        expires = token_expires_at or datetime.now(timezone.utc) + timedelta(days=7)
        signers = []
        for order, role in ((1, "seller"), (2, "purchaser"), (3, "chairman")):
            signer = DocSigner(
                doc_instance_id=instance.id,
                role=role,
                name=role.title(),
                email=f"{role}@example.com",
                signing_order=order,
                access_token=f"tok_{role}_{secrets.token_hex(8)}",
                token_expires_at=expires,
            )
            db.add(signer)
            signers.append(signer)
        await db.commit()
        return instance, signers
    return _make
