"""
Webhook event store - every incoming provider webhook is recorded before processing.
Source of truth for the retry worker; rows are never deleted (audit trail).
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, Integer, DateTime, Text
from sqlalchemy.dialects.postgresql import UUID, JSONB
from src.database import Base


class WebhookSource:
    """Originating provider/integration."""
    ELEVENLABS = "elevenlabs"
    SIGNWELL = "signwell"
    DAILY = "daily"

    ALL = (ELEVENLABS, SIGNWELL, DAILY)


class ProcessingStatus:
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"

    RETRYABLE = (PENDING, FAILED)
    TERMINAL = (SUCCESS, MAX_RETRIES_EXCEEDED)


class WebhookEvent(Base):
    __tablename__ = "webhook_events"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    received_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)
    source = Column(String(50), nullable=False, index=True)
    event_type = Column(String(80), nullable=False)
    payload_hash = Column(String(64), nullable=False, index=True)
    raw_payload = Column(JSONB, nullable=False)
    correlation_key = Column(String(128), nullable=True, index=True)  # conversation_id / instanceId / room
    correlation_id = Column(String(64), nullable=True)  # request trace id
    processing_status = Column(
        String(30), nullable=False, default=ProcessingStatus.PENDING,
        server_default=ProcessingStatus.PENDING, index=True,
    )
    processing_attempts = Column(Integer, nullable=False, default=0, server_default="0")
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    linked_resource_id = Column(String(64), nullable=True)
