"""
Call log - one record per voice-agent conversation.
Upserted by elevenlabs_conversation_id, the only reliable key across
duplicate webhook deliveries and backfills.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Float, Integer, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class CallLog(Base):
    __tablename__ = "call_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    elevenlabs_conversation_id: Mapped[str] = mapped_column(
        String(128), nullable=False, unique=True
    )
    elevenlabs_agent_id: Mapped[Optional[str]] = mapped_column(String(128))

    # Call details
    caller_phone: Mapped[Optional[str]] = mapped_column(String(32))
    call_direction: Mapped[str] = mapped_column(String(20), default="inbound")
    summary: Mapped[Optional[str]] = mapped_column(Text)
    transcript: Mapped[Optional[str]] = mapped_column(Text)
    recording_url: Mapped[Optional[str]] = mapped_column(Text)
    call_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    call_ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0)
    outcome: Mapped[str] = mapped_column(
        String(30), default="completed"
    )  # completed, callback_requested, declined, confirmed
    call_status: Mapped[Optional[str]] = mapped_column(String(30))
    ended_reason: Mapped[Optional[str]] = mapped_column(String(100))

    # Cost tracking
    call_cost_credits: Mapped[Optional[float]] = mapped_column(Float)
    call_cost_usd: Mapped[Optional[float]] = mapped_column(Float)

    # Webhook linkage
    webhook_status: Mapped[str] = mapped_column(
        String(20), default="received"
    )  # received, processed
    webhook_event_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
