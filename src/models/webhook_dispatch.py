"""
Downstream dispatch ledger - one row per distinct successfully processed delivery.
The unique webhook_event_id makes side effects exactly-once across repeated
processing runs of one event; the unique (source, payload_hash) does the same
across provider redeliveries of an identical body, which are stored as
separate webhook_events rows.
"""
import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, String, DateTime, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from src.database import Base


class WebhookDispatch(Base):
    __tablename__ = "webhook_dispatches"
    __table_args__ = (
        UniqueConstraint("source", "payload_hash", name="uq_webhook_dispatches_source_payload_hash"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    webhook_event_id = Column(UUID(as_uuid=True), nullable=False, unique=True)
    source = Column(String(50), nullable=False)
    payload_hash = Column(String(64), nullable=False)
    action = Column(String(50), nullable=False)  # call_log_processed, signing_updated, meeting_updated
    linked_resource_id = Column(String(64), nullable=True)
    notification_status = Column(
        String(20), nullable=False, default="skipped", server_default="skipped"
    )  # sent, failed, skipped
    notification_error = Column(Text, nullable=True)
    dispatched_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
