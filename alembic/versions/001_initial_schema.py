"""Initial schema - webhook event store, signing, linked records, dispatch ledger.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Webhook event store
    op.create_table(
        "webhook_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(80), nullable=False),
        sa.Column("payload_hash", sa.String(64), nullable=False),
        sa.Column("raw_payload", postgresql.JSONB, nullable=False),
        sa.Column("correlation_key", sa.String(128)),
        sa.Column("correlation_id", sa.String(64)),
        sa.Column("processing_status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("processing_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True)),
        sa.Column("last_error", sa.Text),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("linked_resource_id", sa.String(64)),
    )
    op.create_index("ix_webhook_events_received_at", "webhook_events", ["received_at"])
    op.create_index("ix_webhook_events_source", "webhook_events", ["source"])
    op.create_index("ix_webhook_events_payload_hash", "webhook_events", ["payload_hash"])
    op.create_index("ix_webhook_events_correlation_key", "webhook_events", ["correlation_key"])
    op.create_index("ix_webhook_events_processing_status", "webhook_events", ["processing_status"])
    # Retry worker scan: retryable rows, oldest first
    op.create_index(
        "ix_webhook_events_retry_scan",
        "webhook_events",
        ["received_at"],
        postgresql_where=sa.text("processing_status IN ('pending', 'failed')"),
    )

    # Document instances
    op.create_table(
        "doc_instances",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("status", sa.String(30), server_default="draft"),
        sa.Column("title", sa.String(255)),
        sa.Column("submission_data", postgresql.JSONB, default={}),
        sa.Column("signwell_document_id", sa.String(100)),
        sa.Column("final_pdf_url", sa.Text),
        sa.Column("seller_signed_at", sa.DateTime(timezone=True)),
        sa.Column("purchaser_signed_at", sa.DateTime(timezone=True)),
        sa.Column("chairman_signed_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("declined_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_doc_instances_status", "doc_instances", ["status"])
    op.create_index("ix_doc_instances_signwell_document_id", "doc_instances", ["signwell_document_id"])

    # Document signers
    op.create_table(
        "doc_signers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "doc_instance_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("doc_instances.id"), nullable=False,
        ),
        sa.Column("role", sa.String(50), nullable=False),
        sa.Column("name", sa.String(200)),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("signing_order", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("access_token", sa.String(128), nullable=False, unique=True),
        sa.Column("token_expires_at", sa.DateTime(timezone=True)),
        sa.Column("viewed_at", sa.DateTime(timezone=True)),
        sa.Column("signed_at", sa.DateTime(timezone=True)),
        sa.Column("declined_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_doc_signers_instance_order", "doc_signers", ["doc_instance_id", "signing_order"])

    # Call logs
    op.create_table(
        "call_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("elevenlabs_conversation_id", sa.String(128), nullable=False, unique=True),
        sa.Column("elevenlabs_agent_id", sa.String(128)),
        sa.Column("caller_phone", sa.String(32)),
        sa.Column("call_direction", sa.String(20), default="inbound"),
        sa.Column("summary", sa.Text),
        sa.Column("transcript", sa.Text),
        sa.Column("recording_url", sa.Text),
        sa.Column("call_started_at", sa.DateTime(timezone=True)),
        sa.Column("call_ended_at", sa.DateTime(timezone=True)),
        sa.Column("duration_seconds", sa.Integer, default=0),
        sa.Column("outcome", sa.String(30), default="completed"),
        sa.Column("call_status", sa.String(30)),
        sa.Column("ended_reason", sa.String(100)),
        sa.Column("call_cost_credits", sa.Float),
        sa.Column("call_cost_usd", sa.Float),
        sa.Column("webhook_status", sa.String(20), default="received"),
        sa.Column("webhook_event_id", postgresql.UUID(as_uuid=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Meeting sessions
    op.create_table(
        "meeting_sessions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("room_name", sa.String(128), nullable=False, unique=True),
        sa.Column("meeting_id", sa.String(128)),
        sa.Column("status", sa.String(20), default="scheduled"),
        sa.Column("started_at", sa.DateTime(timezone=True)),
        sa.Column("ended_at", sa.DateTime(timezone=True)),
        sa.Column("duration_seconds", sa.Integer),
        sa.Column("recording_url", sa.Text),
        sa.Column("webhook_status", sa.String(20), default="received"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Downstream dispatch ledger (exactly-once side effects)
    op.create_table(
        "webhook_dispatches",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("webhook_event_id", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("payload_hash", sa.String(64), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("linked_resource_id", sa.String(64)),
        sa.Column("notification_status", sa.String(20), nullable=False, server_default="skipped"),
        sa.Column("notification_error", sa.Text),
        sa.Column("dispatched_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("source", "payload_hash", name="uq_webhook_dispatches_source_payload_hash"),
    )


def downgrade() -> None:
    op.drop_table("webhook_dispatches")
    op.drop_table("meeting_sessions")
    op.drop_table("call_logs")
    op.drop_index("ix_doc_signers_instance_order", table_name="doc_signers")
    op.drop_table("doc_signers")
    op.drop_index("ix_doc_instances_signwell_document_id", table_name="doc_instances")
    op.drop_index("ix_doc_instances_status", table_name="doc_instances")
    op.drop_table("doc_instances")
    op.drop_index("ix_webhook_events_retry_scan", table_name="webhook_events")
    op.drop_index("ix_webhook_events_processing_status", table_name="webhook_events")
    op.drop_index("ix_webhook_events_correlation_key", table_name="webhook_events")
    op.drop_index("ix_webhook_events_payload_hash", table_name="webhook_events")
    op.drop_index("ix_webhook_events_source", table_name="webhook_events")
    op.drop_index("ix_webhook_events_received_at", table_name="webhook_events")
    op.drop_table("webhook_events")
