"""
Document instance - one generated legal document moving through sequential signing.
Lifecycle: draft → partially_signed → completed.
Terminal states: completed, declined.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class DocStatus:
    DRAFT = "draft"
    PARTIALLY_SIGNED = "partially_signed"
    COMPLETED = "completed"
    DECLINED = "declined"

    TERMINAL = (COMPLETED, DECLINED)


# signing_order → per-role timestamp column
SIGNED_AT_FIELDS = {
    1: "seller_signed_at",
    2: "purchaser_signed_at",
    3: "chairman_signed_at",
}


class DocInstance(Base):
    __tablename__ = "doc_instances"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    status: Mapped[str] = mapped_column(
        String(30), default=DocStatus.DRAFT, server_default=DocStatus.DRAFT, index=True
    )
    title: Mapped[Optional[str]] = mapped_column(String(255))
    submission_data: Mapped[Optional[dict]] = mapped_column(JSONB, default=dict)

    # E-signature provider
    signwell_document_id: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    final_pdf_url: Mapped[Optional[str]] = mapped_column(Text)

    # Per-role signature timestamps (set by signing_order)
    seller_signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    purchaser_signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    chairman_signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    declined_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in DocStatus.TERMINAL
