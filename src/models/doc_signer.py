"""
Document signer - one party in a sequential signing flow.
A signer with signing_order n may sign only after every lower order has signed.
"""
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime, ForeignKey, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from src.database import Base


class SignerStatus:
    PENDING = "pending"
    VIEWED = "viewed"
    SIGNED = "signed"
    DECLINED = "declined"


class DocSigner(Base):
    __tablename__ = "doc_signers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    doc_instance_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("doc_instances.id"), nullable=False
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False)  # seller, purchaser, chairman
    name: Mapped[Optional[str]] = mapped_column(String(200))
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    signing_order: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=SignerStatus.PENDING, server_default=SignerStatus.PENDING
    )

    # Token-based access
    access_token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    token_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    declined_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_doc_signers_instance_order", "doc_instance_id", "signing_order"),
    )
