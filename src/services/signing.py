"""
Sequential signing state machine.

Per signer:   pending → viewed → signed | declined
Per document: draft → partially_signed → completed | declined

Rules:
- A signer may sign only when every lower signing_order has signed
  (is_current_signer_allowed fails closed).
- Viewing is order-independent.
- Completion comes only from the provider's terminal event, which is
  authoritative over local state and carries the final PDF URL.
- completed and declined are terminal: later transitions are ignored.

Order is enforced by read-then-check at access time, not by a database
constraint. Two signers acting at the same order position concurrently is a
known gap.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.exceptions import (
    AlreadySignedError,
    DocumentClosedError,
    DocumentNotFoundError,
    PayloadParseError,
    SignerNotFoundError,
    SigningOrderError,
    TokenExpiredError,
)
from src.models.doc_instance import DocInstance, DocStatus, SIGNED_AT_FIELDS
from src.models.doc_signer import DocSigner, SignerStatus
from src.utils.backoff import ensure_aware, utcnow

logger = logging.getLogger(__name__)


async def load_signers(db: AsyncSession, doc_instance_id) -> list[DocSigner]:
    result = await db.execute(
        select(DocSigner)
        .where(DocSigner.doc_instance_id == doc_instance_id)
        .order_by(DocSigner.signing_order)
    )
    return list(result.scalars().all())


def is_current_signer_allowed(signers: list[DocSigner], signer: DocSigner) -> bool:
    """False if any signer with a lower signing_order has not signed."""
    for other in signers:
        if other.signing_order < signer.signing_order and other.status != SignerStatus.SIGNED:
            return False
    return True


def _earlier_orders_signed(signers: list[DocSigner], signing_order: int) -> bool:
    return all(
        s.status == SignerStatus.SIGNED for s in signers if s.signing_order < signing_order
    )


def _stamp_role(instance: DocInstance, signing_order: int, now: datetime) -> None:
    field = SIGNED_AT_FIELDS.get(signing_order)
    if field and getattr(instance, field) is None:
        setattr(instance, field, now)


def _log_ignored(instance: DocInstance, action: str) -> None:
    logger.info(
        "Ignoring %s on %s document %s",
        action, instance.status, str(instance.id)[:8],
        extra={"doc_instance_id": str(instance.id)},
    )


def mark_viewed(signer: DocSigner, now: Optional[datetime] = None) -> bool:
    """pending → viewed on first context retrieval. Returns True if changed."""
    if signer.status != SignerStatus.PENDING:
        return False
    signer.status = SignerStatus.VIEWED
    signer.viewed_at = now or utcnow()
    return True


def record_signature(
    instance: DocInstance,
    signers: list[DocSigner],
    signer: DocSigner,
    now: Optional[datetime] = None,
) -> None:
    """Local signing action by a token holder. Never completes the document."""
    now = now or utcnow()
    if instance.is_terminal:
        raise DocumentClosedError(f"Document is {instance.status}")
    if signer.status == SignerStatus.SIGNED:
        raise AlreadySignedError("Already signed")
    if signer.status == SignerStatus.DECLINED:
        raise DocumentClosedError("Signer has declined")
    if not is_current_signer_allowed(signers, signer):
        raise SigningOrderError("Previous signer must complete first")

    signer.status = SignerStatus.SIGNED
    signer.signed_at = now
    _stamp_role(instance, signer.signing_order, now)
    instance.status = DocStatus.PARTIALLY_SIGNED
    logger.info(
        "Signer %s (order %d) signed document %s",
        signer.role, signer.signing_order, str(instance.id)[:8],
        extra={"doc_instance_id": str(instance.id)},
    )


def record_provider_signature(
    instance: DocInstance,
    signers: list[DocSigner],
    signing_order: Optional[int],
    email: Optional[str] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Apply a provider "document_signed" event. Returns True if state changed.
    An out-of-order delivery raises SigningOrderError so the event is retried
    after the earlier signer's event lands.
    """
    now = now or utcnow()
    if instance.is_terminal:
        _log_ignored(instance, "document_signed")
        return False

    signer = None
    if signing_order is not None:
        signer = next((s for s in signers if s.signing_order == signing_order), None)
    if signer is None and email:
        signer = next((s for s in signers if s.email.lower() == email.lower()), None)
        if signer is not None:
            signing_order = signer.signing_order
    if signing_order is None:
        raise PayloadParseError("document_signed event has no signing order or known signer")

    if signer is not None and signer.status == SignerStatus.SIGNED:
        _stamp_role(instance, signing_order, signer.signed_at or now)
        return False
    if not _earlier_orders_signed(signers, signing_order):
        raise SigningOrderError(
            f"Signature for order {signing_order} arrived before earlier signers"
        )

    if signer is not None:
        signer.status = SignerStatus.SIGNED
        signer.signed_at = now
    _stamp_role(instance, signing_order, now)
    instance.status = DocStatus.PARTIALLY_SIGNED
    logger.info(
        "Provider signature recorded: order %d on document %s",
        signing_order, str(instance.id)[:8],
        extra={"doc_instance_id": str(instance.id)},
    )
    return True


def record_decline(
    instance: DocInstance,
    signer: Optional[DocSigner] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Any signer declining moves the document to declined (terminal)."""
    now = now or utcnow()
    if instance.is_terminal:
        _log_ignored(instance, "decline")
        return False

    if signer is not None:
        signer.status = SignerStatus.DECLINED
        signer.declined_at = now
    instance.status = DocStatus.DECLINED
    instance.declined_at = now
    logger.info(
        "Document %s declined", str(instance.id)[:8],
        extra={"doc_instance_id": str(instance.id)},
    )
    return True


def complete_instance(
    instance: DocInstance,
    signers: list[DocSigner],
    final_pdf_url: Optional[str],
    now: Optional[datetime] = None,
) -> bool:
    """Provider "all parties signed" event. Authoritative over local state."""
    now = now or utcnow()
    if instance.status == DocStatus.DECLINED:
        _log_ignored(instance, "document_completed")
        return False
    if instance.status == DocStatus.COMPLETED:
        if final_pdf_url and not instance.final_pdf_url:
            instance.final_pdf_url = final_pdf_url
            return True
        return False

    for signer in signers:
        if signer.status != SignerStatus.SIGNED:
            signer.status = SignerStatus.SIGNED
            signer.signed_at = signer.signed_at or now
        _stamp_role(instance, signer.signing_order, signer.signed_at)

    instance.status = DocStatus.COMPLETED
    instance.completed_at = now
    if final_pdf_url:
        instance.final_pdf_url = final_pdf_url
    logger.info(
        "Document %s completed", str(instance.id)[:8],
        extra={"doc_instance_id": str(instance.id)},
    )
    return True


# --- Token access ---

async def get_signer_by_token(
    db: AsyncSession,
    access_token: str,
    now: Optional[datetime] = None,
) -> DocSigner:
    """Resolve a signer by access token. Expiry is checked before any order logic."""
    result = await db.execute(
        select(DocSigner).where(DocSigner.access_token == access_token)
    )
    signer = result.scalar_one_or_none()
    if signer is None:
        raise SignerNotFoundError("Invalid or expired access token")

    expires_at = ensure_aware(signer.token_expires_at)
    if expires_at is not None and expires_at < (now or utcnow()):
        raise TokenExpiredError("Access token has expired")
    return signer


async def _load_instance(db: AsyncSession, signer: DocSigner) -> DocInstance:
    instance = await db.get(DocInstance, signer.doc_instance_id)
    if instance is None:
        raise DocumentNotFoundError("Document not found")
    return instance


async def open_signing_context(db: AsyncSession, access_token: str) -> dict:
    """Read access for a signer: marks viewed and reports whether signing is allowed."""
    now = utcnow()
    signer = await get_signer_by_token(db, access_token, now)
    instance = await _load_instance(db, signer)
    signers = await load_signers(db, instance.id)
    mark_viewed(signer, now)
    await db.flush()

    return {
        "signer": signer,
        "instance": instance,
        "signers": signers,
        "is_current_signer_allowed": (
            not instance.is_terminal
            and signer.status not in (SignerStatus.SIGNED, SignerStatus.DECLINED)
            and is_current_signer_allowed(signers, signer)
        ),
    }


async def sign_with_token(db: AsyncSession, access_token: str) -> dict:
    now = utcnow()
    signer = await get_signer_by_token(db, access_token, now)
    instance = await _load_instance(db, signer)
    signers = await load_signers(db, instance.id)
    record_signature(instance, signers, signer, now)
    await db.flush()
    return {
        "signer": signer,
        "instance": instance,
        "all_signed": all(s.status == SignerStatus.SIGNED for s in signers),
    }


async def decline_with_token(db: AsyncSession, access_token: str) -> dict:
    now = utcnow()
    signer = await get_signer_by_token(db, access_token, now)
    instance = await _load_instance(db, signer)
    if instance.is_terminal:
        raise DocumentClosedError(f"Document is {instance.status}")
    record_decline(instance, signer, now)
    await db.flush()
    return {"signer": signer, "instance": instance}
