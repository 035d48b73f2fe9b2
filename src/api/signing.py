"""
Signer token endpoints - read access, sign, decline.

The access token in the URL is the only credential. Expiry is checked before
any order logic; signing order is enforced server-side on every action.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from src.database import get_db
from src.exceptions import SigningError
from src.models.doc_signer import DocSigner
from src.schemas.api_responses import (
    DeclineResponse,
    SignerContextResponse,
    SignerSummary,
    SignResponse,
)
from src.services import signing

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/signing", tags=["signing"])


def _http_error(e: SigningError) -> HTTPException:
    return HTTPException(
        status_code=e.status_code,
        detail={"error": str(e), "code": e.code},
    )


def _summarize(signer: DocSigner) -> SignerSummary:
    return SignerSummary(
        role=signer.role,
        name=signer.name,
        signing_order=signer.signing_order,
        status=signer.status,
        signed_at=signer.signed_at,
    )


@router.get("/{token}", response_model=SignerContextResponse)
async def get_signing_context(
    token: str,
    db: AsyncSession = Depends(get_db),
):
    """Signer view of the document. First access marks the signer as viewed."""
    try:
        ctx = await signing.open_signing_context(db, token)
    except SigningError as e:
        raise _http_error(e)

    instance = ctx["instance"]
    return SignerContextResponse(
        doc_instance_id=str(instance.id),
        title=instance.title,
        instance_status=instance.status,
        signer=_summarize(ctx["signer"]),
        signers=[_summarize(s) for s in ctx["signers"]],
        is_current_signer_allowed=ctx["is_current_signer_allowed"],
        final_pdf_url=instance.final_pdf_url,
    )


@router.post("/{token}/sign", response_model=SignResponse)
async def sign_document(
    token: str,
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await signing.sign_with_token(db, token)
    except SigningError as e:
        logger.info("Sign rejected: %s (%s)", e.code, str(e))
        raise _http_error(e)

    return SignResponse(
        instance_status=result["instance"].status,
        all_signed=result["all_signed"],
    )


@router.post("/{token}/decline", response_model=DeclineResponse)
async def decline_document(
    token: str,
    db: AsyncSession = Depends(get_db),
):
    try:
        result = await signing.decline_with_token(db, token)
    except SigningError as e:
        raise _http_error(e)

    return DeclineResponse(instance_status=result["instance"].status)
