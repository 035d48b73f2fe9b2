"""
API request/response schemas for the webhook, retry and signing endpoints.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class WebhookAck(BaseModel):
    """Provider acknowledgement. Always 200 once the event is stored."""
    received: bool = True
    event_id: Optional[str] = None
    status: Optional[str] = None


class RetryRunRequest(BaseModel):
    limit: Optional[int] = Field(default=None, ge=1)


class RetryRunResponse(BaseModel):
    ok: bool = True
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    total_pending: int = 0


class WebhookEventStats(BaseModel):
    by_status: dict[str, int]
    by_source: dict[str, dict[str, int]]
    total: int
    generated_at: str


class RequeueResponse(BaseModel):
    event_id: str
    status: str
    processing_attempts: int
    requeued: bool


class SignerSummary(BaseModel):
    role: str
    name: Optional[str] = None
    signing_order: int
    status: str
    signed_at: Optional[datetime] = None


class SignerContextResponse(BaseModel):
    doc_instance_id: str
    title: Optional[str] = None
    instance_status: str
    signer: SignerSummary
    signers: list[SignerSummary]
    is_current_signer_allowed: bool
    final_pdf_url: Optional[str] = None


class SignResponse(BaseModel):
    success: bool = True
    instance_status: str
    all_signed: bool


class DeclineResponse(BaseModel):
    success: bool = True
    instance_status: str
