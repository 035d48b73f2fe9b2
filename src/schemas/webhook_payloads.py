"""
Webhook payload schemas - raw input from each provider.
Each provider payload is parsed at the boundary into a NormalizedEvent; the
raw dict is kept on the WebhookEvent row for audit only.
"""
from datetime import datetime, timezone
from typing import Any, Optional, Union
from pydantic import BaseModel, Field, ValidationError, model_validator

from src.exceptions import MissingCorrelationKeyError, PayloadParseError

# Cost per minute for conversational AI when the provider reports no credits
COST_PER_MINUTE = 0.07
COST_PER_CREDIT = 0.00003


def from_unix(ts: Optional[float]) -> Optional[datetime]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


# --- ElevenLabs post-call ---

class TranscriptTurn(BaseModel):
    role: str = "unknown"
    message: Optional[str] = None
    time_in_call_secs: Optional[float] = None


class ElevenLabsAnalysis(BaseModel):
    summary: Optional[str] = None
    transcript_summary: Optional[str] = None
    call_successful: Optional[Union[bool, str]] = None
    data_collection_results: dict[str, Any] = Field(default_factory=dict)


class ElevenLabsMetadata(BaseModel):
    start_time_unix_secs: Optional[float] = None
    call_duration_secs: Optional[float] = None


class ElevenLabsCall(BaseModel):
    from_number: Optional[str] = None
    to_number: Optional[str] = None
    recording_url: Optional[str] = None
    call_cost_credits: Optional[float] = None
    ended_reason: Optional[str] = None


class ElevenLabsConversation(BaseModel):
    conversation_id: Optional[str] = None
    agent_id: Optional[str] = None
    status: Optional[str] = None
    start_time_unix_secs: Optional[float] = None
    end_time_unix_secs: Optional[float] = None
    call_duration_secs: Optional[float] = None
    transcript: list[TranscriptTurn] = Field(default_factory=list)
    analysis: ElevenLabsAnalysis = Field(default_factory=ElevenLabsAnalysis)
    metadata: ElevenLabsMetadata = Field(default_factory=ElevenLabsMetadata)
    call: ElevenLabsCall = Field(default_factory=ElevenLabsCall)

    def transcript_text(self) -> Optional[str]:
        if not self.transcript:
            return None
        return "\n".join(f"{t.role}: {t.message or ''}" for t in self.transcript)

    def duration_seconds(self) -> int:
        duration = self.call_duration_secs or self.metadata.call_duration_secs
        if not duration and self.end_time_unix_secs and self.start_time_unix_secs:
            duration = self.end_time_unix_secs - self.start_time_unix_secs
        return int(round(duration or 0))

    def started_at(self) -> Optional[datetime]:
        return from_unix(self.start_time_unix_secs or self.metadata.start_time_unix_secs)

    def ended_at(self) -> Optional[datetime]:
        if self.end_time_unix_secs:
            return from_unix(self.end_time_unix_secs)
        started = self.started_at()
        duration = self.duration_seconds()
        if started and duration:
            return from_unix(started.timestamp() + duration)
        return None

    def outcome(self) -> str:
        results = self.analysis.data_collection_results
        if results.get("callback_requested"):
            return "callback_requested"
        if results.get("declined"):
            return "declined"
        if results.get("confirmed"):
            return "confirmed"
        return "completed"

    def summary(self) -> Optional[str]:
        return self.analysis.summary or self.analysis.transcript_summary

    def cost_usd(self) -> float:
        if self.call.call_cost_credits:
            return self.call.call_cost_credits * COST_PER_CREDIT
        return (self.duration_seconds() / 60) * COST_PER_MINUTE


class ElevenLabsPostCallPayload(BaseModel):
    """ElevenLabs conversational AI post-call webhook."""
    type: str = "post_call_transcription"
    event_type: Optional[str] = None
    event_timestamp: Optional[float] = None
    data: ElevenLabsConversation

    @property
    def kind(self) -> str:
        return self.event_type or self.type

    @property
    def correlation_key(self) -> Optional[str]:
        return self.data.conversation_id


# --- SignWell ---

class SignWellFile(BaseModel):
    url: str
    name: Optional[str] = None


class SignWellRecipient(BaseModel):
    id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    signing_order: Optional[int] = None
    status: Optional[str] = None


class SignWellDocument(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    files: list[SignWellFile] = Field(default_factory=list)
    recipients: list[SignWellRecipient] = Field(default_factory=list)


class SignWellData(BaseModel):
    document: SignWellDocument = Field(default_factory=SignWellDocument)
    recipient: Optional[SignWellRecipient] = None
    signing_order: Optional[int] = None


class SignWellEventPayload(BaseModel):
    """SignWell document event (document_viewed, document_signed, document_completed, document_declined)."""
    event_type: str
    data: SignWellData = Field(default_factory=SignWellData)

    @model_validator(mode="before")
    @classmethod
    def _lift_event_type(cls, values: Any) -> Any:
        # Provider also nests the type as {"event": {"type": ...}}
        if isinstance(values, dict) and "event_type" not in values:
            event = values.get("event")
            if isinstance(event, dict) and event.get("type"):
                values = {**values, "event_type": event["type"]}
        return values

    @property
    def kind(self) -> str:
        return self.event_type

    @property
    def correlation_key(self) -> Optional[str]:
        metadata = self.data.document.metadata
        key = metadata.get("instanceId") or metadata.get("instance_id")
        return str(key) if key else None

    @property
    def signing_order(self) -> Optional[int]:
        if self.data.signing_order is not None:
            return self.data.signing_order
        if self.data.recipient is not None:
            return self.data.recipient.signing_order
        return None

    @property
    def signer_email(self) -> Optional[str]:
        return self.data.recipient.email if self.data.recipient else None

    @property
    def final_pdf_url(self) -> Optional[str]:
        files = self.data.document.files
        return files[0].url if files else None


# --- Daily ---

class DailyEventBody(BaseModel):
    room: Optional[str] = None
    room_name: Optional[str] = None
    meeting_id: Optional[str] = None
    start_ts: Optional[float] = None
    end_ts: Optional[float] = None
    duration: Optional[float] = None
    download_link: Optional[str] = None
    recording_id: Optional[str] = None


class DailyEventPayload(BaseModel):
    """Daily webhook (meeting.started, meeting.ended, recording.ready-to-download)."""
    type: str
    id: Optional[str] = None
    event_ts: Optional[float] = None
    payload: DailyEventBody = Field(default_factory=DailyEventBody)

    @property
    def kind(self) -> str:
        return self.type

    @property
    def correlation_key(self) -> Optional[str]:
        return self.payload.room or self.payload.room_name


ProviderPayload = Union[ElevenLabsPostCallPayload, SignWellEventPayload, DailyEventPayload]

_PAYLOAD_MODELS: dict[str, type[BaseModel]] = {
    "elevenlabs": ElevenLabsPostCallPayload,
    "signwell": SignWellEventPayload,
    "daily": DailyEventPayload,
}


class NormalizedEvent(BaseModel):
    """Provider-independent view of an inbound event."""
    source: str
    event_type: str
    correlation_key: Optional[str] = None
    payload: ProviderPayload

    def require_correlation_key(self) -> str:
        if not self.correlation_key:
            raise MissingCorrelationKeyError(
                f"{self.source} {self.event_type} event has no correlation key"
            )
        return self.correlation_key


def parse_provider_payload(source: str, raw: Any) -> NormalizedEvent:
    """
    Parse a raw provider payload into a NormalizedEvent.
    Raises PayloadParseError on unknown source or malformed shape; a missing
    correlation key is NOT an error here (see require_correlation_key).
    """
    model_cls = _PAYLOAD_MODELS.get(source)
    if model_cls is None:
        raise PayloadParseError(f"Unknown webhook source: {source}")
    if not isinstance(raw, dict):
        raise PayloadParseError(f"{source} payload must be a JSON object")

    try:
        payload = model_cls.model_validate(raw)
    except ValidationError as e:
        raise PayloadParseError(f"Malformed {source} payload: {e.error_count()} validation error(s)") from e

    return NormalizedEvent(
        source=source,
        event_type=payload.kind,
        correlation_key=payload.correlation_key,
        payload=payload,
    )


def guess_event_type(raw: Any) -> str:
    """Best-effort event type for audit rows whose payload failed to parse."""
    if isinstance(raw, dict):
        for key in ("event_type", "type"):
            value = raw.get(key)
            if isinstance(value, str) and value:
                return value[:80]
        event = raw.get("event")
        if isinstance(event, dict) and isinstance(event.get("type"), str):
            return event["type"][:80]
    return "unknown"
