"""
Database models - import all models here so Alembic can discover them.
"""
from src.models.webhook_event import WebhookEvent
from src.models.webhook_dispatch import WebhookDispatch
from src.models.doc_instance import DocInstance
from src.models.doc_signer import DocSigner
from src.models.call_log import CallLog
from src.models.meeting_session import MeetingSession

__all__ = [
    "WebhookEvent",
    "WebhookDispatch",
    "DocInstance",
    "DocSigner",
    "CallLog",
    "MeetingSession",
]
