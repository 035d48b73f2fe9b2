"""
Domain exceptions for webhook processing and sequential signing.

Processing errors are contained on the webhook_events row by the shared
processing routine. Signing errors raised on the token-access path are
translated to HTTP errors by src/api/signing.py.
"""


class WebhookProcessingError(Exception):
    """Base class for errors raised while processing a provider event."""


class PayloadParseError(WebhookProcessingError):
    """Payload does not match the provider's expected shape."""


class MissingCorrelationKeyError(PayloadParseError):
    """Payload parsed but carries no id linking it to a business record."""


class ResourceNotFoundError(WebhookProcessingError):
    """The business record referenced by the correlation key does not exist."""


class SigningError(Exception):
    """Base class for sequential signing violations."""

    code = "SIGNING_ERROR"
    status_code = 400


class SignerNotFoundError(SigningError):
    code = "INVALID_TOKEN"
    status_code = 404


class TokenExpiredError(SigningError):
    code = "TOKEN_EXPIRED"
    status_code = 403


class SigningOrderError(SigningError, WebhookProcessingError):
    """An earlier signer has not signed yet."""

    code = "ORDER_VIOLATION"
    status_code = 403


class AlreadySignedError(SigningError):
    code = "ALREADY_SIGNED"
    status_code = 400


class DocumentClosedError(SigningError):
    """The document instance is completed or declined."""

    code = "DOCUMENT_CLOSED"
    status_code = 409


class DocumentNotFoundError(SigningError, ResourceNotFoundError):
    code = "DOC_NOT_FOUND"
    status_code = 404
