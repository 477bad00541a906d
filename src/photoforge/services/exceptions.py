"""Error taxonomy for photo generation and status reconciliation.

Every error raised by the orchestrator, the reconciler or the provider adapters
is a GenerationError subclass. Each subclass carries:
- error_code: stable machine-readable code returned to API clients
- status_code: HTTP status used by the API exception handler
- message: default human-readable text (overridable per instance)

The original exception is kept as ``cause`` (and as ``__cause__`` when raised
with ``from``) so it can be logged with full context.
"""

from typing import Any


class GenerationError(Exception):
    """Base exception for all generation pipeline errors."""

    status_code: int = 500
    error_code: str = "GENERATION_ERROR"
    message: str = "Photo generation failed"

    def __init__(self, message: str | None = None, *, cause: Any = None, **context: Any):
        if message:
            self.message = message
        self.cause = cause
        self.context = context
        super().__init__(self.message)

    def log_fields(self) -> dict[str, Any]:
        """Structured fields for logging this error."""
        fields: dict[str, Any] = {
            "error_code": self.error_code,
            "error_message": self.message,
            **self.context,
        }
        if self.cause is not None:
            fields["cause"] = repr(self.cause)
        return fields


# Request validation


class InvalidRequest(GenerationError):
    status_code = 400
    error_code = "INVALID_REQUEST"
    message = "Invalid request"


class InvalidQuantity(GenerationError):
    status_code = 400
    error_code = "INVALID_QUANTITY"
    message = "Wrong quantity"


class PromptMissing(GenerationError):
    status_code = 400
    error_code = "PROMPT_MISSING"
    message = "Theme not selected"


# Account eligibility


class Unauthenticated(GenerationError):
    status_code = 401
    error_code = "UNAUTHENTICATED"
    message = "Session not valid"


class PaymentRequired(GenerationError):
    status_code = 402
    error_code = "PAYMENT_REQUIRED"
    message = "Payment required"


class ModelNotReady(GenerationError):
    status_code = 409
    error_code = "MODEL_NOT_READY"
    message = "Model not trained"


class QuotaExhausted(GenerationError):
    status_code = 403
    error_code = "QUOTA_EXHAUSTED"
    message = "You have already generated the maximum number of photos"


# External collaborators


class ProviderUnavailable(GenerationError):
    """Generation provider call failed.

    ``retryable`` is a hint for callers: timeouts, rate limits and 5xx
    responses are retryable, authentication and validation failures are not.
    Nothing inside the core retries.
    """

    status_code = 502
    error_code = "PROVIDER_UNAVAILABLE"
    message = "Image generation provider unavailable"

    def __init__(
        self,
        message: str | None = None,
        *,
        cause: Any = None,
        retryable: bool = False,
        **context: Any,
    ):
        super().__init__(message, cause=cause, **context)
        self.retryable = retryable


class PersistenceError(GenerationError):
    status_code = 500
    error_code = "PERSISTENCE_ERROR"
    message = "Error on insert prediction"


class OutputNotReady(GenerationError):
    status_code = 409
    error_code = "OUTPUT_NOT_READY"
    message = "Missing url"


class EnhancementFailed(GenerationError):
    status_code = 502
    error_code = "ENHANCEMENT_FAILED"
    message = "Face restoration failed"


class ArtifactStoreError(GenerationError):
    """Artifact download or upload failed (wrapped as EnhancementFailed by the reconciler)."""

    status_code = 502
    error_code = "ARTIFACT_STORE_ERROR"
    message = "Artifact storage failed"


class AuthServiceUnavailable(GenerationError):
    """The session verification API could not be reached."""

    status_code = 502
    error_code = "AUTH_UNAVAILABLE"
    message = "Session verification unavailable"
