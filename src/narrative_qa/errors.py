"""Error taxonomy shared by the retrieval and routing layers."""

from __future__ import annotations


class NarrativeQAError(Exception):
    """Base error carrying a stable code and a user-safe message."""

    code = "ENGINE_ERROR"
    retryable = False
    default_user_message = "Something went wrong while answering your question."

    def __init__(self, message: str, *, user_message: str | None = None) -> None:
        super().__init__(message)
        self.user_message = user_message or self.default_user_message


class ValidationError(NarrativeQAError):
    """Rejected input. Raised before any I/O and never retried."""

    code = "VALIDATION_ERROR"
    default_user_message = "Invalid input provided."


class StoreUnavailable(NarrativeQAError):
    """Embedding or profile backend could not be listed or read."""

    code = "STORE_UNAVAILABLE"
    retryable = True
    default_user_message = "The story archive is temporarily unavailable."


class InferenceError(NarrativeQAError):
    """Completion endpoint failed or returned nothing usable."""

    code = "INFERENCE_ERROR"
    retryable = True
    default_user_message = "The language model is temporarily unavailable."


class RouterExhausted(NarrativeQAError):
    """Both the primary handler and the retrieval fallback failed."""

    code = "ROUTER_EXHAUSTED"
    default_user_message = (
        "I encountered an error coordinating your request. "
        "Please try again or rephrase your question."
    )
