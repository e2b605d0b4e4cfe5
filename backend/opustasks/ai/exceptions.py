"""AI module exceptions.

Provider failures are raised as ``AIProviderError`` / ``AIRateLimitError`` by
the providers, then categorized into a user-facing ``CollaboratorError`` once
retries are exhausted.
"""

from enum import Enum
from typing import Optional


class AIError(Exception):
    """Base exception for AI-related errors."""

    def __init__(self, message: str, code: str = "AI_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class AIProviderError(AIError):
    """Error from the AI provider.

    Raised when the underlying provider returns an error, such as
    authentication failures, invalid requests, or service unavailability.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.provider = provider
        self.status_code = status_code
        self.raw_message = message
        super().__init__(
            message=f"[{provider}] {message}",
            code="AI_PROVIDER_ERROR",
        )

    @property
    def is_transient(self) -> bool:
        """Server-side, overload, rate-limit and connection failures are worth retrying."""
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code == 429


class AIRateLimitError(AIError):
    """Rate limit exceeded with the AI provider."""

    def __init__(
        self,
        provider: str,
        message: str,
        retry_after: Optional[int] = None,
    ):
        self.provider = provider
        self.retry_after = retry_after
        super().__init__(
            message=f"[{provider}] Rate limited: {message}",
            code="AI_RATE_LIMITED",
        )


class AIFeatureDisabledError(AIError):
    """The AI collaborator is switched off for this deployment."""

    def __init__(self):
        super().__init__(
            message="The AI assistant is not enabled",
            code="AI_FEATURE_DISABLED",
        )


class CollaboratorErrorCategory(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    RATE_LIMITED = "rate_limited"
    OVERLOADED = "overloaded"
    UNAVAILABLE = "unavailable"
    QUOTA_EXCEEDED = "quota_exceeded"
    GENERIC = "generic"


COLLABORATOR_MESSAGES = {
    CollaboratorErrorCategory.INVALID_CREDENTIALS: "Invalid API key. Please check your key in Settings.",
    CollaboratorErrorCategory.RATE_LIMITED: "Rate limited. Please wait a moment and try again.",
    CollaboratorErrorCategory.UNAVAILABLE: "The AI service is temporarily unavailable. Please try again.",
    CollaboratorErrorCategory.OVERLOADED: "The AI service is overloaded. Please try again in a moment.",
    CollaboratorErrorCategory.QUOTA_EXCEEDED: "API quota exceeded. Please check your Anthropic account.",
    CollaboratorErrorCategory.GENERIC: "Something went wrong. Please try again.",
}


class CollaboratorError(AIError):
    """Proposal generation failed; ``message`` is safe to show the user."""

    def __init__(self, category: CollaboratorErrorCategory, detail: Optional[str] = None):
        self.category = category
        self.detail = detail
        super().__init__(
            message=COLLABORATOR_MESSAGES[category],
            code="AI_COLLABORATOR_ERROR",
        )


def categorize_error(error: Exception) -> CollaboratorErrorCategory:
    """Map a provider failure to one of the user-facing categories.

    Status codes win; the message text is only consulted when the provider
    gave no usable status.
    """
    if isinstance(error, AIRateLimitError):
        return CollaboratorErrorCategory.RATE_LIMITED

    status = getattr(error, "status_code", None)
    text = (getattr(error, "raw_message", None) or str(error)).lower()

    if "insufficient_quota" in text or "credit balance" in text:
        return CollaboratorErrorCategory.QUOTA_EXCEEDED
    if status in (401, 403) or "invalid_api_key" in text or "authentication_error" in text:
        return CollaboratorErrorCategory.INVALID_CREDENTIALS
    if status == 429 or "rate_limit" in text:
        return CollaboratorErrorCategory.RATE_LIMITED
    if status == 529 or "overloaded" in text:
        return CollaboratorErrorCategory.OVERLOADED
    if (status is not None and status >= 500) or "internal server" in text:
        return CollaboratorErrorCategory.UNAVAILABLE
    if status is None and isinstance(error, AIProviderError) and "connection" in text:
        return CollaboratorErrorCategory.UNAVAILABLE
    return CollaboratorErrorCategory.GENERIC
