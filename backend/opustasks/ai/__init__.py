"""AI module for Opus.

Provides the AI collaborator behind a provider-agnostic interface. The
collaborator reads through the visibility-gated query layer and proposes
mutations; it never writes domain state itself.
"""

from opustasks.ai.exceptions import (
    AIError,
    AIFeatureDisabledError,
    AIProviderError,
    AIRateLimitError,
    CollaboratorError,
    CollaboratorErrorCategory,
)
from opustasks.ai.providers.base import AIMessage, AIProvider, AIResponseWithTools

__all__ = [
    # Providers
    "AIProvider",
    "AIMessage",
    "AIResponseWithTools",
    # Errors
    "AIError",
    "AIProviderError",
    "AIRateLimitError",
    "AIFeatureDisabledError",
    "CollaboratorError",
    "CollaboratorErrorCategory",
]
