"""AI Provider implementations."""

from functools import lru_cache

from opustasks.ai.providers.anthropic import AnthropicProvider
from opustasks.ai.providers.base import (
    AIMessage,
    AIProvider,
    AIResponseWithTools,
    ToolDefinition,
    ToolResult,
    ToolUse,
)
from opustasks.config import get_settings


@lru_cache
def get_provider() -> AIProvider:
    """Get the configured AI provider instance.

    Returns:
        AIProvider instance built from settings
    """
    settings = get_settings()
    return AnthropicProvider(
        api_key=settings.anthropic_api_key.get_secret_value(),
        default_model=settings.anthropic_model,
        timeout=settings.anthropic_timeout,
    )


__all__ = [
    "AIProvider",
    "AIMessage",
    "AIResponseWithTools",
    "ToolDefinition",
    "ToolUse",
    "ToolResult",
    "AnthropicProvider",
    "get_provider",
]
