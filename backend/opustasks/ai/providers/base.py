"""Abstract base class for AI providers.

This module defines the interface that all AI providers must implement,
so the assistant can run against Anthropic in production and a scripted
provider in tests.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Literal, Optional


@dataclass
class AIMessage:
    """A message in an AI conversation.

    Attributes:
        role: The role of the message sender ('system', 'user', or 'assistant')
        content: The text content of the message
    """
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass
class ToolDefinition:
    """A tool the model may call, described by a JSON schema."""
    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass
class ToolUse:
    """A tool call requested by the model."""
    id: str
    name: str
    input: dict[str, Any]


@dataclass
class ToolResult:
    """The answer to a ``ToolUse``, fed back on the next turn."""
    tool_use_id: str
    content: Any
    is_error: bool = False


@dataclass
class AIResponseWithTools:
    """Response from an AI provider that may contain tool calls.

    Attributes:
        content: Concatenated text blocks
        model: The model identifier used for generation
        input_tokens: Number of tokens in the input/prompt
        output_tokens: Number of tokens in the generated response
        finish_reason: Why generation stopped ('end_turn', 'tool_use', ...)
        tool_uses: Tool calls, in the order the model made them
    """
    content: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    finish_reason: str = "end_turn"
    latency_ms: Optional[int] = None
    tool_uses: List[ToolUse] = field(default_factory=list)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class AIProvider(ABC):
    """Abstract base class for AI providers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the name of this provider (e.g., 'anthropic')."""
        pass

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Return the default model identifier for this provider."""
        pass

    @abstractmethod
    async def complete_with_tools(
        self,
        messages: List[AIMessage],
        tools: List[ToolDefinition],
        tool_uses: Optional[List[ToolUse]] = None,
        tool_results: Optional[List[ToolResult]] = None,
        model: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 4096,
        system: Optional[str] = None,
    ) -> AIResponseWithTools:
        """Generate a completion that may request tool calls.

        Args:
            messages: Conversation so far
            tools: Tools the model may call
            tool_uses: Tool calls from the previous assistant turn, echoed back
            tool_results: Results for ``tool_uses``
            model: Model identifier (uses default if not specified)
            temperature: Sampling temperature (0.0 to 1.0)
            max_tokens: Maximum tokens to generate
            system: Optional system prompt

        Raises:
            AIProviderError: If the provider request fails
            AIRateLimitError: If the provider rate limits the request
        """
        pass

    def _validate_messages(self, messages: List[AIMessage]) -> None:
        """Validate message list before sending to provider.

        Raises:
            ValueError: If messages are invalid
        """
        if not messages:
            raise ValueError("Messages list cannot be empty")

        for msg in messages:
            if msg.role not in ("system", "user", "assistant"):
                raise ValueError(f"Invalid message role: {msg.role}")
            if not msg.content:
                raise ValueError("Message content cannot be empty")
