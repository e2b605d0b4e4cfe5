"""Anthropic Claude AI provider implementation."""

import time
from typing import Any, List, Optional

import anthropic
from anthropic import AsyncAnthropic

from opustasks.ai.exceptions import AIProviderError, AIRateLimitError
from opustasks.ai.providers.base import (
    AIMessage,
    AIProvider,
    AIResponseWithTools,
    ToolDefinition,
    ToolResult,
    ToolUse,
)


class AnthropicProvider(AIProvider):
    """Anthropic Claude implementation.

    Retries are left to the caller (the assistant wraps calls in a tenacity
    policy), so the SDK's own retry loop is disabled.

    Example:
        ```python
        provider = AnthropicProvider(api_key="sk-ant-...")

        response = await provider.complete_with_tools(
            [AIMessage(role="user", content="What's overdue?")],
            tools=ASSISTANT_TOOLS,
        )
        ```
    """

    def __init__(
        self,
        api_key: str,
        default_model: str = "claude-sonnet-4-20250514",
        timeout: float = 60.0,
    ):
        """Initialize the Anthropic provider.

        Args:
            api_key: Anthropic API key
            default_model: Default model to use for requests
            timeout: Request timeout in seconds
        """
        self.client = AsyncAnthropic(
            api_key=api_key,
            timeout=timeout,
            max_retries=0,
        )
        self._default_model = default_model

    @property
    def provider_name(self) -> str:
        return "anthropic"

    @property
    def default_model(self) -> str:
        return self._default_model

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
        """Generate a completion with tool calling support using Claude.

        Raises:
            AIProviderError: If the Anthropic API request fails
            AIRateLimitError: If rate limited by Anthropic
        """
        self._validate_messages(messages)

        model = model or self._default_model
        start_time = time.perf_counter()

        # Separate system message from conversation messages
        system_from_messages = None
        conversation_messages: List[dict[str, Any]] = []

        for msg in messages:
            if msg.role == "system":
                system_from_messages = msg.content
            else:
                conversation_messages.append({
                    "role": msg.role,
                    "content": msg.content,
                })

        system_content = system or system_from_messages

        # Replay the previous tool round: the assistant's calls, then our results
        if tool_uses and tool_results:
            conversation_messages.append({
                "role": "assistant",
                "content": [
                    {"type": "tool_use", "id": use.id, "name": use.name, "input": use.input}
                    for use in tool_uses
                ],
            })
            conversation_messages.append({
                "role": "user",
                "content": [
                    {
                        "type": "tool_result",
                        "tool_use_id": result.tool_use_id,
                        "content": result.content if isinstance(result.content, str) else str(result.content),
                        "is_error": result.is_error,
                    }
                    for result in tool_results
                ],
            })

        anthropic_tools = [
            {
                "name": tool.name,
                "description": tool.description,
                "input_schema": tool.input_schema,
            }
            for tool in tools
        ]

        try:
            request_kwargs = {
                "model": model,
                "messages": conversation_messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "tools": anthropic_tools,
            }

            if system_content:
                request_kwargs["system"] = system_content

            response = await self.client.messages.create(**request_kwargs)

            latency_ms = int((time.perf_counter() - start_time) * 1000)

            text_content = ""
            parsed_tool_uses = []

            for block in response.content:
                if block.type == "text":
                    text_content += block.text
                elif block.type == "tool_use":
                    parsed_tool_uses.append(ToolUse(
                        id=block.id,
                        name=block.name,
                        input=dict(block.input),
                    ))

            return AIResponseWithTools(
                content=text_content,
                model=model,
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
                finish_reason=response.stop_reason or "end_turn",
                latency_ms=latency_ms,
                tool_uses=parsed_tool_uses,
            )

        except anthropic.RateLimitError as e:
            raise AIRateLimitError(
                provider=self.provider_name,
                message=str(e),
                retry_after=getattr(e, "retry_after", None),
            )
        except anthropic.APIConnectionError as e:
            raise AIProviderError(
                provider=self.provider_name,
                message=f"connection error: {e}",
            )
        except anthropic.APIError as e:
            raise AIProviderError(
                provider=self.provider_name,
                message=str(e),
                status_code=getattr(e, "status_code", None),
            )
