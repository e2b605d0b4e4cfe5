"""AI Assistant service: chat with tool calling and proposal storage.

The assistant may read anything the user can read (through the query
service) but never writes domain state. Every action tool call is stored as
an ``AIPendingAction``; only an explicit approval runs it.
"""

import hashlib
import json
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from opustasks.ai.assistant.context import format_context_for_ai
from opustasks.ai.assistant.schemas import (
    AssistantChatRequest,
    AssistantChatResponse,
    PendingActionResponse,
)
from opustasks.ai.assistant.tools import ActionTool, QueryTool, ToolRegistry, create_default_registry
from opustasks.ai.exceptions import (
    AIError,
    AIFeatureDisabledError,
    AIProviderError,
    AIRateLimitError,
    CollaboratorError,
    categorize_error,
)
from opustasks.ai.providers.base import AIMessage, AIProvider, AIResponseWithTools, ToolResult, ToolUse
from opustasks.config import Settings, get_settings
from opustasks.exceptions import NotFoundError
from opustasks.models import AIConversation, AIConversationMessage, AIPendingAction
from opustasks.services.queries import QueryService
from opustasks.services.repository import SqlEntityRepository

logger = structlog.get_logger()

MAX_TOOL_ROUNDS = 5
APPROVAL_NOTE = "\n\n*I've prepared the actions above for your approval.*"
ACTIONS_ONLY_MESSAGE = "I've prepared some actions for you to review."

SYSTEM_PROMPT = """You are an AI collaborator inside a shared task and project management app.

Your role is to help the user manage their tasks, projects, and time effectively. You can analyze their portfolio and propose changes on their behalf.

## Personality
- Friendly but efficient - respect the user's time
- Proactive in suggestions but not pushy
- Be concise - this is a productivity app, not a chatbot

## Capabilities
1. Analyze their portfolio (overcommitment, stale projects, priorities)
2. Review individual projects for gaps or issues
3. Help plan their day
4. Propose creating, updating, completing, and deleting tasks
5. Propose creating and archiving projects

## Important Guidelines
- When taking actions, ALWAYS use the provided tools - don't just describe what you would do
- Write tools only propose changes; the user approves each one before anything happens
- Be specific in your analysis - cite actual project names, task counts, dates
- If the user's request is ambiguous, ask for clarification
- Format lists and data clearly using markdown

When doing a portfolio review, consider:
- How many active projects are there? (More than 7-10 may be overcommitment)
- Which projects have no open tasks? (May be stale)
- Are there overdue tasks? How many?
- Is the inbox overflowing? (More than 10-15 items needs processing)
- Are high-priority tasks getting attention?"""


def _is_transient(error: BaseException) -> bool:
    if isinstance(error, AIRateLimitError):
        return True
    return isinstance(error, AIProviderError) and error.is_transient


class _ProviderWait(wait_base):
    """Exponential backoff, deferring to a provider's Retry-After when it sends one."""

    def __init__(self, settings: Settings):
        self.max_seconds = settings.ai_retry_max_seconds
        self.backoff = wait_exponential(
            multiplier=1, min=settings.ai_retry_min_seconds, max=settings.ai_retry_max_seconds
        )

    def __call__(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(error, AIRateLimitError) and error.retry_after:
            return min(float(error.retry_after), self.max_seconds)
        return self.backoff(retry_state)


class AssistantService:
    """Service for the AI collaborator channel of one user."""

    def __init__(
        self,
        provider: AIProvider,
        db: AsyncSession,
        user_id: UUID,
        settings: Optional[Settings] = None,
        registry: Optional[ToolRegistry] = None,
    ):
        self.provider = provider
        self.db = db
        self.user_id = user_id
        self.settings = settings or get_settings()
        self.registry = registry or create_default_registry()
        self.queries = QueryService(SqlEntityRepository(db))

    # =========================================================================
    # Chat
    # =========================================================================

    async def chat(self, request: AssistantChatRequest, today: Optional[date] = None) -> AssistantChatResponse:
        """Answer one user message, storing any proposed actions.

        Raises:
            AIFeatureDisabledError: if the assistant is switched off
            CollaboratorError: if the provider fails after retries
            NotFoundError: if ``conversation_id`` isn't one of the user's
        """
        if not self.settings.feature_ai_enabled:
            raise AIFeatureDisabledError()

        today = today or date.today()
        conversation = await self._get_or_create_conversation(request)

        snapshot = await self.queries.context_snapshot(self.user_id, today)
        messages = [
            AIMessage(role=m.role, content=m.content)
            for m in request.messages
            if m.content and m.content.strip()
        ]
        messages.append(AIMessage(
            role="user",
            content=f"{format_context_for_ai(snapshot)}\n\n---\n\nUser message: {request.message}",
        ))

        text = ""
        pending: List[AIPendingAction] = []
        tool_uses: Optional[List[ToolUse]] = None
        tool_results: Optional[List[ToolResult]] = None

        for _ in range(MAX_TOOL_ROUNDS):
            response = await self._complete(messages, tool_uses, tool_results)
            text += response.content

            if not response.tool_uses:
                break

            tool_results = []
            ran_query = False
            for use in response.tool_uses:
                tool = self.registry.get_tool(use.name)
                if isinstance(tool, QueryTool):
                    ran_query = True
                    result = await tool.execute(use.input, self.queries, self.user_id, today)
                    tool_results.append(ToolResult(tool_use_id=use.id, content=json.dumps(result, default=str)))
                elif isinstance(tool, ActionTool):
                    action = await self._store_pending_action(conversation.id, tool, use.input)
                    pending.append(action)
                    tool_results.append(ToolResult(
                        tool_use_id=use.id,
                        content=f"Proposed for user approval: {action.description}",
                    ))
                else:
                    tool_results.append(ToolResult(
                        tool_use_id=use.id, content=f"Unknown tool: {use.name}", is_error=True
                    ))

            # Proposals end the turn; only read results need another round
            if not ran_query:
                break
            tool_uses = response.tool_uses

        if pending:
            text = text + APPROVAL_NOTE if text else ACTIONS_ONLY_MESSAGE

        self.db.add(AIConversationMessage(conversation_id=conversation.id, role="user", content=request.message))
        self.db.add(AIConversationMessage(
            conversation_id=conversation.id,
            role="assistant",
            content=text or ACTIONS_ONLY_MESSAGE,
            tool_calls=[{"id": str(a.id), "kind": a.kind} for a in pending] or None,
        ))
        await self.db.flush()

        logger.info(
            "assistant_chat_completed",
            user_id=str(self.user_id),
            conversation_id=str(conversation.id),
            proposals=len(pending),
        )
        return AssistantChatResponse(
            conversation_id=conversation.id,
            message=text,
            pending_actions=[PendingActionResponse.model_validate(a) for a in pending],
        )

    async def _complete(
        self,
        messages: List[AIMessage],
        tool_uses: Optional[List[ToolUse]],
        tool_results: Optional[List[ToolResult]],
    ) -> AIResponseWithTools:
        """Call the provider, retrying transient failures with backoff."""
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, self.settings.ai_max_retries)),
                wait=_ProviderWait(self.settings),
                retry=retry_if_exception(_is_transient),
                reraise=True,
            ):
                with attempt:
                    return await self.provider.complete_with_tools(
                        messages,
                        tools=self.registry.definitions(),
                        tool_uses=tool_uses,
                        tool_results=tool_results,
                        system=SYSTEM_PROMPT,
                    )
        except AIError as e:
            category = categorize_error(e)
            logger.warning(
                "assistant_provider_failed",
                user_id=str(self.user_id),
                category=category.value,
                error=e.message,
            )
            raise CollaboratorError(category, detail=e.message) from e

    # =========================================================================
    # Conversations and pending actions
    # =========================================================================

    async def _get_or_create_conversation(self, request: AssistantChatRequest) -> AIConversation:
        if request.conversation_id is not None:
            result = await self.db.execute(
                select(AIConversation).where(
                    AIConversation.id == request.conversation_id,
                    AIConversation.user_id == self.user_id,
                )
            )
            conversation = result.scalar_one_or_none()
            if conversation is None:
                raise NotFoundError("conversation")
            return conversation

        conversation = AIConversation(user_id=self.user_id, title=request.message[:100])
        self.db.add(conversation)
        await self.db.flush()
        return conversation

    def _compute_action_hash(self, payload: Dict[str, Any]) -> str:
        """Hash of the proposal, so identical proposals aren't stored twice."""
        return hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode()).hexdigest()[:16]

    async def _store_pending_action(
        self,
        conversation_id: UUID,
        tool: ActionTool,
        tool_input: Dict[str, Any],
    ) -> AIPendingAction:
        """Store a proposal for approval, reusing an identical live one."""
        payload = tool.to_payload(tool_input)
        content_hash = self._compute_action_hash(payload)
        now = datetime.now(timezone.utc)

        result = await self.db.execute(
            select(AIPendingAction)
            .where(
                and_(
                    AIPendingAction.user_id == self.user_id,
                    AIPendingAction.kind == tool.kind,
                    AIPendingAction.content_hash == content_hash,
                    AIPendingAction.status == "pending",
                )
            )
            .limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing is not None and not existing.is_expired(now):
            return existing

        action = AIPendingAction(
            conversation_id=conversation_id,
            user_id=self.user_id,
            kind=tool.kind,
            payload=payload,
            description=tool.describe(tool_input),
            content_hash=content_hash,
            status="pending",
            expires_at=now + timedelta(minutes=self.settings.pending_action_ttl_minutes),
        )
        self.db.add(action)
        await self.db.flush()

        logger.info(
            "assistant_action_proposed",
            action_id=str(action.id),
            kind=action.kind,
            user_id=str(self.user_id),
        )
        return action

    async def get_pending_actions(self, conversation_id: Optional[UUID] = None) -> List[AIPendingAction]:
        """Live proposals for this user, oldest first."""
        query = select(AIPendingAction).where(
            AIPendingAction.user_id == self.user_id,
            AIPendingAction.status == "pending",
        )
        if conversation_id is not None:
            query = query.where(AIPendingAction.conversation_id == conversation_id)
        result = await self.db.execute(query.order_by(AIPendingAction.created_at))

        now = datetime.now(timezone.utc)
        return [a for a in result.scalars().all() if not a.is_expired(now)]
