"""AI Assistant endpoints for context-aware chat with tool calling."""

from typing import Annotated, List, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query

from opustasks.ai.assistant.executors import approve_actions, expire_stale_actions, reject_action
from opustasks.ai.assistant.schemas import (
    ActionExecutionResult,
    ApproveActionsRequest,
    AssistantChatRequest,
    AssistantChatResponse,
    PendingActionResponse,
    RejectActionResponse,
)
from opustasks.ai.assistant.service import AssistantService
from opustasks.ai.providers import AIProvider, get_provider
from opustasks.api.deps import Executor
from opustasks.api.v1.auth import CurrentUser
from opustasks.db.session import DBSession

router = APIRouter()
logger = structlog.get_logger()

Provider = Annotated[AIProvider, Depends(get_provider)]


@router.post("/chat", response_model=AssistantChatResponse)
async def chat(
    request: AssistantChatRequest,
    current_user: CurrentUser,
    db: DBSession,
    provider: Provider,
) -> AssistantChatResponse:
    """Chat with the assistant. Write requests come back as pending actions."""
    service = AssistantService(provider=provider, db=db, user_id=current_user.id)
    return await service.chat(request)


@router.get("/pending-actions", response_model=List[PendingActionResponse])
async def list_pending_actions(
    current_user: CurrentUser,
    db: DBSession,
    provider: Provider,
    conversation_id: Optional[UUID] = Query(None),
) -> List[PendingActionResponse]:
    """Live proposals awaiting the user's decision."""
    await expire_stale_actions(db, current_user.id)
    service = AssistantService(provider=provider, db=db, user_id=current_user.id)
    actions = await service.get_pending_actions(conversation_id)
    return [PendingActionResponse.model_validate(a) for a in actions]


@router.post("/actions/approve", response_model=List[ActionExecutionResult])
async def approve(
    request: ApproveActionsRequest,
    current_user: CurrentUser,
    db: DBSession,
    executor: Executor,
) -> List[ActionExecutionResult]:
    """Run the listed proposals in order, each on its own."""
    return await approve_actions(db, current_user.id, request.action_ids, executor=executor)


@router.post("/actions/{action_id}/reject", response_model=RejectActionResponse)
async def reject(action_id: UUID, current_user: CurrentUser, db: DBSession) -> RejectActionResponse:
    """Discard a proposal without touching any task or project."""
    action = await reject_action(db, current_user.id, action_id)
    return RejectActionResponse(action_id=action.id, status=action.status)
