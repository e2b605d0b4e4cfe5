"""Pydantic schemas for the AI Assistant."""

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """A message in the conversation history."""

    role: Literal["user", "assistant"]
    content: str


class AssistantChatRequest(BaseModel):
    """Request to chat with the assistant."""

    message: str = Field(..., min_length=1)
    conversation_id: Optional[UUID] = None
    messages: List[ChatMessage] = Field(default_factory=list)


class PendingActionResponse(BaseModel):
    """A proposal awaiting approval."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: Optional[UUID] = None
    kind: str
    description: str
    payload: dict
    status: str
    created_at: datetime
    expires_at: datetime


class AssistantChatResponse(BaseModel):
    """Non-streaming response from the assistant."""

    conversation_id: UUID
    message: str
    pending_actions: List[PendingActionResponse] = Field(default_factory=list)


class ApproveActionsRequest(BaseModel):
    """Actions to run, in the order given."""

    action_ids: List[UUID] = Field(..., min_length=1)


class ActionExecutionResult(BaseModel):
    """Result of executing (or failing to execute) one approved action."""

    action_id: UUID
    success: bool
    kind: Optional[str] = None
    entity_id: Optional[UUID] = None
    error_code: Optional[str] = None
    error: Optional[str] = None


class RejectActionResponse(BaseModel):
    action_id: UUID
    status: str
