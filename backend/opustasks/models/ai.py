"""AI conversation and pending action models."""

from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from opustasks.db.base import BaseModel


class AIConversation(BaseModel):
    """Chat session between a user and the AI collaborator."""

    __tablename__ = "ai_conversations"

    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Auto-generated from the first message
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)


class AIConversationMessage(BaseModel):
    """Single message in a conversation, with any tool calls the model made."""

    __tablename__ = "ai_conversation_messages"

    conversation_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ai_conversations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # user, assistant
    content: Mapped[str] = mapped_column(Text, nullable=False)
    tool_calls: Mapped[list | None] = mapped_column(JSON, nullable=True)


class AIPendingAction(BaseModel):
    """A mutation proposed by the AI collaborator, awaiting explicit approval.

    Storing a proposal never touches domain state; only approval runs the
    mutation through the executor.
    """

    __tablename__ = "ai_pending_actions"

    conversation_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ai_conversations.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Proposed mutation, in the executor's wire format
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    # Identical proposals within the expiry window collapse into one row
    content_hash: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)

    # pending, executed, failed, rejected, expired
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)

    executed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    result: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    def is_expired(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        # SQLite hands back naive datetimes
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now
