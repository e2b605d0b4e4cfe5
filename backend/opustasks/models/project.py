"""Project, Section and Task models."""

from datetime import date, datetime, time
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from opustasks.db.base import Base, BaseModel, CreatedAtMixin, UUIDMixin

DEFAULT_PROJECT_COLOR = "#808080"


class TaskStatus(str, Enum):
    """Lifecycle states of a task."""

    OPEN = "open"
    DONE = "done"
    CANCELLED = "cancelled"


class Project(BaseModel):
    """Project owned by exactly one user, optionally nested under a parent.

    Projects form a forest: ``parent_id`` is checked for cycles on every write.
    Shares never propagate from a parent to its children.
    """

    __tablename__ = "projects"

    owner_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    color: Mapped[str] = mapped_column(
        String(7), nullable=False, default=DEFAULT_PROJECT_COLOR
    )  # hex color
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        try:
            return f"<Project {self.name}>"
        except Exception:
            return "<Project detached>"


class Section(Base, UUIDMixin, CreatedAtMixin):
    """Ordered subdivision of a project. Has no visibility rule of its own."""

    __tablename__ = "sections"

    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Section {self.name}>"


class Task(BaseModel):
    """Task in a project, or in its owner's Inbox when ``project_id`` is NULL."""

    __tablename__ = "tasks"
    __table_args__ = (
        CheckConstraint("priority BETWEEN 0 AND 3", name="ck_task_priority"),
    )

    # Ownership (the creating user, never the sharer)
    owner_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    project_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    section_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("sections.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    parent_task_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )

    # Basic info
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Status and priority
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TaskStatus.OPEN.value, index=True
    )  # open, done, cancelled
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0=none .. 3=high

    # Timeline: due_date is the planned work date, deadline the hard "done by" date
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    due_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    deadline: Mapped[date | None] = mapped_column(Date, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Recurrence
    recurrence_rule: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recurrence_base_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Single predecessor; "blocked" is derived from it, never stored
    blocked_by: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("tasks.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    @property
    def is_inbox(self) -> bool:
        return self.project_id is None

    @property
    def is_done(self) -> bool:
        return self.status == TaskStatus.DONE.value

    def __repr__(self) -> str:
        try:
            return f"<Task {self.title[:30]}>"
        except Exception:
            return "<Task detached>"
