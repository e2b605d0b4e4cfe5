"""Wire format of mutations.

A mutation is a plain object tagged by ``kind``. The same shapes arrive from
the HTTP surface, from approved AI proposals (stored as JSON on the pending
action) and from import tooling. Structural parsing happens here; range and
relationship checks belong to the executor.
"""

from datetime import date, time
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from opustasks.exceptions import ValidationError


class MutationOrigin(str, Enum):
    """Who produced a mutation."""

    USER = "user"
    ASSISTANT = "assistant"
    IMPORT = "import"  # may skip the predecessor cycle check


class MutationBase(BaseModel):
    origin: MutationOrigin = MutationOrigin.USER

    def changes(self) -> dict[str, Any]:
        """Fields the caller explicitly set, excluding addressing fields."""
        return self.model_dump(
            exclude_unset=True,
            exclude={"kind", "origin", *self._addressing_fields()},
        )

    @classmethod
    def _addressing_fields(cls) -> tuple[str, ...]:
        return ()


# =============================================================================
# Tasks
# =============================================================================


class CreateTask(MutationBase):
    kind: Literal["create_task"] = "create_task"
    title: str
    description: Optional[str] = None
    project_id: Optional[UUID] = None
    section_id: Optional[UUID] = None
    parent_task_id: Optional[UUID] = None
    priority: int = 0
    due_date: Optional[date] = None
    due_time: Optional[time] = None
    deadline: Optional[date] = None
    recurrence_rule: Optional[str] = None
    blocked_by: Optional[UUID] = None
    sort_order: int = 0


class UpdateTask(MutationBase):
    """Partial update; only fields present in the payload are applied."""

    kind: Literal["update_task"] = "update_task"
    task_id: UUID
    title: Optional[str] = None
    description: Optional[str] = None
    project_id: Optional[UUID] = None
    section_id: Optional[UUID] = None
    parent_task_id: Optional[UUID] = None
    status: Optional[str] = None
    priority: Optional[int] = None
    due_date: Optional[date] = None
    due_time: Optional[time] = None
    deadline: Optional[date] = None
    recurrence_rule: Optional[str] = None
    blocked_by: Optional[UUID] = None
    sort_order: Optional[int] = None

    @classmethod
    def _addressing_fields(cls) -> tuple[str, ...]:
        return ("task_id",)


class CompleteTask(MutationBase):
    kind: Literal["complete_task"] = "complete_task"
    task_id: UUID


class ReopenTask(MutationBase):
    kind: Literal["reopen_task"] = "reopen_task"
    task_id: UUID


class CancelTask(MutationBase):
    kind: Literal["cancel_task"] = "cancel_task"
    task_id: UUID


class DeleteTask(MutationBase):
    kind: Literal["delete_task"] = "delete_task"
    task_id: UUID


# =============================================================================
# Projects
# =============================================================================


class CreateProject(MutationBase):
    kind: Literal["create_project"] = "create_project"
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    parent_id: Optional[UUID] = None
    sort_order: int = 0


class UpdateProject(MutationBase):
    kind: Literal["update_project"] = "update_project"
    project_id: UUID
    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    parent_id: Optional[UUID] = None
    sort_order: Optional[int] = None

    @classmethod
    def _addressing_fields(cls) -> tuple[str, ...]:
        return ("project_id",)


class ArchiveProject(MutationBase):
    kind: Literal["archive_project"] = "archive_project"
    project_id: UUID
    archived: bool = True


class DeleteProject(MutationBase):
    kind: Literal["delete_project"] = "delete_project"
    project_id: UUID


# =============================================================================
# Sections
# =============================================================================


class CreateSection(MutationBase):
    kind: Literal["create_section"] = "create_section"
    project_id: UUID
    name: str
    sort_order: int = 0


class UpdateSection(MutationBase):
    kind: Literal["update_section"] = "update_section"
    section_id: UUID
    name: Optional[str] = None
    sort_order: Optional[int] = None

    @classmethod
    def _addressing_fields(cls) -> tuple[str, ...]:
        return ("section_id",)


class DeleteSection(MutationBase):
    kind: Literal["delete_section"] = "delete_section"
    section_id: UUID


# =============================================================================
# Shares
# =============================================================================


class CreateShare(MutationBase):
    kind: Literal["create_share"] = "create_share"
    project_id: UUID
    user_id: UUID
    permission: str = "view"


class UpdateShare(MutationBase):
    kind: Literal["update_share"] = "update_share"
    share_id: UUID
    permission: str


class RevokeShare(MutationBase):
    kind: Literal["revoke_share"] = "revoke_share"
    share_id: UUID


Mutation = Annotated[
    Union[
        CreateTask,
        UpdateTask,
        CompleteTask,
        ReopenTask,
        CancelTask,
        DeleteTask,
        CreateProject,
        UpdateProject,
        ArchiveProject,
        DeleteProject,
        CreateSection,
        UpdateSection,
        DeleteSection,
        CreateShare,
        UpdateShare,
        RevokeShare,
    ],
    Field(discriminator="kind"),
]

MUTATION_KINDS = (
    "create_task",
    "update_task",
    "complete_task",
    "reopen_task",
    "cancel_task",
    "delete_task",
    "create_project",
    "update_project",
    "archive_project",
    "delete_project",
    "create_section",
    "update_section",
    "delete_section",
    "create_share",
    "update_share",
    "revoke_share",
)

_mutation_adapter: TypeAdapter = TypeAdapter(Mutation)


def parse_mutation(data: dict[str, Any]) -> Mutation:
    """Build a mutation from a raw payload (e.g. a stored AI proposal).

    Raises:
        ValidationError: if the payload doesn't describe a known mutation
    """
    kind = data.get("kind")
    if kind not in MUTATION_KINDS:
        raise ValidationError(f"Unknown mutation kind: {kind}", field="kind")
    try:
        return _mutation_adapter.validate_python(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"][1:]) or None
        raise ValidationError(f"Invalid {kind} payload: {first['msg']}", field=field) from e
