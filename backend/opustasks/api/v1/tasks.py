"""Tasks API endpoints."""

from datetime import date, datetime, time
from enum import Enum
from uuid import UUID

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from opustasks.api.deps import Executor, Queries
from opustasks.api.v1.auth import CurrentUser
from opustasks.services.mutation_schemas import (
    CompleteTask,
    CreateTask,
    DeleteTask,
    ReopenTask,
    UpdateTask,
)
from opustasks.services.queries import TaskView

router = APIRouter()


class TaskListView(str, Enum):
    INBOX = "inbox"
    TODAY = "today"
    UPCOMING = "upcoming"
    OVERDUE = "overdue"
    COMPLETED = "completed"


# Request/Response Models
class TaskCreate(BaseModel):
    """Create a new task. Without a project it lands in the Inbox."""

    title: str = Field(..., min_length=1, max_length=500)
    description: str | None = None
    project_id: UUID | None = None
    section_id: UUID | None = None
    parent_task_id: UUID | None = None
    priority: int = Field(default=0, ge=0, le=3)
    due_date: date | None = None
    due_time: time | None = None
    deadline: date | None = None
    recurrence_rule: str | None = None
    blocked_by: UUID | None = None
    sort_order: int = 0


class TaskUpdate(BaseModel):
    """Update a task. Only fields present in the body are changed."""

    title: str | None = Field(None, min_length=1, max_length=500)
    description: str | None = None
    project_id: UUID | None = None
    section_id: UUID | None = None
    parent_task_id: UUID | None = None
    status: str | None = Field(None, pattern="^(open|done|cancelled)$")
    priority: int | None = Field(None, ge=0, le=3)
    due_date: date | None = None
    due_time: time | None = None
    deadline: date | None = None
    recurrence_rule: str | None = None
    blocked_by: UUID | None = None
    sort_order: int | None = None


class TaskResponse(BaseModel):
    """Task response model."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    project_id: UUID | None
    section_id: UUID | None
    parent_task_id: UUID | None
    title: str
    description: str | None
    status: str
    priority: int
    due_date: date | None
    due_time: time | None
    deadline: date | None
    completed_at: datetime | None
    recurrence_rule: str | None
    recurrence_base_date: date | None
    blocked_by: UUID | None
    sort_order: int
    created_at: datetime
    updated_at: datetime
    is_blocked: bool = False
    subtasks: list["TaskResponse"] = Field(default_factory=list)


class TaskCompletionResponse(BaseModel):
    task: TaskResponse
    successor: TaskResponse | None = None
    unblocked_ids: list[UUID] = Field(default_factory=list)


def task_response(view: TaskView) -> TaskResponse:
    response = TaskResponse.model_validate(view.task)
    response.is_blocked = view.is_blocked
    response.subtasks = [task_response(child) for child in view.subtasks]
    return response


@router.get("/", response_model=list[TaskResponse])
async def list_tasks(
    current_user: CurrentUser,
    queries: Queries,
    view: TaskListView = Query(TaskListView.INBOX),
    project_id: UUID | None = Query(None),
    include_done: bool = Query(False),
) -> list[TaskResponse]:
    """List tasks for a view, or the tasks of one project."""
    today = date.today()
    if project_id is not None:
        views = await queries.project_tasks(current_user.id, project_id, include_done=include_done)
    elif view == TaskListView.TODAY:
        views = await queries.today(current_user.id, today)
    elif view == TaskListView.UPCOMING:
        views = await queries.upcoming(current_user.id, today)
    elif view == TaskListView.OVERDUE:
        views = await queries.overdue(current_user.id, today)
    elif view == TaskListView.COMPLETED:
        views = await queries.completed(current_user.id)
    else:
        views = await queries.inbox(current_user.id)
    return [task_response(v) for v in views]


@router.post("/", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    task_data: TaskCreate,
    current_user: CurrentUser,
    executor: Executor,
    queries: Queries,
) -> TaskResponse:
    """Create a new task."""
    change = await executor.apply(current_user.id, CreateTask(**task_data.model_dump(exclude_unset=True)))
    return task_response(await queries.get_task(current_user.id, change.entity_id))


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: UUID, current_user: CurrentUser, queries: Queries) -> TaskResponse:
    """Get a task with its subtasks."""
    return task_response(await queries.get_task(current_user.id, task_id))


@router.patch("/{task_id}", response_model=TaskResponse)
async def update_task(
    task_id: UUID,
    task_data: TaskUpdate,
    current_user: CurrentUser,
    executor: Executor,
    queries: Queries,
) -> TaskResponse:
    """Update a task. Setting ``status`` to done completes it."""
    await executor.apply(
        current_user.id,
        UpdateTask(task_id=task_id, **task_data.model_dump(exclude_unset=True)),
    )
    return task_response(await queries.get_task(current_user.id, task_id))


@router.post("/{task_id}/complete", response_model=TaskCompletionResponse)
async def complete_task(
    task_id: UUID,
    current_user: CurrentUser,
    executor: Executor,
    queries: Queries,
) -> TaskCompletionResponse:
    """Complete a task, creating the next occurrence of a repeating one."""
    change = await executor.apply(current_user.id, CompleteTask(task_id=task_id))
    successor = None
    if change.successor is not None:
        successor = task_response(await queries.get_task(current_user.id, change.successor.id))
    return TaskCompletionResponse(
        task=task_response(await queries.get_task(current_user.id, task_id)),
        successor=successor,
        unblocked_ids=change.details.get("unblocked_ids", []),
    )


@router.post("/{task_id}/reopen", response_model=TaskResponse)
async def reopen_task(
    task_id: UUID,
    current_user: CurrentUser,
    executor: Executor,
    queries: Queries,
) -> TaskResponse:
    await executor.apply(current_user.id, ReopenTask(task_id=task_id))
    return task_response(await queries.get_task(current_user.id, task_id))


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: UUID, current_user: CurrentUser, executor: Executor) -> None:
    """Delete a task and its subtasks. Dependents are unblocked, not deleted."""
    await executor.apply(current_user.id, DeleteTask(task_id=task_id))
