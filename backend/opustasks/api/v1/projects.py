"""Projects API endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, ConfigDict, Field

from opustasks.api.deps import Executor, Queries
from opustasks.api.v1.auth import CurrentUser
from opustasks.api.v1.sections import SectionResponse
from opustasks.api.v1.tasks import TaskResponse, task_response
from opustasks.services.mutation_schemas import (
    ArchiveProject,
    CreateProject,
    DeleteProject,
    UpdateProject,
)
from opustasks.services.queries import ProjectView

router = APIRouter()


# Request/Response Models
class ProjectCreate(BaseModel):
    """Create a new project."""

    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    color: str | None = Field(None, pattern="^#[0-9A-Fa-f]{6}$")
    parent_id: UUID | None = None
    sort_order: int = 0


class ProjectUpdate(BaseModel):
    """Update a project."""

    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    color: str | None = Field(None, pattern="^#[0-9A-Fa-f]{6}$")
    parent_id: UUID | None = None
    sort_order: int | None = None


class ArchiveRequest(BaseModel):
    archived: bool = True


class ProjectResponse(BaseModel):
    """Project response model."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: UUID
    parent_id: UUID | None
    name: str
    description: str | None
    color: str
    sort_order: int
    is_archived: bool
    created_at: datetime
    updated_at: datetime
    permission: str | None = None


class ProjectTreeNode(ProjectResponse):
    children: list["ProjectTreeNode"] = Field(default_factory=list)


class ProjectDetailResponse(ProjectResponse):
    sections: list[SectionResponse] = Field(default_factory=list)
    tasks: list[TaskResponse] = Field(default_factory=list)


def tree_node(view: ProjectView) -> ProjectTreeNode:
    node = ProjectTreeNode.model_validate(view.project)
    node.permission = view.permission.label
    node.children = [tree_node(child) for child in view.children]
    return node


async def _detail(queries: Queries, user_id: UUID, project_id: UUID) -> ProjectDetailResponse:
    detail = await queries.get_project(user_id, project_id)
    response = ProjectDetailResponse.model_validate(detail.project)
    response.permission = detail.permission.label
    response.sections = [SectionResponse.model_validate(s) for s in detail.sections]
    response.tasks = [task_response(v) for v in detail.tasks]
    return response


@router.get("/", response_model=list[ProjectTreeNode])
async def list_projects(
    current_user: CurrentUser,
    queries: Queries,
    include_archived: bool = Query(False),
) -> list[ProjectTreeNode]:
    """Readable projects as a tree. Shared subprojects of hidden parents are roots."""
    views = await queries.project_tree(current_user.id, include_archived=include_archived)
    return [tree_node(v) for v in views]


@router.post("/", response_model=ProjectDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    project_data: ProjectCreate,
    current_user: CurrentUser,
    executor: Executor,
    queries: Queries,
) -> ProjectDetailResponse:
    """Create a new project owned by the current user."""
    change = await executor.apply(
        current_user.id, CreateProject(**project_data.model_dump(exclude_unset=True))
    )
    return await _detail(queries, current_user.id, change.entity_id)


@router.get("/{project_id}", response_model=ProjectDetailResponse)
async def get_project(project_id: UUID, current_user: CurrentUser, queries: Queries) -> ProjectDetailResponse:
    """Get a project with its sections and open tasks."""
    return await _detail(queries, current_user.id, project_id)


@router.patch("/{project_id}", response_model=ProjectDetailResponse)
async def update_project(
    project_id: UUID,
    project_data: ProjectUpdate,
    current_user: CurrentUser,
    executor: Executor,
    queries: Queries,
) -> ProjectDetailResponse:
    await executor.apply(
        current_user.id,
        UpdateProject(project_id=project_id, **project_data.model_dump(exclude_unset=True)),
    )
    return await _detail(queries, current_user.id, project_id)


@router.post("/{project_id}/archive", response_model=ProjectDetailResponse)
async def archive_project(
    project_id: UUID,
    current_user: CurrentUser,
    executor: Executor,
    queries: Queries,
    request: ArchiveRequest | None = None,
) -> ProjectDetailResponse:
    """Archive (or unarchive) a project. Owner only."""
    archived = request.archived if request is not None else True
    await executor.apply(current_user.id, ArchiveProject(project_id=project_id, archived=archived))
    return await _detail(queries, current_user.id, project_id)


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(project_id: UUID, current_user: CurrentUser, executor: Executor) -> None:
    """Delete a project and its subprojects. Their tasks move to the Inbox."""
    await executor.apply(current_user.id, DeleteProject(project_id=project_id))
