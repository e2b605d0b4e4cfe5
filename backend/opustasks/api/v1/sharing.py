"""Project sharing API endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, Field

from opustasks.api.deps import Executor, Queries
from opustasks.api.v1.auth import CurrentUser
from opustasks.models import ProjectShare
from opustasks.services.mutation_schemas import CreateShare, RevokeShare, UpdateShare

router = APIRouter()


# --- Project Share Schemas ---

class ProjectShareCreate(BaseModel):
    """Schema for creating a project share."""
    project_id: UUID
    user_id: UUID
    permission: str = Field("view", pattern="^(view|edit|admin)$")


class ProjectShareUpdate(BaseModel):
    """Schema for updating a project share."""
    permission: str = Field(..., pattern="^(view|edit|admin)$")


class ProjectShareResponse(BaseModel):
    """Schema for project share response."""
    id: UUID
    project_id: UUID
    user_id: UUID
    permission: str
    granted_by_id: UUID | None
    created_at: datetime


def share_response(share: ProjectShare) -> ProjectShareResponse:
    return ProjectShareResponse(
        id=share.id,
        project_id=share.project_id,
        user_id=share.shared_with_user_id,
        permission=share.permission,
        granted_by_id=share.granted_by_id,
        created_at=share.created_at,
    )


@router.get("/projects/{project_id}/shares", response_model=list[ProjectShareResponse])
async def list_project_shares(
    project_id: UUID,
    current_user: CurrentUser,
    queries: Queries,
) -> list[ProjectShareResponse]:
    """List shares of a project the current user can read."""
    return [share_response(s) for s in await queries.shares(current_user.id, project_id)]


@router.post("/shares", response_model=ProjectShareResponse, status_code=status.HTTP_201_CREATED)
async def create_project_share(
    share_data: ProjectShareCreate,
    current_user: CurrentUser,
    executor: Executor,
) -> ProjectShareResponse:
    """Share a project with another user. Owner or admin sharees only."""
    change = await executor.apply(current_user.id, CreateShare(**share_data.model_dump()))
    return share_response(change.entity)


@router.patch("/shares/{share_id}", response_model=ProjectShareResponse)
async def update_project_share(
    share_id: UUID,
    share_data: ProjectShareUpdate,
    current_user: CurrentUser,
    executor: Executor,
) -> ProjectShareResponse:
    """Change the permission a share grants."""
    change = await executor.apply(
        current_user.id, UpdateShare(share_id=share_id, permission=share_data.permission)
    )
    return share_response(change.entity)


@router.delete("/shares/{share_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_project_share(share_id: UUID, current_user: CurrentUser, executor: Executor) -> None:
    """Revoke a share. A sharee may always remove their own share."""
    await executor.apply(current_user.id, RevokeShare(share_id=share_id))
