"""Sections API endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict, Field

from opustasks.api.deps import Executor, Queries
from opustasks.api.v1.auth import CurrentUser
from opustasks.services.mutation_schemas import CreateSection, DeleteSection, UpdateSection

router = APIRouter()


class SectionCreate(BaseModel):
    project_id: UUID
    name: str = Field(..., min_length=1, max_length=255)
    sort_order: int = 0


class SectionUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=255)
    sort_order: int | None = None


class SectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: UUID
    name: str
    sort_order: int
    created_at: datetime


@router.get("/projects/{project_id}/sections", response_model=list[SectionResponse])
async def list_sections(project_id: UUID, current_user: CurrentUser, queries: Queries) -> list:
    return await queries.sections(current_user.id, project_id)


@router.post("/sections", response_model=SectionResponse, status_code=status.HTTP_201_CREATED)
async def create_section(
    section_data: SectionCreate,
    current_user: CurrentUser,
    executor: Executor,
):
    """Create a section in a writable project."""
    change = await executor.apply(current_user.id, CreateSection(**section_data.model_dump()))
    return change.entity


@router.patch("/sections/{section_id}", response_model=SectionResponse)
async def update_section(
    section_id: UUID,
    section_data: SectionUpdate,
    current_user: CurrentUser,
    executor: Executor,
):
    change = await executor.apply(
        current_user.id,
        UpdateSection(section_id=section_id, **section_data.model_dump(exclude_unset=True)),
    )
    return change.entity


@router.delete("/sections/{section_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_section(section_id: UUID, current_user: CurrentUser, executor: Executor) -> None:
    """Delete a section. Its tasks stay in the project, unsectioned."""
    await executor.apply(current_user.id, DeleteSection(section_id=section_id))
