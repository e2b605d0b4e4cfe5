"""Entity store: storage interface and its SQLAlchemy implementation.

Components receive an ``EntityRepository`` instead of reaching for a global
session, so each one can be built per request (or per test) around whatever
storage it is handed.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import AsyncContextManager, Iterable, Sequence
from uuid import UUID

from sqlalchemy import and_, delete, false, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from opustasks.models import Project, ProjectShare, Section, Task, User


@dataclass
class TaskScope:
    """Rows a user may see: their own Inbox plus tasks of readable projects."""

    user_id: UUID
    project_ids: frozenset[UUID] = field(default_factory=frozenset)


@dataclass
class TaskFilter:
    """Optional narrowing applied on top of a ``TaskScope``."""

    status: str | None = None
    project_id: UUID | None = None
    section_id: UUID | None = None
    inbox_only: bool = False
    due_on: date | None = None
    due_before: date | None = None
    due_on_or_before: date | None = None
    due_after: date | None = None
    limit: int | None = None
    order_by_completed: bool = False


@dataclass
class ProjectDeletion:
    """What a cascading project delete touched."""

    project_ids: list[UUID]
    section_count: int
    share_count: int
    moved_task_ids: list[UUID]


@dataclass
class TaskDeletion:
    """What a task delete touched."""

    task_ids: list[UUID]
    unlinked_dependent_ids: list[UUID]


class EntityRepository(ABC):
    """Storage interface for users, projects, shares, sections and tasks."""

    # Generic

    @abstractmethod
    async def add(self, entity: object) -> None:
        """Persist a new entity and assign its identity."""

    @abstractmethod
    async def flush(self) -> None:
        """Push pending changes to storage without committing."""

    @abstractmethod
    def unit(self) -> AsyncContextManager:
        """Open an atomic unit (a savepoint inside any outer transaction)."""

    # Users

    @abstractmethod
    async def get_user(self, user_id: UUID) -> User | None: ...

    # Projects

    @abstractmethod
    async def get_project(self, project_id: UUID, *, for_update: bool = False) -> Project | None: ...

    @abstractmethod
    async def get_project_parent_ids(self, project_ids: Iterable[UUID]) -> dict[UUID, UUID | None]: ...

    @abstractmethod
    async def list_projects(self, project_ids: Iterable[UUID]) -> Sequence[Project]: ...

    @abstractmethod
    async def list_owned_project_ids(self, owner_id: UUID) -> set[UUID]: ...

    @abstractmethod
    async def delete_project_tree(self, project_id: UUID) -> ProjectDeletion: ...

    # Shares

    @abstractmethod
    async def get_share(self, project_id: UUID, user_id: UUID) -> ProjectShare | None: ...

    @abstractmethod
    async def get_share_by_id(self, share_id: UUID, *, for_update: bool = False) -> ProjectShare | None: ...

    @abstractmethod
    async def list_shares(self, project_id: UUID) -> Sequence[ProjectShare]: ...

    @abstractmethod
    async def shares_for_user(self, user_id: UUID) -> dict[UUID, str]: ...

    @abstractmethod
    async def delete_share(self, share: ProjectShare) -> None: ...

    # Sections

    @abstractmethod
    async def get_section(self, section_id: UUID, *, for_update: bool = False) -> Section | None: ...

    @abstractmethod
    async def list_sections(self, project_ids: Iterable[UUID]) -> Sequence[Section]: ...

    @abstractmethod
    async def delete_section(self, section: Section) -> None: ...

    # Tasks

    @abstractmethod
    async def get_task(self, task_id: UUID, *, for_update: bool = False) -> Task | None: ...

    @abstractmethod
    async def get_tasks(self, task_ids: Iterable[UUID]) -> dict[UUID, Task]: ...

    @abstractmethod
    async def get_predecessor_ids(self, task_ids: Iterable[UUID]) -> dict[UUID, UUID | None]: ...

    @abstractmethod
    async def get_parent_task_ids(self, task_ids: Iterable[UUID]) -> dict[UUID, UUID | None]: ...

    @abstractmethod
    async def list_dependents(self, task_id: UUID) -> Sequence[Task]: ...

    @abstractmethod
    async def list_tasks(self, scope: TaskScope, filters: TaskFilter | None = None) -> Sequence[Task]: ...

    @abstractmethod
    async def unlink_dependents(self, task_ids: Iterable[UUID]) -> list[UUID]: ...

    @abstractmethod
    async def descendant_task_ids(self, root_id: UUID) -> list[UUID]:
        """``root_id`` followed by every subtask below it, breadth first."""

    @abstractmethod
    async def delete_tasks(self, task_ids: Iterable[UUID]) -> None: ...


class SqlEntityRepository(EntityRepository):
    """``EntityRepository`` backed by an ``AsyncSession``.

    The repository never commits; transaction boundaries belong to the caller
    (the mutation executor or the request session).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, entity: object) -> None:
        self.db.add(entity)
        await self.db.flush()

    async def flush(self) -> None:
        await self.db.flush()

    def unit(self) -> AsyncContextManager:
        return self.db.begin_nested()

    # =========================================================================
    # Users
    # =========================================================================

    async def get_user(self, user_id: UUID) -> User | None:
        return await self.db.get(User, user_id)

    # =========================================================================
    # Projects
    # =========================================================================

    async def get_project(self, project_id: UUID, *, for_update: bool = False) -> Project | None:
        query = select(Project).where(Project.id == project_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_project_parent_ids(self, project_ids: Iterable[UUID]) -> dict[UUID, UUID | None]:
        ids = list(project_ids)
        if not ids:
            return {}
        result = await self.db.execute(
            select(Project.id, Project.parent_id).where(Project.id.in_(ids))
        )
        return {row.id: row.parent_id for row in result.all()}

    async def list_projects(self, project_ids: Iterable[UUID]) -> Sequence[Project]:
        ids = list(project_ids)
        if not ids:
            return []
        result = await self.db.execute(
            select(Project)
            .where(Project.id.in_(ids))
            .order_by(Project.sort_order, Project.name)
        )
        return result.scalars().all()

    async def list_owned_project_ids(self, owner_id: UUID) -> set[UUID]:
        result = await self.db.execute(select(Project.id).where(Project.owner_id == owner_id))
        return set(result.scalars().all())

    async def _descendant_project_ids(self, root_id: UUID) -> list[UUID]:
        """Collect ``root_id`` and every project below it, breadth first."""
        collected = [root_id]
        seen = {root_id}
        frontier = [root_id]
        while frontier:
            result = await self.db.execute(
                select(Project.id).where(Project.parent_id.in_(frontier))
            )
            frontier = [pid for pid in result.scalars().all() if pid not in seen]
            seen.update(frontier)
            collected.extend(frontier)
        return collected

    async def delete_project_tree(self, project_id: UUID) -> ProjectDeletion:
        project_ids = await self._descendant_project_ids(project_id)

        # Tasks survive: they move to their owners' Inboxes
        moved = await self.db.execute(
            select(Task.id).where(Task.project_id.in_(project_ids))
        )
        moved_task_ids = list(moved.scalars().all())
        if moved_task_ids:
            await self.db.execute(
                update(Task)
                .where(Task.id.in_(moved_task_ids))
                .values(project_id=None, section_id=None)
                .execution_options(synchronize_session="fetch")
            )

        sections = await self.db.execute(
            delete(Section).where(Section.project_id.in_(project_ids))
        )
        shares = await self.db.execute(
            delete(ProjectShare).where(ProjectShare.project_id.in_(project_ids))
        )
        # Children first so the self-referencing FK never points at a missing row
        for pid in reversed(project_ids):
            await self.db.execute(delete(Project).where(Project.id == pid))
        await self.db.flush()

        return ProjectDeletion(
            project_ids=project_ids,
            section_count=sections.rowcount or 0,
            share_count=shares.rowcount or 0,
            moved_task_ids=moved_task_ids,
        )

    # =========================================================================
    # Shares
    # =========================================================================

    async def get_share(self, project_id: UUID, user_id: UUID) -> ProjectShare | None:
        result = await self.db.execute(
            select(ProjectShare).where(
                ProjectShare.project_id == project_id,
                ProjectShare.shared_with_user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_share_by_id(self, share_id: UUID, *, for_update: bool = False) -> ProjectShare | None:
        query = select(ProjectShare).where(ProjectShare.id == share_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_shares(self, project_id: UUID) -> Sequence[ProjectShare]:
        result = await self.db.execute(
            select(ProjectShare)
            .where(ProjectShare.project_id == project_id)
            .order_by(ProjectShare.created_at)
        )
        return result.scalars().all()

    async def shares_for_user(self, user_id: UUID) -> dict[UUID, str]:
        result = await self.db.execute(
            select(ProjectShare.project_id, ProjectShare.permission).where(
                ProjectShare.shared_with_user_id == user_id
            )
        )
        return {row.project_id: row.permission for row in result.all()}

    async def delete_share(self, share: ProjectShare) -> None:
        await self.db.delete(share)
        await self.db.flush()

    # =========================================================================
    # Sections
    # =========================================================================

    async def get_section(self, section_id: UUID, *, for_update: bool = False) -> Section | None:
        query = select(Section).where(Section.id == section_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def list_sections(self, project_ids: Iterable[UUID]) -> Sequence[Section]:
        ids = list(project_ids)
        if not ids:
            return []
        result = await self.db.execute(
            select(Section)
            .where(Section.project_id.in_(ids))
            .order_by(Section.sort_order, Section.created_at)
        )
        return result.scalars().all()

    async def delete_section(self, section: Section) -> None:
        await self.db.execute(
            update(Task)
            .where(Task.section_id == section.id)
            .values(section_id=None)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.delete(section)
        await self.db.flush()

    # =========================================================================
    # Tasks
    # =========================================================================

    async def get_task(self, task_id: UUID, *, for_update: bool = False) -> Task | None:
        query = select(Task).where(Task.id == task_id)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def get_tasks(self, task_ids: Iterable[UUID]) -> dict[UUID, Task]:
        ids = list(set(task_ids))
        if not ids:
            return {}
        result = await self.db.execute(select(Task).where(Task.id.in_(ids)))
        return {task.id: task for task in result.scalars().all()}

    async def get_predecessor_ids(self, task_ids: Iterable[UUID]) -> dict[UUID, UUID | None]:
        ids = list(task_ids)
        if not ids:
            return {}
        result = await self.db.execute(
            select(Task.id, Task.blocked_by).where(Task.id.in_(ids))
        )
        return {row.id: row.blocked_by for row in result.all()}

    async def get_parent_task_ids(self, task_ids: Iterable[UUID]) -> dict[UUID, UUID | None]:
        ids = list(task_ids)
        if not ids:
            return {}
        result = await self.db.execute(
            select(Task.id, Task.parent_task_id).where(Task.id.in_(ids))
        )
        return {row.id: row.parent_task_id for row in result.all()}

    async def list_dependents(self, task_id: UUID) -> Sequence[Task]:
        result = await self.db.execute(select(Task).where(Task.blocked_by == task_id))
        return result.scalars().all()

    async def list_tasks(self, scope: TaskScope, filters: TaskFilter | None = None) -> Sequence[Task]:
        filters = filters or TaskFilter()

        inbox_clause = and_(Task.project_id.is_(None), Task.owner_id == scope.user_id)
        if filters.inbox_only:
            visible = inbox_clause
        elif scope.project_ids:
            visible = or_(inbox_clause, Task.project_id.in_(scope.project_ids))
        else:
            visible = inbox_clause

        query = select(Task).where(visible)

        if filters.status is not None:
            query = query.where(Task.status == filters.status)
        if filters.project_id is not None:
            if filters.project_id not in scope.project_ids:
                query = query.where(false())
            query = query.where(Task.project_id == filters.project_id)
        if filters.section_id is not None:
            query = query.where(Task.section_id == filters.section_id)
        if filters.due_on is not None:
            query = query.where(Task.due_date == filters.due_on)
        if filters.due_before is not None:
            query = query.where(Task.due_date < filters.due_before)
        if filters.due_on_or_before is not None:
            query = query.where(Task.due_date <= filters.due_on_or_before)
        if filters.due_after is not None:
            query = query.where(Task.due_date > filters.due_after)

        if filters.order_by_completed:
            query = query.order_by(Task.completed_at.desc())
        else:
            query = query.order_by(Task.sort_order, Task.created_at)
        if filters.limit is not None:
            query = query.limit(filters.limit)

        result = await self.db.execute(query)
        return result.scalars().all()

    async def unlink_dependents(self, task_ids: Iterable[UUID]) -> list[UUID]:
        ids = list(task_ids)
        if not ids:
            return []
        result = await self.db.execute(
            select(Task.id).where(Task.blocked_by.in_(ids), Task.id.not_in(ids))
        )
        dependent_ids = list(result.scalars().all())
        if dependent_ids:
            await self.db.execute(
                update(Task)
                .where(Task.id.in_(dependent_ids))
                .values(blocked_by=None)
                .execution_options(synchronize_session="fetch")
            )
        return dependent_ids

    async def descendant_task_ids(self, root_id: UUID) -> list[UUID]:
        collected = [root_id]
        seen = {root_id}
        frontier = [root_id]
        while frontier:
            result = await self.db.execute(
                select(Task.id).where(Task.parent_task_id.in_(frontier))
            )
            frontier = [tid for tid in result.scalars().all() if tid not in seen]
            seen.update(frontier)
            collected.extend(frontier)
        return collected

    async def delete_tasks(self, task_ids: Iterable[UUID]) -> None:
        task_ids = list(task_ids)
        if not task_ids:
            return
        # Links inside the deleted set go first so no row points at a deleted one
        await self.db.execute(
            update(Task)
            .where(Task.id.in_(task_ids))
            .values(blocked_by=None, parent_task_id=None)
            .execution_options(synchronize_session="fetch")
        )
        await self.db.execute(
            delete(Task)
            .where(Task.id.in_(task_ids))
            .execution_options(synchronize_session="fetch")
        )
        await self.db.flush()
