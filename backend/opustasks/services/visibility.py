"""Visibility engine: read/write eligibility for projects, sections and tasks.

Every query and mutation path asks this module, and nothing else, whether a
user may see or change an entity. Unauthorized access is reported exactly
like a missing row (``NotFoundError``) so callers can't probe for existence.
"""

from typing import TypeVar, Union
from uuid import UUID

from opustasks.exceptions import NotFoundError
from opustasks.models import Project, ProjectShare, Section, Task
from opustasks.services.permissions import PermissionLevel, PermissionResolver
from opustasks.services.repository import EntityRepository, TaskScope

Entity = Union[Project, Section, Task]
E = TypeVar("E", Project, Section, Task, ProjectShare)


class VisibilityEngine:
    """Decides read/write eligibility, delegating project levels to the resolver."""

    def __init__(self, repository: EntityRepository, resolver: PermissionResolver):
        self.repository = repository
        self.resolver = resolver

    # =========================================================================
    # Levels
    # =========================================================================

    async def _project_level(self, user_id: UUID, project_id: UUID) -> PermissionLevel:
        project = await self.repository.get_project(project_id)
        if project is None:
            return PermissionLevel.NONE
        return await self.resolver.resolve(user_id, project)

    async def level_for(self, user_id: UUID, entity: Entity) -> PermissionLevel:
        """Effective level of ``user_id`` on any entity.

        Inbox tasks bypass sharing entirely: the owner holds ``admin`` and
        everyone else ``none``.
        """
        if isinstance(entity, Project):
            return await self.resolver.resolve(user_id, entity)
        if isinstance(entity, Section):
            return await self._project_level(user_id, entity.project_id)
        if isinstance(entity, Task):
            if entity.project_id is None:
                return PermissionLevel.ADMIN if entity.owner_id == user_id else PermissionLevel.NONE
            return await self._project_level(user_id, entity.project_id)
        raise TypeError(f"Unsupported entity: {type(entity).__name__}")

    async def can_read(self, user_id: UUID, entity: Entity) -> bool:
        return await self.level_for(user_id, entity) >= PermissionLevel.VIEW

    async def can_write(self, user_id: UUID, entity: Entity) -> bool:
        return await self.level_for(user_id, entity) >= PermissionLevel.EDIT

    def is_owner(self, user_id: UUID, project: Project) -> bool:
        """Owner-only operations: deleting the project and toggling archival."""
        return project.owner_id == user_id

    async def can_manage_shares(self, user_id: UUID, project: Project) -> bool:
        return await self.resolver.resolve(user_id, project) >= PermissionLevel.ADMIN

    async def can_revoke_share(self, user_id: UUID, share: ProjectShare) -> bool:
        """Share managers may revoke any share; a grantee may leave the project."""
        if share.shared_with_user_id == user_id:
            return True
        return await self._share_allowed(user_id, share, write=True)

    async def can_write_project_id(self, user_id: UUID, project_id: UUID | None) -> bool:
        """Whether a task may be placed in ``project_id`` (``None`` is the Inbox)."""
        if project_id is None:
            return True
        return await self._project_level(user_id, project_id) >= PermissionLevel.EDIT

    # =========================================================================
    # Query scoping
    # =========================================================================

    async def readable_project_levels(self, user_id: UUID) -> dict[UUID, PermissionLevel]:
        return await self.resolver.accessible_project_ids(user_id)

    async def task_scope(self, user_id: UUID) -> TaskScope:
        """Rows ``user_id`` may see: their Inbox plus tasks of readable projects."""
        levels = await self.readable_project_levels(user_id)
        return TaskScope(user_id=user_id, project_ids=frozenset(levels))

    # =========================================================================
    # Existence masking
    # =========================================================================

    async def require(
        self,
        user_id: UUID,
        entity: E | None,
        entity_type: str,
        *,
        write: bool = False,
    ) -> E:
        """Return ``entity`` if the user may read (or write) it.

        Absent and unauthorized both raise the same ``NotFoundError``; this is
        the single place that mapping happens.
        """
        if entity is None:
            raise NotFoundError(entity_type)
        if isinstance(entity, ProjectShare):
            allowed = await self._share_allowed(user_id, entity, write=write)
        elif write:
            allowed = await self.can_write(user_id, entity)
        else:
            allowed = await self.can_read(user_id, entity)
        if not allowed:
            raise NotFoundError(entity_type)
        return entity

    async def _share_allowed(self, user_id: UUID, share: ProjectShare, *, write: bool) -> bool:
        # Writing a share means managing it; the grantee may only see it
        if not write and share.shared_with_user_id == user_id:
            return True
        project = await self.repository.get_project(share.project_id)
        if project is None:
            return False
        level = await self.resolver.resolve(user_id, project)
        return level >= (PermissionLevel.ADMIN if write else PermissionLevel.VIEW)

    async def readable_task(self, user_id: UUID, task_id: UUID, *, for_update: bool = False) -> Task:
        task = await self.repository.get_task(task_id, for_update=for_update)
        return await self.require(user_id, task, "task")

    async def readable_project(self, user_id: UUID, project_id: UUID, *, for_update: bool = False) -> Project:
        project = await self.repository.get_project(project_id, for_update=for_update)
        return await self.require(user_id, project, "project")

    async def readable_section(self, user_id: UUID, section_id: UUID, *, for_update: bool = False) -> Section:
        section = await self.repository.get_section(section_id, for_update=for_update)
        return await self.require(user_id, section, "section")
