"""Project permission resolution.

A user's access to a project comes from exactly two places:
- ownership: the owner is always ``admin``
- a ProjectShare row on that same project

Parent projects are never consulted. Sharing a parent exposes nothing in its
children, so reorganizing a tree can't silently widen access.
"""

from enum import IntEnum
from typing import Iterable
from uuid import UUID

from opustasks.models import Project
from opustasks.services.repository import EntityRepository


class PermissionLevel(IntEnum):
    """Ordered access levels; compare with ``>=``."""

    NONE = 0
    VIEW = 1
    EDIT = 2
    ADMIN = 3

    @classmethod
    def from_share(cls, permission: str) -> "PermissionLevel":
        """Map a stored share permission to its level; unknown values grant nothing."""
        return _SHARE_LEVELS.get(permission, cls.NONE)

    @property
    def label(self) -> str:
        return self.name.lower()


_SHARE_LEVELS = {
    "view": PermissionLevel.VIEW,
    "edit": PermissionLevel.EDIT,
    "admin": PermissionLevel.ADMIN,
}


class PermissionResolver:
    """The only place permission levels are computed."""

    def __init__(self, repository: EntityRepository):
        self.repository = repository

    async def resolve(self, user_id: UUID, project: Project) -> PermissionLevel:
        """Return ``user_id``'s access level on ``project``."""
        if project.owner_id == user_id:
            return PermissionLevel.ADMIN

        share = await self.repository.get_share(project.id, user_id)
        if share is None:
            return PermissionLevel.NONE
        return PermissionLevel.from_share(share.permission)

    async def resolve_many(
        self,
        user_id: UUID,
        projects: Iterable[Project],
    ) -> dict[UUID, PermissionLevel]:
        """Resolve several projects with a single share lookup."""
        shares = await self.repository.shares_for_user(user_id)
        levels: dict[UUID, PermissionLevel] = {}
        for project in projects:
            if project.owner_id == user_id:
                levels[project.id] = PermissionLevel.ADMIN
            else:
                levels[project.id] = PermissionLevel.from_share(shares.get(project.id, ""))
        return levels

    async def accessible_project_ids(self, user_id: UUID) -> dict[UUID, PermissionLevel]:
        """Every project the user can at least view, with the level held."""
        levels = {
            project_id: PermissionLevel.from_share(permission)
            for project_id, permission in (await self.repository.shares_for_user(user_id)).items()
        }
        for project_id in await self.repository.list_owned_project_ids(user_id):
            levels[project_id] = PermissionLevel.ADMIN
        return {pid: level for pid, level in levels.items() if level > PermissionLevel.NONE}
