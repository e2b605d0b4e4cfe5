"""Visibility-gated read views.

Every view is built from a ``TaskScope`` or a masked lookup produced by the
visibility engine, so hidden rows never reach a caller and hidden ids look
exactly like unknown ones.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Sequence
from uuid import UUID

from opustasks.config import get_settings
from opustasks.models import Project, ProjectShare, Section, Task, TaskStatus
from opustasks.services.dependencies import DependencyEngine
from opustasks.services.hierarchy import TreeNode, build_tree
from opustasks.services.permissions import PermissionLevel, PermissionResolver
from opustasks.services.repository import EntityRepository, TaskFilter
from opustasks.services.visibility import VisibilityEngine

COMPLETED_VIEW_LIMIT = 100
SEARCH_LIMIT = 50


@dataclass
class TaskView:
    task: Task
    is_blocked: bool
    subtasks: list["TaskView"] = field(default_factory=list)


@dataclass
class ProjectView:
    project: Project
    permission: PermissionLevel
    children: list["ProjectView"] = field(default_factory=list)


@dataclass
class ProjectDetail:
    project: Project
    permission: PermissionLevel
    sections: list[Section]
    tasks: list[TaskView]


@dataclass
class ContextSnapshot:
    """Read-only picture of a user's workload handed to the AI collaborator."""

    today: date
    projects: list[Project]
    sections: list[Section]
    tasks: list[Task]
    inbox_tasks: list[Task]
    today_tasks: list[Task]
    overdue_tasks: list[Task]

    def project_name(self, project_id: UUID | None) -> str | None:
        for project in self.projects:
            if project.id == project_id:
                return project.name
        return None


class QueryService:
    """Read side of the core; every method takes the acting user's id."""

    def __init__(
        self,
        repository: EntityRepository,
        *,
        visibility: VisibilityEngine | None = None,
        dependencies: DependencyEngine | None = None,
    ):
        self.repository = repository
        self.visibility = visibility or VisibilityEngine(repository, PermissionResolver(repository))
        self.dependencies = dependencies or DependencyEngine(repository)

    # =========================================================================
    # Tasks
    # =========================================================================

    async def _views(self, tasks: Sequence[Task]) -> list[TaskView]:
        blocked = await self.dependencies.blocked_ids(tasks)
        return [TaskView(task=t, is_blocked=t.id in blocked) for t in tasks]

    async def _nested(self, tasks: Sequence[Task]) -> list[TaskView]:
        """Views with subtasks nested under their (visible) parents."""
        views = {v.task.id: v for v in await self._views(tasks)}

        def attach(node: TreeNode[Task]) -> TaskView:
            view = views[node.item.id]
            view.subtasks = [attach(child) for child in node.children]
            return view

        roots = build_tree(list(tasks), key=lambda t: t.id, parent_key=lambda t: t.parent_task_id)
        return [attach(root) for root in roots]

    async def get_task(self, user_id: UUID, task_id: UUID) -> TaskView:
        """A single task with its blocked flag and readable subtask tree.

        Raises:
            NotFoundError: absent or not readable
        """
        task = await self.visibility.readable_task(user_id, task_id)
        descendants = await self.repository.get_tasks(
            await self.repository.descendant_task_ids(task.id)
        )
        subtree = [task] + [
            t
            for t in descendants.values()
            if t.id != task.id and await self.visibility.can_read(user_id, t)
        ]
        return (await self._nested(subtree))[0]

    async def inbox(self, user_id: UUID) -> list[TaskView]:
        scope = await self.visibility.task_scope(user_id)
        tasks = await self.repository.list_tasks(
            scope, TaskFilter(status=TaskStatus.OPEN.value, inbox_only=True)
        )
        return await self._nested(tasks)

    async def today(self, user_id: UUID, today: date) -> list[TaskView]:
        scope = await self.visibility.task_scope(user_id)
        tasks = await self.repository.list_tasks(
            scope, TaskFilter(status=TaskStatus.OPEN.value, due_on=today)
        )
        return await self._views(tasks)

    async def overdue(self, user_id: UUID, today: date) -> list[TaskView]:
        scope = await self.visibility.task_scope(user_id)
        tasks = await self.repository.list_tasks(
            scope, TaskFilter(status=TaskStatus.OPEN.value, due_before=today)
        )
        return await self._views(sorted(tasks, key=lambda t: t.due_date))

    async def upcoming(self, user_id: UUID, today: date, days: int | None = None) -> list[TaskView]:
        """Open tasks due after today, within the upcoming window."""
        if days is None:
            days = get_settings().upcoming_window_days
        scope = await self.visibility.task_scope(user_id)
        tasks = await self.repository.list_tasks(
            scope,
            TaskFilter(
                status=TaskStatus.OPEN.value,
                due_after=today,
                due_on_or_before=today + timedelta(days=days),
            ),
        )
        return await self._views(sorted(tasks, key=lambda t: (t.due_date, t.sort_order)))

    async def completed(self, user_id: UUID, limit: int = COMPLETED_VIEW_LIMIT) -> list[TaskView]:
        scope = await self.visibility.task_scope(user_id)
        tasks = await self.repository.list_tasks(
            scope,
            TaskFilter(status=TaskStatus.DONE.value, order_by_completed=True, limit=limit),
        )
        return await self._views(tasks)

    async def project_tasks(
        self, user_id: UUID, project_id: UUID, *, include_done: bool = False
    ) -> list[TaskView]:
        await self.visibility.readable_project(user_id, project_id)
        scope = await self.visibility.task_scope(user_id)
        tasks = await self.repository.list_tasks(
            scope,
            TaskFilter(
                project_id=project_id,
                status=None if include_done else TaskStatus.OPEN.value,
            ),
        )
        return await self._nested(tasks)

    async def search_tasks(self, user_id: UUID, query: str) -> list[Task]:
        """Case-insensitive match on title and description over visible tasks."""
        needle = query.strip().lower()
        if not needle:
            return []
        scope = await self.visibility.task_scope(user_id)
        tasks = await self.repository.list_tasks(scope)
        matches = [
            t
            for t in tasks
            if needle in t.title.lower() or (t.description and needle in t.description.lower())
        ]
        return matches[:SEARCH_LIMIT]

    # =========================================================================
    # Projects
    # =========================================================================

    async def project_tree(self, user_id: UUID, *, include_archived: bool = False) -> list[ProjectView]:
        """Readable projects as a forest.

        A shared subproject whose parent is hidden shows up as a root.
        """
        levels = await self.visibility.readable_project_levels(user_id)
        projects = [
            p
            for p in await self.repository.list_projects(levels)
            if include_archived or not p.is_archived
        ]

        def to_view(node: TreeNode[Project]) -> ProjectView:
            return ProjectView(
                project=node.item,
                permission=levels[node.item.id],
                children=[to_view(child) for child in node.children],
            )

        roots = build_tree(projects, key=lambda p: p.id, parent_key=lambda p: p.parent_id)
        return [to_view(root) for root in roots]

    async def get_project(self, user_id: UUID, project_id: UUID) -> ProjectDetail:
        project = await self.visibility.readable_project(user_id, project_id)
        permission = await self.visibility.level_for(user_id, project)
        sections = await self.repository.list_sections([project.id])
        tasks = await self.project_tasks(user_id, project.id)
        return ProjectDetail(
            project=project,
            permission=permission,
            sections=list(sections),
            tasks=tasks,
        )

    async def sections(self, user_id: UUID, project_id: UUID) -> list[Section]:
        await self.visibility.readable_project(user_id, project_id)
        return list(await self.repository.list_sections([project_id]))

    async def shares(self, user_id: UUID, project_id: UUID) -> list[ProjectShare]:
        await self.visibility.readable_project(user_id, project_id)
        return list(await self.repository.list_shares(project_id))

    # =========================================================================
    # AI context
    # =========================================================================

    async def context_snapshot(self, user_id: UUID, today: date) -> ContextSnapshot:
        """Everything the AI collaborator may see, built from the user's scope."""
        levels = await self.visibility.readable_project_levels(user_id)
        projects = list(await self.repository.list_projects(levels))
        sections = list(await self.repository.list_sections(levels))

        scope = await self.visibility.task_scope(user_id)
        tasks = list(
            await self.repository.list_tasks(scope, TaskFilter(status=TaskStatus.OPEN.value))
        )
        return ContextSnapshot(
            today=today,
            projects=projects,
            sections=sections,
            tasks=tasks,
            inbox_tasks=[t for t in tasks if t.project_id is None],
            today_tasks=[t for t in tasks if t.due_date == today],
            overdue_tasks=[t for t in tasks if t.due_date is not None and t.due_date < today],
        )
