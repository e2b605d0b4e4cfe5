"""Mutation validator and executor.

Every write in the system (UI edits, approved AI proposals, import tooling)
goes through ``MutationExecutor.apply``. Each call is one atomic unit: the
target row is locked, visibility and field rules are checked, the change and
its side effects (recurrence expansion, cascades) are applied, and any error
rolls the whole unit back.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence
from uuid import UUID

import structlog

from opustasks.exceptions import ConflictError, DomainError, NotFoundError, ValidationError
from opustasks.models import (
    DEFAULT_PROJECT_COLOR,
    Project,
    ProjectShare,
    Section,
    SharePermission,
    Task,
    TaskStatus,
)
from opustasks.services.dependencies import DependencyEngine
from opustasks.services.hierarchy import ensure_no_cycle
from opustasks.services.mutation_schemas import (
    ArchiveProject,
    CancelTask,
    CompleteTask,
    CreateProject,
    CreateSection,
    CreateShare,
    CreateTask,
    DeleteProject,
    DeleteSection,
    DeleteTask,
    Mutation,
    MutationOrigin,
    ReopenTask,
    RevokeShare,
    UpdateProject,
    UpdateSection,
    UpdateShare,
    UpdateTask,
    parse_mutation,
)
from opustasks.services.permissions import PermissionResolver
from opustasks.services.recurrence import RecurrenceExpander, validate_rule
from opustasks.services.repository import EntityRepository, TaskDeletion
from opustasks.services.visibility import VisibilityEngine

logger = structlog.get_logger()

HEX_COLOR = re.compile(r"^#[0-9a-fA-F]{6}$")
MAX_TITLE_LENGTH = 500
MAX_NAME_LENGTH = 255


@dataclass
class AppliedChange:
    """Outcome of one applied mutation."""

    kind: str
    entity_type: str
    entity_id: UUID
    action: str  # created, updated, deleted, unchanged
    entity: Any = None
    successor: Task | None = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchItemResult:
    """Per-action entry of an ``apply_batch`` report."""

    index: int
    kind: str | None
    success: bool
    entity_id: UUID | None = None
    error_code: str | None = None
    message: str | None = None
    change: AppliedChange | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "kind": self.kind,
            "success": self.success,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "error_code": self.error_code,
            "message": self.message,
        }


# =============================================================================
# Field validation
# =============================================================================


def _require_text(value: str | None, field_name: str, max_length: int) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field_name.capitalize()} is required", field=field_name)
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(
            f"{field_name.capitalize()} must be at most {max_length} characters", field=field_name
        )
    return value


def _validate_priority(value: int | None) -> int:
    if value is None or not 0 <= value <= 3:
        raise ValidationError("Priority must be between 0 and 3", field="priority")
    return value


def _validate_status(value: str | None) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        raise ValidationError(f"Invalid status: {value}", field="status") from None


def _validate_permission(value: str | None) -> str:
    try:
        return SharePermission(value).value
    except ValueError:
        raise ValidationError(f"Invalid permission: {value}", field="permission") from None


def _validate_color(value: str | None) -> str:
    if value is None:
        return DEFAULT_PROJECT_COLOR
    if not HEX_COLOR.match(value):
        raise ValidationError("Color must be a hex value like #1a2b3c", field="color")
    return value.lower()


def _validate_sort_order(value: int | None) -> int:
    if value is None:
        raise ValidationError("Sort order cannot be null", field="sort_order")
    return value


class MutationExecutor:
    """Single entry point for applying mutations on behalf of a user."""

    def __init__(
        self,
        repository: EntityRepository,
        *,
        visibility: VisibilityEngine | None = None,
        dependencies: DependencyEngine | None = None,
        expander: RecurrenceExpander | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.repository = repository
        self.visibility = visibility or VisibilityEngine(repository, PermissionResolver(repository))
        self.dependencies = dependencies or DependencyEngine(repository)
        self.expander = expander or RecurrenceExpander(repository)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._handlers: dict[str, Callable[[UUID, Any], Awaitable[AppliedChange]]] = {
            "create_task": self._create_task,
            "update_task": self._update_task,
            "complete_task": self._complete_task,
            "reopen_task": self._reopen_task,
            "cancel_task": self._cancel_task,
            "delete_task": self._delete_task,
            "create_project": self._create_project,
            "update_project": self._update_project,
            "archive_project": self._archive_project,
            "delete_project": self._delete_project,
            "create_section": self._create_section,
            "update_section": self._update_section,
            "delete_section": self._delete_section,
            "create_share": self._create_share,
            "update_share": self._update_share,
            "revoke_share": self._revoke_share,
        }

    # =========================================================================
    # Entry points
    # =========================================================================

    async def apply(self, acting_user_id: UUID, mutation: Mutation) -> AppliedChange:
        """Apply one mutation atomically.

        Raises:
            NotFoundError: target absent, unreadable or not writable
            ValidationError: a field is out of range or inconsistent
            CycleError: a parent or predecessor link would close a loop
            ConflictError: the transition isn't allowed from the current state
        """
        handler = self._handlers[mutation.kind]
        try:
            async with self.repository.unit():
                change = await handler(acting_user_id, mutation)
        except DomainError as e:
            logger.info(
                "mutation_rejected",
                kind=mutation.kind,
                origin=mutation.origin.value,
                user_id=str(acting_user_id),
                code=e.code,
                error=e.message,
            )
            raise

        logger.info(
            "mutation_applied",
            kind=mutation.kind,
            origin=mutation.origin.value,
            user_id=str(acting_user_id),
            entity_id=str(change.entity_id),
            action=change.action,
        )
        return change

    async def apply_batch(
        self,
        acting_user_id: UUID,
        mutations: Sequence[Mutation | dict[str, Any]],
    ) -> list[BatchItemResult]:
        """Apply mutations in order, each in its own unit.

        A failure is recorded and the batch moves on; earlier successes stay.
        Raw dict payloads are parsed here so a malformed item fails alone.
        """
        results: list[BatchItemResult] = []
        for index, item in enumerate(mutations):
            kind = item.get("kind") if isinstance(item, dict) else item.kind
            try:
                mutation = parse_mutation(item) if isinstance(item, dict) else item
                change = await self.apply(acting_user_id, mutation)
            except DomainError as e:
                results.append(
                    BatchItemResult(
                        index=index,
                        kind=kind,
                        success=False,
                        error_code=e.code,
                        message=e.message,
                    )
                )
                continue
            results.append(
                BatchItemResult(
                    index=index,
                    kind=kind,
                    success=True,
                    entity_id=change.entity_id,
                    change=change,
                )
            )

        logger.info(
            "mutation_batch_applied",
            user_id=str(acting_user_id),
            total=len(results),
            failed=sum(1 for r in results if not r.success),
        )
        return results

    # =========================================================================
    # Target resolution
    # =========================================================================

    async def _writable_task(self, user_id: UUID, task_id: UUID) -> Task:
        task = await self.repository.get_task(task_id, for_update=True)
        return await self.visibility.require(user_id, task, "task", write=True)

    async def _writable_project(self, user_id: UUID, project_id: UUID, *, lock: bool = False) -> Project:
        project = await self.repository.get_project(project_id, for_update=lock)
        return await self.visibility.require(user_id, project, "project", write=True)

    async def _owned_project(self, user_id: UUID, project_id: UUID) -> Project:
        project = await self.visibility.readable_project(user_id, project_id, for_update=True)
        if not self.visibility.is_owner(user_id, project):
            raise NotFoundError("project")
        return project

    async def _section_in(self, user_id: UUID, section_id: UUID, project_id: UUID | None) -> Section:
        section = await self.visibility.readable_section(user_id, section_id)
        if section.project_id != project_id:
            raise ValidationError("Section does not belong to the task's project", field="section_id")
        return section

    async def _check_predecessor(
        self, user_id: UUID, task_id: UUID | None, predecessor_id: UUID, origin: MutationOrigin
    ) -> None:
        await self.visibility.readable_task(user_id, predecessor_id)
        if task_id is None:
            return
        if origin == MutationOrigin.IMPORT:
            # Imported chains are trusted; only the direct self-reference is refused
            if predecessor_id == task_id:
                raise ValidationError("A task cannot be blocked by itself", field="blocked_by")
            return
        await self.dependencies.check_predecessor(task_id, predecessor_id)

    # =========================================================================
    # Tasks
    # =========================================================================

    async def _create_task(self, user_id: UUID, m: CreateTask) -> AppliedChange:
        title = _require_text(m.title, "title", MAX_TITLE_LENGTH)
        priority = _validate_priority(m.priority)
        rule = validate_rule(m.recurrence_rule)

        project_id = m.project_id
        if m.parent_task_id is not None:
            parent = await self.visibility.readable_task(user_id, m.parent_task_id)
            if "project_id" not in m.model_fields_set:
                project_id = parent.project_id
            elif parent.project_id != project_id:
                raise ValidationError(
                    "Subtasks must be in their parent's project", field="parent_task_id"
                )

        if project_id is not None:
            await self._writable_project(user_id, project_id)
        if m.section_id is not None:
            await self._section_in(user_id, m.section_id, project_id)
        if m.blocked_by is not None:
            await self._check_predecessor(user_id, None, m.blocked_by, m.origin)

        task = Task(
            owner_id=user_id,
            project_id=project_id,
            section_id=m.section_id,
            parent_task_id=m.parent_task_id,
            title=title,
            description=m.description,
            status=TaskStatus.OPEN.value,
            priority=priority,
            due_date=m.due_date,
            due_time=m.due_time,
            deadline=m.deadline,
            recurrence_rule=rule,
            recurrence_base_date=m.due_date if rule else None,
            blocked_by=m.blocked_by,
            sort_order=m.sort_order,
        )
        await self.repository.add(task)

        logger.info(
            "task_created",
            task_id=str(task.id),
            project_id=str(project_id) if project_id else None,
            origin=m.origin.value,
        )
        return AppliedChange(
            kind=m.kind, entity_type="task", entity_id=task.id, action="created", entity=task
        )

    async def _update_task(self, user_id: UUID, m: UpdateTask) -> AppliedChange:
        task = await self._writable_task(user_id, m.task_id)
        changes = m.changes()
        status = None
        if "status" in changes:
            status = _validate_status(changes.pop("status"))

        if "title" in changes:
            changes["title"] = _require_text(changes["title"], "title", MAX_TITLE_LENGTH)
        if "priority" in changes:
            _validate_priority(changes["priority"])
        if "sort_order" in changes:
            _validate_sort_order(changes["sort_order"])

        # Destination project and section
        project_id = changes.get("project_id", task.project_id)
        if "project_id" in changes and project_id != task.project_id and project_id is not None:
            await self._writable_project(user_id, project_id)
        if "section_id" in changes:
            if changes["section_id"] is not None:
                await self._section_in(user_id, changes["section_id"], project_id)
        elif project_id != task.project_id and task.section_id is not None:
            # A section never follows its task into another project
            changes["section_id"] = None

        parent_task_id = changes.get("parent_task_id", task.parent_task_id)
        if parent_task_id is not None and ("parent_task_id" in changes or "project_id" in changes):
            parent = await self.visibility.readable_task(user_id, parent_task_id)
            if parent.project_id != project_id:
                raise ValidationError(
                    "Subtasks must be in their parent's project", field="parent_task_id"
                )
            if "parent_task_id" in changes:
                await ensure_no_cycle(
                    task.id,
                    parent_task_id,
                    self.repository.get_parent_task_ids,
                    max_depth=self.dependencies.max_depth,
                    relation="subtask",
                )

        if changes.get("blocked_by") is not None:
            await self._check_predecessor(user_id, task.id, changes["blocked_by"], m.origin)

        if "recurrence_rule" in changes:
            changes["recurrence_rule"] = validate_rule(changes["recurrence_rule"])
            due = changes.get("due_date", task.due_date)
            if changes["recurrence_rule"] is None:
                changes["recurrence_base_date"] = None
            elif task.recurrence_base_date is None or "due_date" in changes:
                changes["recurrence_base_date"] = due
        elif "due_date" in changes and task.recurrence_rule:
            # Rescheduling a repeating task re-anchors its series
            changes["recurrence_base_date"] = changes["due_date"]

        for name, value in changes.items():
            setattr(task, name, value)
        await self.repository.flush()

        change = AppliedChange(
            kind=m.kind,
            entity_type="task",
            entity_id=task.id,
            action="updated",
            entity=task,
            details={"fields": sorted(changes)},
        )
        if status is not None:
            transition = await self._transition(task, status)
            change.successor = transition.successor
            change.details.update(transition.details)
        return change

    async def _transition(self, task: Task, status: TaskStatus) -> AppliedChange:
        if status == TaskStatus.DONE:
            return await self._complete(task, "update_task")
        if status == TaskStatus.CANCELLED:
            return await self._cancel(task, "update_task")
        return await self._reopen(task, "update_task")

    async def _complete_task(self, user_id: UUID, m: CompleteTask) -> AppliedChange:
        task = await self._writable_task(user_id, m.task_id)
        return await self._complete(task, m.kind)

    async def _complete(self, task: Task, kind: str) -> AppliedChange:
        if task.status == TaskStatus.CANCELLED.value:
            raise ConflictError("Cancelled tasks cannot be completed; reopen the task first")
        if task.status == TaskStatus.DONE.value:
            return AppliedChange(
                kind=kind, entity_type="task", entity_id=task.id, action="unchanged", entity=task
            )

        completed_at = self._clock()
        task.status = TaskStatus.DONE.value
        task.completed_at = completed_at
        await self.repository.flush()

        unblocked = await self.dependencies.on_completed(task)
        successor = await self.expander.expand(task, completed_at)

        logger.info(
            "task_completed",
            task_id=str(task.id),
            successor_id=str(successor.id) if successor else None,
        )
        return AppliedChange(
            kind=kind,
            entity_type="task",
            entity_id=task.id,
            action="updated",
            entity=task,
            successor=successor,
            details={"unblocked_ids": [str(u) for u in unblocked]},
        )

    async def _reopen_task(self, user_id: UUID, m: ReopenTask) -> AppliedChange:
        task = await self._writable_task(user_id, m.task_id)
        return await self._reopen(task, m.kind)

    async def _reopen(self, task: Task, kind: str) -> AppliedChange:
        if task.status == TaskStatus.OPEN.value:
            return AppliedChange(
                kind=kind, entity_type="task", entity_id=task.id, action="unchanged", entity=task
            )
        task.status = TaskStatus.OPEN.value
        task.completed_at = None
        await self.repository.flush()
        logger.info("task_reopened", task_id=str(task.id))
        return AppliedChange(
            kind=kind, entity_type="task", entity_id=task.id, action="updated", entity=task
        )

    async def _cancel_task(self, user_id: UUID, m: CancelTask) -> AppliedChange:
        task = await self._writable_task(user_id, m.task_id)
        return await self._cancel(task, m.kind)

    async def _cancel(self, task: Task, kind: str) -> AppliedChange:
        if task.status == TaskStatus.CANCELLED.value:
            return AppliedChange(
                kind=kind, entity_type="task", entity_id=task.id, action="unchanged", entity=task
            )
        if task.status == TaskStatus.DONE.value:
            raise ConflictError("Completed tasks cannot be cancelled; reopen the task first")
        task.status = TaskStatus.CANCELLED.value
        task.completed_at = None
        await self.repository.flush()
        logger.info("task_cancelled", task_id=str(task.id))
        return AppliedChange(
            kind=kind, entity_type="task", entity_id=task.id, action="updated", entity=task
        )

    async def _delete_task(self, user_id: UUID, m: DeleteTask) -> AppliedChange:
        task = await self._writable_task(user_id, m.task_id)
        task_ids = await self.repository.descendant_task_ids(task.id)
        unlinked = await self.dependencies.unlink_dependents(task_ids)
        await self.repository.delete_tasks(task_ids)
        deletion = TaskDeletion(task_ids=task_ids, unlinked_dependent_ids=unlinked)

        logger.info(
            "task_deleted",
            task_id=str(m.task_id),
            subtask_count=len(task_ids) - 1,
            unlinked_count=len(unlinked),
        )
        return AppliedChange(
            kind=m.kind,
            entity_type="task",
            entity_id=m.task_id,
            action="deleted",
            details={
                "deleted_task_ids": [str(t) for t in deletion.task_ids],
                "unlinked_dependent_ids": [str(t) for t in deletion.unlinked_dependent_ids],
            },
        )

    # =========================================================================
    # Projects
    # =========================================================================

    async def _create_project(self, user_id: UUID, m: CreateProject) -> AppliedChange:
        name = _require_text(m.name, "name", MAX_NAME_LENGTH)
        color = _validate_color(m.color)
        if m.parent_id is not None:
            await self._writable_project(user_id, m.parent_id)

        project = Project(
            owner_id=user_id,
            parent_id=m.parent_id,
            name=name,
            description=m.description,
            color=color,
            sort_order=m.sort_order,
            is_archived=False,
        )
        await self.repository.add(project)

        logger.info("project_created", project_id=str(project.id), origin=m.origin.value)
        return AppliedChange(
            kind=m.kind, entity_type="project", entity_id=project.id, action="created", entity=project
        )

    async def _update_project(self, user_id: UUID, m: UpdateProject) -> AppliedChange:
        project = await self._writable_project(user_id, m.project_id, lock=True)
        changes = m.changes()

        if "name" in changes:
            changes["name"] = _require_text(changes["name"], "name", MAX_NAME_LENGTH)
        if "color" in changes:
            changes["color"] = _validate_color(changes["color"])
        if "sort_order" in changes:
            _validate_sort_order(changes["sort_order"])
        if changes.get("parent_id") is not None and changes["parent_id"] != project.parent_id:
            await self._writable_project(user_id, changes["parent_id"])
            await ensure_no_cycle(
                project.id,
                changes["parent_id"],
                self.repository.get_project_parent_ids,
                max_depth=self.dependencies.max_depth,
                relation="project",
            )

        for name, value in changes.items():
            setattr(project, name, value)
        await self.repository.flush()

        return AppliedChange(
            kind=m.kind,
            entity_type="project",
            entity_id=project.id,
            action="updated",
            entity=project,
            details={"fields": sorted(changes)},
        )

    async def _archive_project(self, user_id: UUID, m: ArchiveProject) -> AppliedChange:
        project = await self._owned_project(user_id, m.project_id)
        if project.is_archived == m.archived:
            action = "unchanged"
        else:
            project.is_archived = m.archived
            await self.repository.flush()
            action = "updated"
            logger.info("project_archived", project_id=str(project.id), archived=m.archived)
        return AppliedChange(
            kind=m.kind, entity_type="project", entity_id=project.id, action=action, entity=project
        )

    async def _delete_project(self, user_id: UUID, m: DeleteProject) -> AppliedChange:
        project = await self._owned_project(user_id, m.project_id)
        deletion = await self.repository.delete_project_tree(project.id)

        logger.info(
            "project_deleted",
            project_id=str(m.project_id),
            subproject_count=len(deletion.project_ids) - 1,
            section_count=deletion.section_count,
            share_count=deletion.share_count,
            moved_task_count=len(deletion.moved_task_ids),
        )
        return AppliedChange(
            kind=m.kind,
            entity_type="project",
            entity_id=m.project_id,
            action="deleted",
            details={
                "deleted_project_ids": [str(p) for p in deletion.project_ids],
                "moved_task_ids": [str(t) for t in deletion.moved_task_ids],
            },
        )

    # =========================================================================
    # Sections
    # =========================================================================

    async def _create_section(self, user_id: UUID, m: CreateSection) -> AppliedChange:
        name = _require_text(m.name, "name", MAX_NAME_LENGTH)
        await self._writable_project(user_id, m.project_id)

        section = Section(project_id=m.project_id, name=name, sort_order=m.sort_order)
        await self.repository.add(section)
        return AppliedChange(
            kind=m.kind, entity_type="section", entity_id=section.id, action="created", entity=section
        )

    async def _writable_section(self, user_id: UUID, section_id: UUID) -> Section:
        section = await self.repository.get_section(section_id, for_update=True)
        return await self.visibility.require(user_id, section, "section", write=True)

    async def _update_section(self, user_id: UUID, m: UpdateSection) -> AppliedChange:
        section = await self._writable_section(user_id, m.section_id)
        changes = m.changes()
        if "name" in changes:
            changes["name"] = _require_text(changes["name"], "name", MAX_NAME_LENGTH)
        if "sort_order" in changes:
            _validate_sort_order(changes["sort_order"])

        for name, value in changes.items():
            setattr(section, name, value)
        await self.repository.flush()
        return AppliedChange(
            kind=m.kind, entity_type="section", entity_id=section.id, action="updated", entity=section
        )

    async def _delete_section(self, user_id: UUID, m: DeleteSection) -> AppliedChange:
        section = await self._writable_section(user_id, m.section_id)
        await self.repository.delete_section(section)
        logger.info("section_deleted", section_id=str(m.section_id))
        return AppliedChange(
            kind=m.kind, entity_type="section", entity_id=m.section_id, action="deleted"
        )

    # =========================================================================
    # Shares
    # =========================================================================

    async def _create_share(self, user_id: UUID, m: CreateShare) -> AppliedChange:
        project = await self.visibility.readable_project(user_id, m.project_id, for_update=True)
        if not await self.visibility.can_manage_shares(user_id, project):
            raise NotFoundError("project")

        permission = _validate_permission(m.permission)
        if m.user_id == project.owner_id:
            raise ValidationError("A project cannot be shared with its owner", field="user_id")
        if await self.repository.get_user(m.user_id) is None:
            raise NotFoundError("user")
        if await self.repository.get_share(project.id, m.user_id) is not None:
            raise ConflictError("Project is already shared with this user")

        share = ProjectShare(
            project_id=project.id,
            shared_with_user_id=m.user_id,
            permission=permission,
            granted_by_id=user_id,
        )
        await self.repository.add(share)

        logger.info(
            "project_shared",
            project_id=str(project.id),
            shared_with=str(m.user_id),
            permission=permission,
        )
        return AppliedChange(
            kind=m.kind, entity_type="share", entity_id=share.id, action="created", entity=share
        )

    async def _update_share(self, user_id: UUID, m: UpdateShare) -> AppliedChange:
        share = await self.repository.get_share_by_id(m.share_id, for_update=True)
        share = await self.visibility.require(user_id, share, "share", write=True)
        permission = _validate_permission(m.permission)

        share.permission = permission
        await self.repository.flush()
        logger.info("share_updated", share_id=str(share.id), permission=permission)
        return AppliedChange(
            kind=m.kind, entity_type="share", entity_id=share.id, action="updated", entity=share
        )

    async def _revoke_share(self, user_id: UUID, m: RevokeShare) -> AppliedChange:
        share = await self.repository.get_share_by_id(m.share_id, for_update=True)
        share = await self.visibility.require(user_id, share, "share")
        if not await self.visibility.can_revoke_share(user_id, share):
            raise NotFoundError("share")

        await self.repository.delete_share(share)
        logger.info(
            "share_revoked",
            share_id=str(m.share_id),
            project_id=str(share.project_id),
            left=share.shared_with_user_id == user_id,
        )
        return AppliedChange(kind=m.kind, entity_type="share", entity_id=m.share_id, action="deleted")
