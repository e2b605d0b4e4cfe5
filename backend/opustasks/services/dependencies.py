"""Single-predecessor dependencies between tasks.

A task is blocked while its ``blocked_by`` predecessor is not done. The
blocked flag is always derived here and never stored, so completing or
reopening a predecessor changes its dependents without touching them.
"""

from typing import Iterable, Sequence
from uuid import UUID

import structlog

from opustasks.config import get_settings
from opustasks.models import Task, TaskStatus
from opustasks.services.hierarchy import ensure_no_cycle
from opustasks.services.repository import EntityRepository

logger = structlog.get_logger()


class DependencyEngine:
    """Derives blocked state and guards predecessor chains."""

    def __init__(self, repository: EntityRepository, max_depth: int | None = None):
        self.repository = repository
        self.max_depth = max_depth or get_settings().max_chain_depth

    @staticmethod
    def is_blocked_by(predecessor: Task | None) -> bool:
        return predecessor is not None and predecessor.status != TaskStatus.DONE.value

    async def is_blocked(self, task: Task) -> bool:
        if task.blocked_by is None:
            return False
        predecessor = await self.repository.get_task(task.blocked_by)
        return self.is_blocked_by(predecessor)

    async def blocked_ids(self, tasks: Iterable[Task]) -> set[UUID]:
        """Ids of the given tasks that are currently blocked, in one lookup."""
        tasks = list(tasks)
        predecessors = await self.repository.get_tasks(
            t.blocked_by for t in tasks if t.blocked_by is not None
        )
        return {
            t.id
            for t in tasks
            if t.blocked_by is not None and self.is_blocked_by(predecessors.get(t.blocked_by))
        }

    async def check_predecessor(self, task_id: UUID, predecessor_id: UUID | None) -> None:
        """Raise ``CycleError`` if ``task_id`` may not point at ``predecessor_id``."""
        await ensure_no_cycle(
            task_id,
            predecessor_id,
            self.repository.get_predecessor_ids,
            max_depth=self.max_depth,
            relation="dependency",
        )

    async def dependents_of(self, task_id: UUID) -> Sequence[Task]:
        return await self.repository.list_dependents(task_id)

    async def on_completed(self, task: Task) -> list[UUID]:
        """Report dependents that a completion just unblocked.

        Nothing is written: their blocked flag follows from the new status.
        """
        dependents = await self.dependents_of(task.id)
        unblocked = [d.id for d in dependents if d.status == TaskStatus.OPEN.value]
        if unblocked:
            logger.info(
                "dependents_unblocked",
                task_id=str(task.id),
                dependent_ids=[str(d) for d in unblocked],
            )
        return unblocked

    async def unlink_dependents(self, task_ids: Iterable[UUID]) -> list[UUID]:
        unlinked = await self.repository.unlink_dependents(task_ids)
        if unlinked:
            logger.info("dependents_unlinked", dependent_ids=[str(d) for d in unlinked])
        return unlinked
