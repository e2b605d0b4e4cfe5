"""Services package."""

from opustasks.services.dependencies import DependencyEngine
from opustasks.services.mutations import MutationExecutor
from opustasks.services.permissions import PermissionLevel, PermissionResolver
from opustasks.services.queries import QueryService
from opustasks.services.recurrence import RecurrenceExpander
from opustasks.services.repository import EntityRepository, SqlEntityRepository
from opustasks.services.visibility import VisibilityEngine

__all__ = [
    "DependencyEngine",
    "EntityRepository",
    "MutationExecutor",
    "PermissionLevel",
    "PermissionResolver",
    "QueryService",
    "RecurrenceExpander",
    "SqlEntityRepository",
    "VisibilityEngine",
]
