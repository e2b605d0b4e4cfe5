"""Request-scoped construction of the core services.

Every request gets its own repository over its own session; the services
are built from it and share nothing process-wide.
"""

from typing import Annotated

from fastapi import Depends

from opustasks.db.session import DBSession
from opustasks.services.dependencies import DependencyEngine
from opustasks.services.mutations import MutationExecutor
from opustasks.services.permissions import PermissionResolver
from opustasks.services.queries import QueryService
from opustasks.services.repository import SqlEntityRepository
from opustasks.services.visibility import VisibilityEngine


def get_repository(db: DBSession) -> SqlEntityRepository:
    return SqlEntityRepository(db)


Repository = Annotated[SqlEntityRepository, Depends(get_repository)]


def get_visibility(repository: Repository) -> VisibilityEngine:
    return VisibilityEngine(repository, PermissionResolver(repository))


def get_executor(
    repository: Repository,
    visibility: Annotated[VisibilityEngine, Depends(get_visibility)],
) -> MutationExecutor:
    return MutationExecutor(repository, visibility=visibility, dependencies=DependencyEngine(repository))


def get_queries(
    repository: Repository,
    visibility: Annotated[VisibilityEngine, Depends(get_visibility)],
) -> QueryService:
    return QueryService(repository, visibility=visibility, dependencies=DependencyEngine(repository))


Executor = Annotated[MutationExecutor, Depends(get_executor)]
Queries = Annotated[QueryService, Depends(get_queries)]
