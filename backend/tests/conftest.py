"""
Pytest configuration for opustasks tests.

Every test gets its own in-memory SQLite database built from the ORM
metadata, plus small factories for users, projects, shares and tasks.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["AI_RETRY_MIN_SECONDS"] = "0"
os.environ["AI_RETRY_MAX_SECONDS"] = "0"

from datetime import datetime, timezone
from typing import AsyncIterator, TypeVar

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from opustasks.ai.providers.base import AIProvider, AIResponseWithTools, ToolUse
from opustasks.db.base import Base
from opustasks.db.session import build_engine
from opustasks.models import Project, ProjectShare, Section, Task, User
from opustasks.services.mutations import MutationExecutor
from opustasks.services.queries import QueryService
from opustasks.services.repository import SqlEntityRepository

M = TypeVar("M")

FIXED_NOW = datetime(2024, 5, 6, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
async def engine():
    engine = build_engine(os.environ["DATABASE_URL"])
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def repository(db_session: AsyncSession) -> SqlEntityRepository:
    return SqlEntityRepository(db_session)


@pytest.fixture
def executor(repository: SqlEntityRepository) -> MutationExecutor:
    return MutationExecutor(repository, clock=lambda: FIXED_NOW)


@pytest.fixture
def queries(repository: SqlEntityRepository) -> QueryService:
    return QueryService(repository)


async def reload(db: AsyncSession, model: type[M], entity_id) -> M | None:
    """Fetch a fresh copy of a row, overwriting anything stale in the session."""
    result = await db.execute(
        select(model).where(model.id == entity_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


@pytest.fixture
def make_user(db_session: AsyncSession):
    async def factory(display_name: str = "User") -> User:
        user = User(display_name=display_name)
        db_session.add(user)
        await db_session.flush()
        return user

    return factory


@pytest.fixture
def make_project(db_session: AsyncSession):
    async def factory(owner: User, name: str = "Project", **fields) -> Project:
        project = Project(owner_id=owner.id, name=name, **fields)
        db_session.add(project)
        await db_session.flush()
        return project

    return factory


@pytest.fixture
def make_section(db_session: AsyncSession):
    async def factory(project: Project, name: str = "Section", **fields) -> Section:
        section = Section(project_id=project.id, name=name, **fields)
        db_session.add(section)
        await db_session.flush()
        return section

    return factory


@pytest.fixture
def make_task(db_session: AsyncSession):
    async def factory(owner: User, title: str = "Task", project: Project | None = None, **fields) -> Task:
        task = Task(
            owner_id=owner.id,
            project_id=project.id if project is not None else None,
            title=title,
            **fields,
        )
        db_session.add(task)
        await db_session.flush()
        return task

    return factory


@pytest.fixture
def share(db_session: AsyncSession):
    async def factory(project: Project, user: User, permission: str = "view") -> ProjectShare:
        grant = ProjectShare(
            project_id=project.id,
            shared_with_user_id=user.id,
            permission=permission,
            granted_by_id=project.owner_id,
        )
        db_session.add(grant)
        await db_session.flush()
        return grant

    return factory


@pytest.fixture
async def alice(make_user) -> User:
    return await make_user("Alice")


@pytest.fixture
async def bob(make_user) -> User:
    return await make_user("Bob")


@pytest.fixture
async def carol(make_user) -> User:
    return await make_user("Carol")


class ScriptedProvider(AIProvider):
    """Provider that replays canned responses (or raises canned errors) in order."""

    def __init__(self, *steps):
        self.steps = list(steps)
        self.calls: list[dict] = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    @property
    def default_model(self) -> str:
        return "scripted-model"

    async def complete_with_tools(self, messages, tools, tool_uses=None, tool_results=None, **kwargs):
        self.calls.append(
            {"messages": list(messages), "tools": tools, "tool_uses": tool_uses, "tool_results": tool_results}
        )
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        return step


def reply(text: str = "", *tool_calls: tuple[str, dict]) -> AIResponseWithTools:
    """A provider response with optional ``(tool_name, input)`` calls."""
    return AIResponseWithTools(
        content=text,
        model="scripted-model",
        finish_reason="tool_use" if tool_calls else "end_turn",
        tool_uses=[
            ToolUse(id=f"toolu_{i}", name=name, input=tool_input)
            for i, (name, tool_input) in enumerate(tool_calls)
        ],
    )
