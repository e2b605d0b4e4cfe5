"""Tool registry for the AI Assistant.

Query tools are answered inline from the visibility-gated read side. Action
tools never touch data: they translate the model's input into a mutation
payload plus a human-readable description, to be stored as a pending action.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from opustasks.ai.providers.base import ToolDefinition
from opustasks.exceptions import NotFoundError
from opustasks.services.queries import QueryService


def _task_summary(task, project_name: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": str(task.id),
        "title": task.title,
        "status": task.status,
        "priority": task.priority,
        "due_date": task.due_date.isoformat() if task.due_date else None,
        "deadline": task.deadline.isoformat() if task.deadline else None,
        "project_id": str(task.project_id) if task.project_id else None,
        "project": project_name,
        "recurrence_rule": task.recurrence_rule,
    }


class BaseTool(ABC):
    """Base class for all assistant tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for the tool."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    @abstractmethod
    def input_schema(self) -> dict:
        """JSON Schema for the tool's input parameters."""
        pass

    @property
    def is_action(self) -> bool:
        """Whether this tool proposes a change (requires approval)."""
        return False

    def to_definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            input_schema=self.input_schema,
        )


class QueryTool(BaseTool):
    """Read-only tool, executed immediately."""

    @abstractmethod
    async def execute(
        self,
        input: Dict[str, Any],
        queries: QueryService,
        user_id: UUID,
        today: date,
    ) -> Dict[str, Any]:
        pass


class ActionTool(BaseTool):
    """Tool whose call becomes a pending action."""

    @property
    def is_action(self) -> bool:
        return True

    @property
    def kind(self) -> str:
        """Mutation kind the proposal is applied as."""
        return self.name

    @abstractmethod
    def describe(self, input: Dict[str, Any]) -> str:
        """One-line description shown next to the approve button."""
        pass

    def to_payload(self, input: Dict[str, Any]) -> Dict[str, Any]:
        """Mutation payload, in the executor's wire format."""
        allowed = set(self.input_schema.get("properties", {}))
        payload = {key: value for key, value in input.items() if key in allowed}
        payload["kind"] = self.kind
        payload["origin"] = "assistant"
        return payload


def _task_id_schema(verb: str) -> dict:
    return {
        "type": "object",
        "properties": {
            "task_id": {"type": "string", "description": f"The UUID of the task to {verb}"},
        },
        "required": ["task_id"],
    }


# =============================================================================
# Query tools
# =============================================================================


class GetPortfolioSummaryTool(QueryTool):
    name = "get_portfolio_summary"
    description = (
        "Get a high-level summary of the user's task portfolio including counts "
        "by status, projects, and upcoming deadlines."
    )
    input_schema = {"type": "object", "properties": {}, "required": []}

    async def execute(self, input, queries, user_id, today):
        snapshot = await queries.context_snapshot(user_id, today)
        upcoming = await queries.upcoming(user_id, today)
        open_by_project: Dict[str, int] = {}
        for task in snapshot.tasks:
            if task.project_id is not None:
                open_by_project[str(task.project_id)] = open_by_project.get(str(task.project_id), 0) + 1

        return {
            "open_tasks": len(snapshot.tasks),
            "inbox": len(snapshot.inbox_tasks),
            "due_today": len(snapshot.today_tasks),
            "overdue": len(snapshot.overdue_tasks),
            "projects": [
                {
                    "id": str(p.id),
                    "name": p.name,
                    "archived": p.is_archived,
                    "open_tasks": open_by_project.get(str(p.id), 0),
                }
                for p in snapshot.projects
            ],
            "upcoming_deadlines": [
                _task_summary(v.task, snapshot.project_name(v.task.project_id))
                for v in upcoming
            ],
        }


class GetProjectDetailsTool(QueryTool):
    name = "get_project_details"
    description = "Get detailed information about a specific project including its tasks and sections."
    input_schema = {
        "type": "object",
        "properties": {
            "project_id": {"type": "string", "description": "The UUID of the project to get details for"},
        },
        "required": ["project_id"],
    }

    async def execute(self, input, queries, user_id, today):
        try:
            detail = await queries.get_project(user_id, UUID(str(input["project_id"])))
        except (KeyError, ValueError, NotFoundError):
            return {"error": "Project not found"}

        return {
            "id": str(detail.project.id),
            "name": detail.project.name,
            "description": detail.project.description,
            "archived": detail.project.is_archived,
            "permission": detail.permission.label,
            "sections": [{"id": str(s.id), "name": s.name} for s in detail.sections],
            "tasks": [
                {**_task_summary(v.task, detail.project.name), "blocked": v.is_blocked}
                for v in detail.tasks
            ],
        }


class SearchTasksTool(QueryTool):
    name = "search_tasks"
    description = "Search for tasks by title or description content."
    input_schema = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Search query to match against task titles and descriptions",
            },
        },
        "required": ["query"],
    }

    async def execute(self, input, queries, user_id, today):
        tasks = await queries.search_tasks(user_id, str(input.get("query", "")))
        return {"count": len(tasks), "tasks": [_task_summary(t) for t in tasks]}


# =============================================================================
# Action tools
# =============================================================================


class CreateTaskTool(ActionTool):
    name = "create_task"
    description = "Create a new task. The user will need to approve this action."
    input_schema = {
        "type": "object",
        "properties": {
            "title": {"type": "string", "description": "The title of the task"},
            "description": {"type": "string", "description": "Optional description with more details"},
            "project_id": {
                "type": "string",
                "description": "Optional project ID to add the task to. If omitted, goes to Inbox.",
            },
            "due_date": {"type": "string", "description": "Optional due date in YYYY-MM-DD format"},
            "priority": {"type": "number", "description": "Priority level: 0=none, 1=low, 2=medium, 3=high"},
            "recurrence_rule": {
                "type": "string",
                "description": "Optional repeat rule, e.g. FREQ=WEEKLY;BYDAY=MO,TH",
            },
        },
        "required": ["title"],
    }

    def describe(self, input):
        due = f" (due {input['due_date']})" if input.get("due_date") else ""
        return f'Create task: "{input.get("title", "")}"{due}'


class UpdateTaskTool(ActionTool):
    name = "update_task"
    description = "Update an existing task. The user will need to approve this action."
    input_schema = {
        "type": "object",
        "properties": {
            "task_id": {"type": "string", "description": "The UUID of the task to update"},
            "title": {"type": "string", "description": "New title for the task"},
            "description": {"type": "string", "description": "New description for the task"},
            "due_date": {
                "type": ["string", "null"],
                "description": "New due date in YYYY-MM-DD format, or null to remove",
            },
            "priority": {"type": "number", "description": "New priority level: 0=none, 1=low, 2=medium, 3=high"},
            "project_id": {
                "type": ["string", "null"],
                "description": "Move task to a different project (or null for Inbox)",
            },
        },
        "required": ["task_id"],
    }

    def describe(self, input):
        fields = [key for key in input if key != "task_id"]
        return f"Update task: {', '.join(fields)}"


class CompleteTaskTool(ActionTool):
    name = "complete_task"
    description = "Mark a task as completed. The user will need to approve this action."
    input_schema = _task_id_schema("complete")

    def describe(self, input):
        return "Complete task"


class DeleteTaskTool(ActionTool):
    name = "delete_task"
    description = "Delete a task permanently. The user will need to approve this action."
    input_schema = _task_id_schema("delete")

    def describe(self, input):
        return "Delete task"


class CreateProjectTool(ActionTool):
    name = "create_project"
    description = "Create a new project. The user will need to approve this action."
    input_schema = {
        "type": "object",
        "properties": {
            "name": {"type": "string", "description": "The name of the project"},
            "description": {"type": "string", "description": "Optional description of the project"},
            "color": {"type": "string", "description": "Optional hex color for the project (e.g., #ff5733)"},
        },
        "required": ["name"],
    }

    def describe(self, input):
        return f'Create project: "{input.get("name", "")}"'


class ArchiveProjectTool(ActionTool):
    name = "archive_project"
    description = "Archive a project (hide from active view). The user will need to approve this action."
    input_schema = {
        "type": "object",
        "properties": {
            "project_id": {"type": "string", "description": "The UUID of the project to archive"},
        },
        "required": ["project_id"],
    }

    def describe(self, input):
        return "Archive project"


class ToolRegistry:
    """Name-indexed set of tools offered to the model."""

    def __init__(self, tools: Optional[List[BaseTool]] = None):
        self._tools: Dict[str, BaseTool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: BaseTool) -> None:
        self._tools[tool.name] = tool

    def get_tool(self, name: str) -> Optional[BaseTool]:
        return self._tools.get(name)

    def get_all_tools(self) -> List[BaseTool]:
        return list(self._tools.values())

    def definitions(self) -> List[ToolDefinition]:
        return [tool.to_definition() for tool in self._tools.values()]


def create_default_registry() -> ToolRegistry:
    return ToolRegistry([
        GetPortfolioSummaryTool(),
        GetProjectDetailsTool(),
        SearchTasksTool(),
        CreateTaskTool(),
        UpdateTaskTool(),
        CompleteTaskTool(),
        DeleteTaskTool(),
        CreateProjectTool(),
        ArchiveProjectTool(),
    ])

