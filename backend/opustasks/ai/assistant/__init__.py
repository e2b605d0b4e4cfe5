"""AI collaborator: context-aware chat with tool calling.

The assistant answers read questions directly and turns write requests into
pending actions that the user approves or rejects one by one.
"""

from opustasks.ai.assistant.executors import approve_actions, reject_action
from opustasks.ai.assistant.service import AssistantService
from opustasks.ai.assistant.tools import ToolRegistry, create_default_registry

__all__ = [
    "AssistantService",
    "ToolRegistry",
    "create_default_registry",
    "approve_actions",
    "reject_action",
]
