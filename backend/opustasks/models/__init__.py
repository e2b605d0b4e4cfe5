"""SQLAlchemy models package."""

from opustasks.models.user import User
from opustasks.models.project import (
    DEFAULT_PROJECT_COLOR,
    Project,
    Section,
    Task,
    TaskStatus,
)
from opustasks.models.collaboration import ProjectShare, SharePermission
from opustasks.models.ai import (
    AIConversation,
    AIConversationMessage,
    AIPendingAction,
)

__all__ = [
    "DEFAULT_PROJECT_COLOR",
    "User",
    "Project",
    "Section",
    "Task",
    "TaskStatus",
    "ProjectShare",
    "SharePermission",
    "AIConversation",
    "AIConversationMessage",
    "AIPendingAction",
]
