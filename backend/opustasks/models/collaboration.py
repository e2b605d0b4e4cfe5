"""Project sharing model."""

from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from opustasks.db.base import Base, CreatedAtMixin, UUIDMixin


class SharePermission(str, Enum):
    """Permission a share grants on a single project."""

    VIEW = "view"
    EDIT = "edit"
    ADMIN = "admin"


class ProjectShare(Base, UUIDMixin, CreatedAtMixin):
    """
    Grant of access on one project to one user.

    Unique per (project, user). A share never applies to the project's
    subprojects; each project's share set is independent.
    """

    __tablename__ = "project_shares"
    __table_args__ = (
        UniqueConstraint("project_id", "shared_with_user_id", name="uq_project_user_share"),
    )

    # Project being shared
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # User receiving access
    shared_with_user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # Permission level
    permission: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SharePermission.VIEW.value,
        comment="view, edit, admin",
    )

    # Granted by (owner or an admin sharee)
    granted_by_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<ProjectShare project={self.project_id} user={self.shared_with_user_id}>"
