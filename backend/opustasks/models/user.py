"""User model."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from opustasks.db.base import BaseModel


class User(BaseModel):
    """Registered user. Identity is immutable for the lifetime of the account."""

    __tablename__ = "users"

    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<User {self.display_name}>"
