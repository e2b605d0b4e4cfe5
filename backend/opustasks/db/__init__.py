"""Database package."""

from opustasks.db.base import Base, BaseModel
from opustasks.db.session import DBSession, get_db_session

__all__ = ["Base", "BaseModel", "DBSession", "get_db_session"]
