"""Database module."""

from prima.db.base import Base
from prima.db.session import async_session_maker, get_db, init_db

__all__ = ["Base", "async_session_maker", "get_db", "init_db"]
