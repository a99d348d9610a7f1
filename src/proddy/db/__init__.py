"""Database module for Proddy.

Exports:
- Base: SQLAlchemy declarative base
- db_session: Async session context manager
"""

from proddy.db.models import Base
from proddy.db.session import db_session, init_db

__all__ = ["Base", "db_session", "init_db"]
