"""
Guardian Angel - Core Package
=============================

Core business logic, models, and schemas.
"""

from guardian.core.config import settings
from guardian.core.database import Base, get_db, get_db_session

__all__ = ["Base", "get_db", "get_db_session", "settings"]
