"""Persistence layer for the marketplace."""

from .database import Database, get_database, init_database
from .schema import Base

__all__ = ["Base", "Database", "get_database", "init_database"]
