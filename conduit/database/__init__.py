"""Relational persistence: SQLModel tables, session management, SQL store."""

from .session_manager import SessionManager, TransientDatabaseError
from .sql_store import SqlConversationStore

__all__ = ["SessionManager", "SqlConversationStore", "TransientDatabaseError"]
