"""
Database layer — Multi-backend persistence for flows and sessions.

Backends:
  - SQL (PostgreSQL / MySQL / SQLite via SQLAlchemy async)
  - In-memory (dict-based, for development/testing)
  - File (JSON files on disk, for small deployments)

Quick start:
  from database import create_store
  store = create_store({"store_backend": "memory"})
  session = await store.get_session("s1")
"""
from database.models import (
    Base, FlowRow, SessionStateRow, FormAnswerRow, CustomFieldValueRow, DebugActionRow,
)
from database.session import get_engine, get_db_session, init_db, close_db
from database.store_base import (
    BaseRuntimeStore, BaseFlowStore, BaseSessionStore,
    BaseAnswerLog, BaseCustomFieldStore, BaseActionLog,
)
from database.store import SqlRuntimeStore
from database.store_memory import InMemoryRuntimeStore
from database.store_file import FileRuntimeStore
from database.store_factory import create_store, create_configured_store, get_store, reset_store

__all__ = [
    # ORM models
    "Base", "FlowRow", "SessionStateRow", "FormAnswerRow",
    "CustomFieldValueRow", "DebugActionRow",
    # Session management
    "get_engine", "get_db_session", "init_db", "close_db",
    # Store interfaces
    "BaseRuntimeStore", "BaseFlowStore", "BaseSessionStore",
    "BaseAnswerLog", "BaseCustomFieldStore", "BaseActionLog",
    # Store backends
    "SqlRuntimeStore", "InMemoryRuntimeStore", "FileRuntimeStore",
    # Factory
    "create_store", "create_configured_store", "get_store", "reset_store",
]
