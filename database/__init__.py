"""
Conversation State Store — Multi-backend persistence.

Backends:
  - SQL (PostgreSQL / MySQL / SQLite via SQLAlchemy async)
  - In-memory (dict-based, for development/testing)
  - File (JSON files on disk, for small deployments)

Quick start:
  from database import create_store, MISSING
  store = create_store({"store_backend": "memory"})
  calendar_id = await store.get(address, "calendarId")
  if calendar_id is MISSING: ...
"""
from database.store_base import BaseConversationStore, MISSING
from database.store_memory import InMemoryConversationStore
from database.store_file import FileConversationStore
from database.store_factory import create_store, get_store, reset_store

__all__ = [
    # Store interface
    "BaseConversationStore", "MISSING",
    # Store backends (SqlConversationStore lives in database.store, imported lazily)
    "InMemoryConversationStore", "FileConversationStore",
    # Factory
    "create_store", "get_store", "reset_store",
]
