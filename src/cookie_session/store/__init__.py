"""Session stores: the async persistence contract and its implementations."""

from .base import SessionStore, StoreEvent, StoreListener
from .memory import MemoryStore
from .sqlite import SQLiteStore

__all__ = ["MemoryStore", "SQLiteStore", "SessionStore", "StoreEvent", "StoreListener"]
