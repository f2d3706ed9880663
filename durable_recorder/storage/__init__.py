"""Storage backends for sessions, chunks and derived records."""

from .base import AbstractSessionStore
from .memory_store import InMemorySessionStore
from .file_manager import FileSessionStore

__all__ = [
    "AbstractSessionStore",
    "InMemorySessionStore",
    "FileSessionStore",
]
