"""Persistence layer for the personal notes manager."""
from .errors import (
    DuplicateUsernameError,
    MigrationError,
    PoolClosedError,
    StorageError,
    StorageTimeoutError,
)
from .models import DEFAULT_NOTE_COLOR, MigrationRecord, Note, User
from .pool import ConnectionPool
from .migrations import MIGRATIONS, Migration, MigrationRunner
from .repository import NOTES_PAGE_SIZE, NoteStore, create_store

__all__ = [
    "ConnectionPool",
    "DEFAULT_NOTE_COLOR",
    "DuplicateUsernameError",
    "MIGRATIONS",
    "Migration",
    "MigrationError",
    "MigrationRecord",
    "MigrationRunner",
    "NOTES_PAGE_SIZE",
    "Note",
    "NoteStore",
    "PoolClosedError",
    "StorageError",
    "StorageTimeoutError",
    "User",
    "create_store",
]
