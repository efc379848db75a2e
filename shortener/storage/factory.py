"""
Factory for creating stores from settings.
"""

from enum import Enum

from ..config import Settings
from .base import Store
from .memory import MemoryStore
from .sql import SqlStore


class StorageBackend(Enum):
    """Available storage backends"""
    SQL = "sql"
    MEMORY = "memory"


def create_store(settings: Settings) -> Store:
    """
    Build an unopened store for the configured backend.

    Raises:
        ValueError: If STORAGE_BACKEND is unknown
    """
    backend = StorageBackend(settings.STORAGE_BACKEND.lower())

    if backend == StorageBackend.SQL:
        return SqlStore(
            settings.DATABASE_URL,
            timeout=settings.STORAGE_TIMEOUT_SECONDS,
            echo=settings.ENVIRONMENT == "development",
        )
    return MemoryStore()
