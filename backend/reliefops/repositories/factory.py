from reliefops.config import Settings
from reliefops.repositories.base import Store
from reliefops.repositories.memory import MemoryStore
from reliefops.repositories.sql import SqlStore


def build_store(settings: Settings) -> Store:
    """Pick the system of record named by STORE_BACKEND. The caller opens and closes it."""
    if settings.STORE_BACKEND == "memory":
        return MemoryStore(lock_timeout_seconds=settings.ALLOCATION_LOCK_TIMEOUT_SECONDS)
    return SqlStore(settings)
