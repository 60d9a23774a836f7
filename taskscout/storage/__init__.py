"""Persistence — repository protocols with in-memory and PostgreSQL backends."""

from __future__ import annotations

from taskscout.config import TaskscoutSettings
from taskscout.errors import ConfigurationError

from .base import Storage
from .memory import create_memory_storage


async def build_storage(config: TaskscoutSettings) -> Storage:
    """Create the backend named by ``storage_backend``."""
    backend = config.storage_backend.lower()
    if backend == "memory":
        return create_memory_storage()
    if backend == "postgres":
        from .postgres import create_postgres_storage
        return await create_postgres_storage(config.postgres_url)
    raise ConfigurationError(f"unknown storage_backend: {config.storage_backend}")


__all__ = ["Storage", "build_storage", "create_memory_storage"]
