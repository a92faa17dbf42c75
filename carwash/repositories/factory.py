"""Back end selection from configuration."""

from __future__ import annotations

from loguru import logger

from carwash.core.config import STORAGE_BACKENDS, Settings, get_settings

from .base import IStorage
from .json_storage import JsonFileStorage
from .sql_repository import SQLStorage


def create_storage(settings: Settings | None = None, *, bootstrap: bool = False) -> IStorage:
    """Build and initialize the configured storage; optionally ensure the default admin."""
    settings = settings or get_settings()
    backend = settings.storage_backend
    if backend == "json":
        storage: IStorage = JsonFileStorage(settings.data_dir)
    elif backend == "sql":
        storage = SQLStorage(settings.database_url)
    else:
        raise ValueError(f"unknown STORAGE_BACKEND {backend!r}; expected one of {', '.join(STORAGE_BACKENDS)}")
    storage.initialize()
    logger.info("Using {} storage", backend)
    if bootstrap:
        from carwash.services.bootstrap import ensure_default_admin

        ensure_default_admin(storage, settings)
    return storage
