"""
Persistence adapters.

Services depend on the ``IStorage`` contract; ``create_storage`` picks the
JSON-file or SQL implementation from configuration.
"""

from .base import IStorage
from .errors import ConstraintViolation, StorageError
from .factory import create_storage
from .json_storage import JsonFileStorage
from .sql_repository import SQLStorage

__all__ = [
    "ConstraintViolation",
    "IStorage",
    "JsonFileStorage",
    "SQLStorage",
    "StorageError",
    "create_storage",
]
