"""
Configuration helpers for the car-wash POS storage layer.

Exposes a frozen Settings object that reads environment variables (storage
back end, data paths, encryption key, admin bootstrap flags) so that storage
implementations and services do not fetch os.environ directly.
"""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
import os

DEFAULT_ADMIN_PASSWORD = "aurum1705"
STORAGE_BACKENDS = ("json", "sql")


@dataclass(frozen=True)
class Settings:
    """Typed view of environment variables."""

    app_env: str
    storage_backend: str
    data_dir: Path
    database_url: str
    encryption_key: str
    admin_password: str
    admin_password_reconcile: bool
    max_failed_logins: int
    log_level: str

    @property
    def is_production(self) -> bool:
        return self.app_env in {"prod", "production"}


@lru_cache
def get_settings() -> Settings:
    """Read the current environment and build a Settings instance."""
    def _int(value: str, default: int = 0) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def _bool(value: str | None, default: bool = False) -> bool:
        if value is None:
            return default
        return value.strip().lower() in {"1", "true", "yes", "on"}

    data_dir = Path(os.getenv("DATA_DIR") or Path.cwd() / "data")
    database_path = Path(os.getenv("DATABASE_PATH") or data_dir / "database.sqlite")
    database_url = (os.getenv("DATABASE_URL") or "").strip() or f"sqlite:///{database_path}"

    return Settings(
        app_env=(os.getenv("APP_ENV") or "dev").lower(),
        storage_backend=(os.getenv("STORAGE_BACKEND") or "json").strip().lower(),
        data_dir=data_dir,
        database_url=database_url,
        encryption_key=os.getenv("ENCRYPTION_KEY", ""),
        admin_password=os.getenv("ADMIN_PASSWORD") or DEFAULT_ADMIN_PASSWORD,
        admin_password_reconcile=_bool(os.getenv("ADMIN_PASSWORD_RECONCILE"), False),
        max_failed_logins=_int(os.getenv("MAX_FAILED_LOGINS", "5"), 5),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
    )
