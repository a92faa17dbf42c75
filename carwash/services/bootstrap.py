"""
Default administrator bootstrap.

Creates the ``admin`` account on an empty store. Resetting an existing admin
password back to ``ADMIN_PASSWORD`` is a recovery convenience, not a security
measure, so it only happens when ``ADMIN_PASSWORD_RECONCILE`` is enabled and
is always logged.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from carwash.core.config import DEFAULT_ADMIN_PASSWORD, Settings, get_settings
from carwash.core.security import verify_password
from carwash.domain.schemas import UserCreate
from carwash.repositories.base import IStorage

ADMIN_USERNAME = "admin"
ADMIN_EMAIL = "admin@1solution.com.py"
ADMIN_INVOICE_LIMIT = 999999


@dataclass
class BootstrapResult:
    created: bool
    reconciled: bool
    user_id: Optional[str]


def ensure_default_admin(storage: IStorage, settings: Settings | None = None) -> BootstrapResult:
    settings = settings or get_settings()
    existing = storage.get_user_by_username(ADMIN_USERNAME)
    if existing is None:
        admin = storage.create_user(
            UserCreate(
                username=ADMIN_USERNAME,
                password=settings.admin_password,
                full_name="Administrator",
                email=ADMIN_EMAIL,
                role="admin",
                subscription_type="enterprise",
                monthly_invoice_limit=ADMIN_INVOICE_LIMIT,
            )
        )
        logger.info("Default admin user created (username: {})", ADMIN_USERNAME)
        if settings.admin_password == DEFAULT_ADMIN_PASSWORD:
            logger.warning("Admin uses the built-in default password; set ADMIN_PASSWORD to change it")
        return BootstrapResult(created=True, reconciled=False, user_id=admin.id)

    if not settings.admin_password_reconcile:
        return BootstrapResult(created=False, reconciled=False, user_id=existing.id)

    if verify_password(settings.admin_password, existing.password):
        logger.info("Admin password matches ADMIN_PASSWORD; nothing to reconcile")
        return BootstrapResult(created=False, reconciled=False, user_id=existing.id)

    storage.update_user(existing.id, {"password": settings.admin_password})
    logger.warning("Admin password reset to the configured ADMIN_PASSWORD (ADMIN_PASSWORD_RECONCILE is on)")
    return BootstrapResult(created=False, reconciled=True, user_id=existing.id)
