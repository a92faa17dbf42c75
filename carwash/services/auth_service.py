"""
Authentication and account related use cases.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from loguru import logger

from carwash.core.config import Settings, get_settings
from carwash.core.security import verify_password
from carwash.core.utils import utcnow
from carwash.domain.records import PublicUser, User
from carwash.domain.schemas import ChangePasswordRequest, LoginRequest
from carwash.repositories.base import IStorage, validated


class AuthError(Exception):
    """Base class for authentication-related exceptions."""


class InvalidCredentialsError(AuthError):
    pass


class AccountInactiveError(AuthError):
    pass


class AccountBlockedError(AuthError):
    pass


class AccountExpiredError(AuthError):
    pass


class UserNotFoundError(AuthError):
    pass


@dataclass
class AuthService:
    """Login, lockout and password change flows on top of any storage back end."""

    storage: IStorage
    settings: Optional[Settings] = field(default=None)

    def __post_init__(self):
        self.settings = self.settings or get_settings()

    def authenticate(self, username: str, password: str) -> PublicUser:
        request = validated(LoginRequest, {"username": username, "password": password})
        user = self.storage.get_user_by_username(request.username.strip())
        if user is None:
            raise InvalidCredentialsError("invalid username or password")
        if user.is_blocked:
            raise AccountBlockedError("account is blocked")
        if not verify_password(request.password, user.password):
            self._register_failure(user)
            raise InvalidCredentialsError("invalid username or password")
        if not user.is_active:
            raise AccountInactiveError("account is inactive")
        if user.expiration_date is not None and user.expiration_date < utcnow():
            raise AccountExpiredError("subscription expired")
        updated = self.storage.update_user(
            user.id,
            {"failed_login_attempts": 0, "last_failed_login": None, "last_login": utcnow()},
        )
        logger.info("User {} logged in", user.username)
        return PublicUser.from_user(updated or user)

    def _register_failure(self, user: User) -> None:
        attempts = user.failed_login_attempts + 1
        changes: dict[str, Any] = {"failed_login_attempts": attempts, "last_failed_login": utcnow()}
        limit = self.settings.max_failed_logins
        if limit > 0 and attempts >= limit:
            changes["is_blocked"] = True
            logger.warning("User {} blocked after {} failed logins", user.username, attempts)
        else:
            logger.info("Failed login for {} ({} of {})", user.username, attempts, limit)
        self.storage.update_user(user.id, changes)

    def change_password(
        self, user_id: str, request: ChangePasswordRequest | Mapping[str, Any]
    ) -> PublicUser:
        request = validated(ChangePasswordRequest, request)
        user = self.storage.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        if not verify_password(request.current_password, user.password):
            raise InvalidCredentialsError("current password is incorrect")
        updated = self.storage.update_user(user_id, {"password": request.new_password})
        logger.info("Password changed for {}", user.username)
        return PublicUser.from_user(updated or user)

    @staticmethod
    def can_issue_invoice(user: User | PublicUser) -> bool:
        if user.role == "readonly" or not user.is_active or user.is_blocked:
            return False
        return user.current_month_invoices < user.monthly_invoice_limit
