from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from carwash.core.config import get_settings
from carwash.core.utils import utcnow
from carwash.services.auth_service import (
    AccountBlockedError,
    AccountExpiredError,
    AccountInactiveError,
    AuthService,
    InvalidCredentialsError,
    UserNotFoundError,
)


@pytest.fixture()
def user(storage):
    return storage.create_user({"username": "cajero", "password": "secret123", "full_name": "Caja 1"})


@pytest.fixture()
def auth(storage):
    return AuthService(storage, replace(get_settings(), max_failed_logins=3))


def test_login_succeeds_and_resets_failures(auth, storage, user):
    storage.update_user(user.id, {"failed_login_attempts": 2, "last_failed_login": utcnow()})

    public = auth.authenticate("CAJERO", "secret123")

    assert public.id == user.id
    assert not hasattr(public, "password")
    stored = storage.get_user(user.id)
    assert stored.failed_login_attempts == 0
    assert stored.last_failed_login is None
    assert stored.last_login is not None


def test_wrong_password_counts_and_blocks_at_limit(auth, storage, user):
    for attempt in (1, 2):
        with pytest.raises(InvalidCredentialsError):
            auth.authenticate("cajero", "wrong-pass")
        assert storage.get_user(user.id).failed_login_attempts == attempt
        assert storage.get_user(user.id).is_blocked is False

    with pytest.raises(InvalidCredentialsError):
        auth.authenticate("cajero", "wrong-pass")
    assert storage.get_user(user.id).is_blocked is True

    # the right password no longer helps
    with pytest.raises(AccountBlockedError):
        auth.authenticate("cajero", "secret123")


def test_unknown_user_is_invalid_credentials(auth):
    with pytest.raises(InvalidCredentialsError):
        auth.authenticate("nadie", "secret123")


def test_inactive_account_is_rejected(auth, storage, user):
    storage.update_user(user.id, {"is_active": False})
    with pytest.raises(AccountInactiveError):
        auth.authenticate("cajero", "secret123")


def test_expired_account_is_rejected(auth, storage, user):
    storage.update_user(user.id, {"expiration_date": utcnow() - timedelta(days=1)})
    with pytest.raises(AccountExpiredError):
        auth.authenticate("cajero", "secret123")

    storage.update_user(user.id, {"expiration_date": utcnow() + timedelta(days=30)})
    assert auth.authenticate("cajero", "secret123").id == user.id


def test_change_password(auth, storage, user):
    with pytest.raises(InvalidCredentialsError):
        auth.change_password(user.id, {"current_password": "wrong-pass", "new_password": "nueva123"})

    auth.change_password(user.id, {"currentPassword": "secret123", "newPassword": "nueva123"})

    assert auth.authenticate("cajero", "nueva123").id == user.id
    with pytest.raises(InvalidCredentialsError):
        auth.authenticate("cajero", "secret123")


def test_change_password_unknown_user(auth):
    with pytest.raises(UserNotFoundError):
        auth.change_password("missing", {"current_password": "secret123", "new_password": "nueva123"})


def test_can_issue_invoice(storage, user):
    assert AuthService.can_issue_invoice(user) is True

    limited = storage.update_user(user.id, {"monthly_invoice_limit": 1})
    assert AuthService.can_issue_invoice(limited) is True
    assert AuthService.can_issue_invoice(storage.increment_user_invoice_count(user.id)) is False

    readonly = storage.create_user({"username": "auditor", "password": "secret123", "role": "readonly"})
    assert AuthService.can_issue_invoice(readonly) is False
    blocked = storage.update_user(user.id, {"is_blocked": True, "monthly_invoice_limit": 50})
    assert AuthService.can_issue_invoice(blocked) is False
