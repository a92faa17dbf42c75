from __future__ import annotations

import pytest

from carwash.core.config import get_settings
from carwash.services.dnit_service import _problem, check_dnit_connection


def test_no_configuration_returns_none(storage):
    assert check_dnit_connection(storage) is None


def test_valid_configuration_records_success(storage):
    storage.create_dnit_config({"endpoint_url": "https://sifen.example.com/ws", "auth_token": "tok-abc"})

    safe = check_dnit_connection(storage)

    assert safe.last_connection_status == "success"
    assert safe.last_connection_error is None
    assert safe.last_connection_test is not None
    assert safe.has_auth_token is True
    assert not hasattr(safe, "auth_token")


def test_unreadable_token_records_error(storage, monkeypatch):
    storage.create_dnit_config({"endpoint_url": "https://sifen.example.com/ws", "auth_token": "tok-abc"})
    monkeypatch.setenv("ENCRYPTION_KEY", "a-rotated-passphrase")
    get_settings.cache_clear()

    safe = check_dnit_connection(storage)

    assert safe.last_connection_status == "error"
    assert safe.last_connection_error == "missing auth token"
    assert safe.has_auth_token is False
    assert storage.get_dnit_config().last_connection_status == "error"


@pytest.mark.parametrize(
    "endpoint_url, auth_token, expected",
    [
        ("sifen.example.com", "tok", "invalid endpoint URL"),
        ("ftp://sifen.example.com", "tok", "invalid endpoint URL"),
        ("https://sifen.example.com", None, "missing auth token"),
        ("https://sifen.example.com", "tok", None),
    ],
)
def test_configuration_problems(endpoint_url, auth_token, expected):
    assert _problem(endpoint_url, auth_token) == expected
