"""
Shared fixtures: every test runs against temporary paths with fresh caches.
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Make the carwash package importable when running the tests from a checkout
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from carwash.core import config as core_config
from carwash.core import security
from carwash.db import session as db_session
from carwash.repositories import JsonFileStorage, SQLStorage


def _clear_caches() -> None:
    core_config.get_settings.cache_clear()
    db_session.get_engine.cache_clear()
    db_session._get_sessionmaker.cache_clear()  # type: ignore[attr-defined]
    security._fernet.cache_clear()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point settings at tmp_path and drop anything cached from earlier tests."""
    for name in (
        "APP_ENV",
        "STORAGE_BACKEND",
        "DATABASE_PATH",
        "ADMIN_PASSWORD",
        "ADMIN_PASSWORD_RECONCILE",
        "MAX_FAILED_LOGINS",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    monkeypatch.setenv("ENCRYPTION_KEY", "test-encryption-passphrase")
    _clear_caches()
    yield tmp_path
    _clear_caches()


@pytest.fixture()
def json_storage(tmp_path):
    storage = JsonFileStorage(tmp_path / "data")
    storage.initialize()
    yield storage
    storage.close()


@pytest.fixture()
def sql_storage(tmp_path):
    storage = SQLStorage(f"sqlite:///{tmp_path / 'test.db'}")
    storage.initialize()
    yield storage
    storage.close()


@pytest.fixture(params=["json", "sql"])
def storage(request):
    """The same contract tests run against both back ends."""
    return request.getfixturevalue(f"{request.param}_storage")


@pytest.fixture()
def customer(storage):
    return storage.create_customer({"nombre": "Juan Pérez", "doc_tipo": "CI", "doc_numero": "1234567"})


@pytest.fixture()
def vehicle(storage, customer):
    return storage.create_vehicle(
        {"customer_id": customer.id, "placa": "ABC123", "marca": "Toyota", "modelo": "Corolla", "color": "Gris"}
    )


@pytest.fixture()
def work_order(storage, customer, vehicle):
    return storage.create_work_order({"customer_id": customer.id, "vehicle_id": vehicle.id})
