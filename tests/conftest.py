"""Shared fixtures: isolated users file, frozen clock, fast bcrypt."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from src.auth.session_issuer import SessionIssuer
from src.models.account import RegistrationInput
from src.services.account_service import AccountService
from src.services.credential_store import CredentialStore
from src.utils.config import (
    ENV_OVERRIDES,
    AuthSettings,
    LoggingSettings,
    Settings,
    StorageSettings,
)

SECRET = "test-signing-secret-0123456789-abcdefghij"


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of config-driven tests"""
    for var_name in ENV_OVERRIDES:
        monkeypatch.delenv(var_name, raising=False)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2025, 12, 11, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def users_file(tmp_path):
    return tmp_path / "users.json"


@pytest.fixture
def store(users_file):
    return CredentialStore(users_file, bcrypt_rounds=4, lock_timeout_seconds=5)


@pytest.fixture
def issuer(clock):
    return SessionIssuer(SECRET, clock=clock)


@pytest.fixture
def service(store, issuer, clock):
    return AccountService(store, issuer, clock=clock)


@pytest.fixture
def register(service):
    """register(full_name, email, password="password123", **extra) -> AuthResult"""
    def _register(full_name, email, password="password123", **extra):
        return service.register(
            RegistrationInput(full_name=full_name, email=email, password=password, **extra)
        )
    return _register


@pytest.fixture
def settings(users_file):
    return Settings(
        auth=AuthSettings(session_secret=SECRET, bcrypt_rounds=4),
        storage=StorageSettings(users_file=str(users_file)),
        logging=LoggingSettings(file_path=None, format="console"),
    )


@pytest.fixture
def client(settings):
    from web.main import create_app
    return TestClient(create_app(settings))
