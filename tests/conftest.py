"""
Pytest configuration for SubZero tests

Provides a throwaway SQLite database per test, an encryption key, OAuth
client settings, and clean telemetry state.
"""

from __future__ import annotations

from datetime import date

import pytest

from subzero.infrastructure import database
from subzero.observability import telemetry
from subzero.security.token_vault import ENCRYPTION_KEY_ENV, generate_key


@pytest.fixture(autouse=True)
def clean_telemetry():
    telemetry.reset()
    yield
    telemetry.reset()


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the pool at a fresh database file with the full schema."""
    db_path = tmp_path / "subzero.db"
    monkeypatch.setenv("SUBZERO_DB_PATH", str(db_path))
    database.reset_pool()
    database.init_database()
    yield db_path
    database.reset_pool()


@pytest.fixture
def encryption_key(monkeypatch):
    """Generate test encryption key"""
    key = generate_key()
    monkeypatch.setenv(ENCRYPTION_KEY_ENV, key)
    return key


@pytest.fixture
def oauth_env(monkeypatch):
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "test-client-secret")
    monkeypatch.setenv("GOOGLE_REDIRECT_URI", "http://localhost:8000/api/gmail/callback")


@pytest.fixture
def today():
    return date(2026, 10, 18)
