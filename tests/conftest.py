"""
tests/conftest.py

Pytest configuration and shared fixtures for the fibcalc test suite.

Unit and API tests run against the in-memory stores, so no Redis or
Postgres is needed. Tests marked `integration` talk to real services and
are skipped unless FIBCALC_TEST_REDIS_URL / FIBCALC_TEST_DATABASE_URL
are set.
"""

from __future__ import annotations

import time
from typing import Any, Callable, Generator

import pytest
from fastapi.testclient import TestClient

from fibcalc.core.config import Settings, reset_settings
from fibcalc.main import create_app
from fibcalc.stores import Stores, memory_stores

# =============================================================================
# GLOBAL TEST CONFIGURATION
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "integration: marks tests as requiring external services (Redis, Postgres)",
    )


@pytest.fixture(autouse=True)
def _fresh_settings_cache() -> Generator[None, None, None]:
    """Never let a cached Settings leak between tests."""
    reset_settings()
    yield
    reset_settings()


# =============================================================================
# APP FIXTURES
# =============================================================================


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "ENVIRONMENT": "dev",
        "STORE_BACKEND": "memory",
        "LOG_JSON": False,
        "CORS_ALLOWED_ORIGINS": "http://localhost:3000,http://localhost:3050",
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def stores() -> Stores:
    """Fresh in-memory stores (the channel queue binds to one event loop)."""
    return memory_stores()


@pytest.fixture
def client(settings: Settings, stores: Stores) -> Generator[TestClient, None, None]:
    """Gateway without a compute worker: placeholders stay in place."""
    app = create_app(settings, stores=stores, embedded_worker=False)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def worker_client(settings: Settings, stores: Stores) -> Generator[TestClient, None, None]:
    """Gateway with the compute worker running in-process."""
    app = create_app(settings, stores=stores, embedded_worker=True)
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


def _poll_until(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.02) -> bool:
    """Poll until predicate() is true or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def wait_for() -> Callable[..., bool]:
    return _poll_until
