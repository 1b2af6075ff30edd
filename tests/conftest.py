"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from tabpilot.audit import AuditLog
from tabpilot.config.schema import DialogueConfig
from tabpilot.logging import reset_logging
from tabpilot.session.state_machine import SessionStateMachine
from tabpilot.storage.sessions import InMemorySessionStore

# Configure pytest-asyncio to use auto mode
# This is redundant with pyproject.toml but ensures it's set
pytest_plugins = ("pytest_asyncio",)


@pytest.fixture(scope="session")
def anyio_backend():
    """Set anyio backend to asyncio."""
    return "asyncio"


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment overrides out of the tests."""
    for name in ("TABPILOT_LOG", "TABPILOT_STATE_DIR", "TABPILOT_BACKEND_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def clean_logging():
    """Drop handlers a test (or the CLI under test) installed."""
    yield
    reset_logging()


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def audit() -> AuditLog:
    return AuditLog(capacity=100)


@pytest.fixture
def machine(store: InMemorySessionStore, audit: AuditLog) -> SessionStateMachine:
    return SessionStateMachine(1, store, config=DialogueConfig(), audit=audit)
