"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from devbridge.config import clear_secret_cache, reset_config

pytest_plugins = ("pytest_asyncio",)

_BRIDGE_ENV = (
    "DEVBRIDGE_LOG",
    "DEVBRIDGE_ALLOWED_CHAT_IDS",
    "DEVBRIDGE_AGENT_MODE",
    "DEVBRIDGE_AUTH_SECRET",
)


@pytest.fixture(autouse=True)
def clean_bridge_env(monkeypatch: pytest.MonkeyPatch):
    """Keep the developer's own DEVBRIDGE_* settings out of tests."""
    for name in _BRIDGE_ENV:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    clear_secret_cache()
    yield
    reset_config()
    clear_secret_cache()
