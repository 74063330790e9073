"""
Shared fixtures for arbitrage engine tests.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from arbitrage_engine.clock import MockClock
from arbitrage_engine.config import ExchangeConfig


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def mock_clock():
    return MockClock(datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def no_sleep():
    """Backoff sleep that returns immediately and records delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def credentials(monkeypatch):
    """Build an ExchangeConfig whose credential variables are set."""

    def _make(name: str = "Test", passphrase: bool = False, **overrides) -> ExchangeConfig:
        prefix = f"TEST_{name.upper().replace('.', '')}"
        monkeypatch.setenv(f"{prefix}_API_KEY", "test-api-key")
        monkeypatch.setenv(f"{prefix}_API_SECRET", "test-api-secret")
        passphrase_var = None
        if passphrase:
            passphrase_var = f"{prefix}_PASSPHRASE"
            monkeypatch.setenv(passphrase_var, "test-passphrase")
        return ExchangeConfig(
            name=name,
            api_key_env_var=f"{prefix}_API_KEY",
            api_secret_env_var=f"{prefix}_API_SECRET",
            passphrase_env_var=passphrase_var,
            **overrides,
        )

    return _make


@pytest.fixture
def no_credentials(monkeypatch):
    """ExchangeConfig pointing at unset variables."""
    monkeypatch.delenv("MISSING_API_KEY", raising=False)
    monkeypatch.delenv("MISSING_API_SECRET", raising=False)
    return ExchangeConfig(
        name="Missing",
        api_key_env_var="MISSING_API_KEY",
        api_secret_env_var="MISSING_API_SECRET",
    )
