"""Shared fixtures for CLI execution tests."""

from __future__ import annotations

import pytest

STANDINGS_BASE = "https://standings.test/core/2.0.0"


@pytest.fixture()
def cli_env(monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    """Point the standings client at a mockable host with fake credentials."""
    env = {
        "GRIDSCOUT_STANDINGS_URL": STANDINGS_BASE,
        "GRIDSCOUT_STANDINGS_API_KEY": "test-key-123",
        "GRIDSCOUT_SESSION_UUID": "sess-1",
    }
    for key, value in env.items():
        monkeypatch.setenv(key, value)
    return env


@pytest.fixture()
def no_standings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GRIDSCOUT_STANDINGS_API_KEY", raising=False)
    monkeypatch.delenv("GRIDSCOUT_SESSION_UUID", raising=False)
