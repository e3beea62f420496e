"""
Shared pytest fixtures for clockspine tests.

This module provides:
- A fresh default manager per test (clock files register into it)
- structlog reset so one test's ``configure_logging`` does not leak
- A virtual clock and a manager bound to it

Usage:
    def test_heartbeat(manager, clock):
        manager.every(60, "heartbeat", job=calls.append)
        clock.attach(manager).advance(185)
"""

from collections.abc import Generator
from datetime import datetime
from pathlib import Path

import pytest
import structlog

from clockspine import default
from clockspine.clock import VirtualClock
from clockspine.manager import Manager

T0: datetime = VirtualClock.DEFAULT_START


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without explicit markers as unit tests."""
    for item in items:
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def fresh_default_manager(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Give every test its own process-wide default manager."""
    monkeypatch.setattr(default, "_manager", None)
    yield


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


# =============================================================================
# Clock Fixtures
# =============================================================================


@pytest.fixture
def clock() -> VirtualClock:
    """Virtual clock starting at 2024-01-01T00:00:00Z (a Monday)."""
    return VirtualClock(T0)


@pytest.fixture
def manager(clock: VirtualClock) -> Manager:
    """Manager on the virtual clock with the default 1s tick."""
    return Manager(clock=clock)


@pytest.fixture
def clock_file(tmp_path: Path):
    """Write a clock file and return its path."""

    def _write(body: str, name: str = "clock.py") -> Path:
        path = tmp_path / name
        path.write_text(body)
        return path

    return _write
