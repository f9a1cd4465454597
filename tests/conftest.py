"""Shared test fixtures for netpipe.

Provides config isolation, a quiet output manager, a controllable clock
for TTL tests, and helpers for building pipelines on top of
:class:`httpx.MockTransport`. Fixtures are discovered automatically by
pytest.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable

import httpx
import pytest

from netpipe.client.transport import HttpxTransport
from netpipe.output import OutputManager, reset_output, set_output


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _quiet_output_between_tests() -> None:
    """Install a quiet, colourless OutputManager for every test, then reset it."""
    set_output(OutputManager(no_color=True, quiet=True))
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration and cache directories to a temporary directory.

    Forces the XDG code path, points XDG_CONFIG_HOME and XDG_CACHE_HOME at
    subdirectories of tmp_path, and clears all NETPIPE_* variables.

    Returns:
        The tmp_path root directory.
    """
    monkeypatch.setattr("netpipe.config._is_xdg_platform", lambda: True)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    for var in [
        "NETPIPE_TIMEOUT",
        "NETPIPE_MAX_RETRIES",
        "NETPIPE_CACHE_NAME",
        "NETPIPE_VERBOSE",
    ]:
        monkeypatch.delenv(var, raising=False)
    return tmp_path


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced clock returning UNIX-style float seconds."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Transport helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_transport() -> Callable[..., HttpxTransport]:
    """Factory wrapping a request handler in an HttpxTransport.

    Usage::

        transport = mock_transport(lambda request: httpx.Response(200))
    """

    def factory(handler, chunk_size: int = 4) -> HttpxTransport:
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return HttpxTransport(client=client, chunk_size=chunk_size)

    return factory
