"""
Shared fixtures and helpers for the mirrortube test suite.

Every test runs offline: outbound HTTP goes through httpx.MockTransport
handlers, and time-dependent components get a FakeClock.
"""

import pathlib
import sys
from typing import Any, Callable

import httpx
import pytest

# ─── Path setup (must happen before any package import) ──────────────────────

_ROOT = pathlib.Path(__file__).parent.parent
sys.path.insert(0, str(_ROOT))

from mirrortube.storage import StateStore  # noqa: E402

# ─── Constants ───────────────────────────────────────────────────────────────

TEST_VIDEO_ID = "dQw4w9WgXcQ"


# ─── Helpers ─────────────────────────────────────────────────────────────────

class FakeClock:
    """Manually advanced replacement for time.time"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def mock_client(handler: Callable[[httpx.Request], Any]) -> httpx.AsyncClient:
    """AsyncClient whose every request is answered by `handler`."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def unavailable(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, text="Service Unavailable")


# ─── Fixtures ────────────────────────────────────────────────────────────────

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    """In-memory state store."""
    return StateStore()


@pytest.fixture
def disk_store(tmp_path):
    """State store persisted under a temporary data directory."""
    return StateStore(tmp_path / "state")
