"""
PM-Fit Backend - Shared Test Fixtures

Provides fake timers, queue factories, mocked HTTP transports and an ASGI
client for deterministic, fast unit tests. No real network calls.
"""

import asyncio
import os
import sys
from unittest.mock import AsyncMock

import httpx
import pytest
from httpx import AsyncClient, ASGITransport

# Ensure pmfit package is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))


# -----------------------------------------------------------------------------
# Environment Setup (before importing app modules)
# -----------------------------------------------------------------------------

os.environ.setdefault("FUNCTIONS_BASE_URL", "https://functions.test/v1")
os.environ.setdefault("FUNCTIONS_API_KEY", "test-functions-key")
os.environ.setdefault("SERPER_API_KEY", "test-serper-key")
os.environ.setdefault("TAVILY_API_KEY", "test-tavily-key")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("CORS_ORIGINS", "http://localhost:5173")


# -----------------------------------------------------------------------------
# Fake Timers
# -----------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep replacement: records requested delays, advances the fake clock, yields once."""

    def __init__(self, clock: FakeClock | None = None):
        self.delays: list[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_sleep(fake_clock) -> RecordingSleep:
    return RecordingSleep(fake_clock)


@pytest.fixture
def make_queue(fake_sleep, fake_clock):
    """
    Factory fixture for a RequestQueue wired to the fake sleep and clock.

    Usage:
        def test_example(make_queue):
            queue = make_queue(max_concurrency=2, max_retries=3)
    """
    from pmfit.models import QueueConfig
    from pmfit.queue import RequestQueue

    def _create(invoker=None, **config):
        config.setdefault("backoff_base_ms", 400)
        return RequestQueue(QueueConfig(**config), invoker=invoker, sleep=fake_sleep, clock=fake_clock)

    return _create


# -----------------------------------------------------------------------------
# HTTP Mocking
# -----------------------------------------------------------------------------


def mock_http_client(handler) -> httpx.AsyncClient:
    """httpx client whose requests are answered by `handler(request) -> httpx.Response`."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def serper_payload() -> dict:
    """Sample Serper organic results."""
    return {
        "organic": [
            {
                "title": "AI meal planning apps compared",
                "link": "https://example.com/meal-planning",
                "snippet": "A comparison of the leading AI meal planners, pricing and retention.",
            },
            {
                "title": "Meal planning market size 2025",
                "link": "https://example.com/market-size",
                "snippet": "The meal planning software market is growing steadily.",
            },
        ]
    }


@pytest.fixture
def mock_invoker():
    """AsyncMock invoker echoing the function name and payload."""
    async def _invoke(name: str, payload: dict):
        return {"function": name, "echo": payload}

    return AsyncMock(side_effect=_invoke)


# -----------------------------------------------------------------------------
# HTTP Client Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def app():
    """Get the FastAPI app instance, with dependency overrides cleared afterwards."""
    from pmfit.main import app

    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
