"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient

# Set test environment BEFORE importing app modules
os.environ["STORE_BACKEND"] = "memory"
os.environ["TRACKER_API_KEY"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

from app.config import Settings  # noqa: E402
from app.core.crypto import KeyPair, generate_key_pair  # noqa: E402
from app.main import create_app  # noqa: E402
from app.services.store import InMemoryLocationStore  # noqa: E402
from app.services.tracker_client import TrackerClient  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
    """Agents and services are built on asyncio tasks."""
    return "asyncio"


@pytest.fixture
def test_settings() -> Settings:
    """Settings with fast timers and no rate limiting pressure."""
    return Settings(
        store_backend="memory",
        tracker_api_key="",
        rate_limit_requests_per_minute=100_000,
        submit_interval_seconds=0.05,
        poll_interval_seconds=0.05,
        geolocation_timeout_seconds=0.5,
    )


@pytest.fixture
def store() -> InMemoryLocationStore:
    """Isolated in-memory store per test."""
    return InMemoryLocationStore()


@pytest.fixture
def api(store, test_settings):
    """Application wired to the per-test store."""
    return create_app(store=store, app_settings=test_settings)


@pytest.fixture
async def client(api) -> AsyncGenerator[AsyncClient, None]:
    """Raw HTTP client for endpoint tests."""
    async with AsyncClient(
        transport=ASGITransport(app=api),
        base_url="http://test"
    ) as test_client:
        yield test_client


@pytest.fixture
async def tracker_client(api) -> AsyncGenerator[TrackerClient, None]:
    """Typed API client as used by the agents."""
    async with TrackerClient(
        base_url="http://test",
        api_key="",
        transport=ASGITransport(app=api),
    ) as tracker:
        yield tracker


@pytest.fixture(scope="session")
def key_pair() -> KeyPair:
    """RSA-2048 key pair shared by the session (generation is slow)."""
    return generate_key_pair()


@pytest.fixture(scope="session")
def other_key_pair() -> KeyPair:
    """A second, unrelated key pair."""
    return generate_key_pair()
