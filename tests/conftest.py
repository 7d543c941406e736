"""Shared test fixtures."""

import os

# Settings require JWT_SECRET at import time
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production-0123456789")

import pytest
from httpx import ASGITransport, AsyncClient

from config.settings import settings
from src.main import app


@pytest.fixture(autouse=True)
def _no_retry_sleep(monkeypatch: pytest.MonkeyPatch) -> None:
    """Retries back off for 0s in tests."""
    monkeypatch.setattr(settings, "RETRY_BASE_DELAY_SECONDS", 0.0)


@pytest.fixture
async def client() -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
