"""
Pytest configuration and fixtures for hub tests.

The hub runs on MemoryHubStore unless a test asks for Postgres; those tests
skip themselves when DATABASE_URL is not set.
"""

from __future__ import annotations

import os

# Set test environment variables before importing config
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only")

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from backend.auth import create_jwt  # noqa: E402
from backend.main import create_app  # noqa: E402
from backend.repos.hub_store import MemoryHubStore  # noqa: E402
from backend.services.shared_state_hub import SharedStateHub  # noqa: E402

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


@pytest.fixture
def hub_store():
    return MemoryHubStore()


@pytest.fixture
def hub(hub_store):
    return SharedStateHub(hub_store)


@pytest.fixture
def app(hub):
    return create_app(hub=hub)


@pytest.fixture
def token():
    return create_jwt(USER_ID)


@pytest.fixture
def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def other_auth_headers():
    return {"Authorization": f"Bearer {create_jwt(OTHER_USER_ID)}"}


@pytest_asyncio.fixture
async def http(app):
    """Async HTTP client bound to the app in-process."""
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://hub") as client:
        yield client
