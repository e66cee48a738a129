"""
Shared pytest fixtures for the CivicLedger test suite.

Provides an in-process httpx AsyncClient against a freshly seeded ledger per
test, a Starlette TestClient for the WebSocket channel, and a bare store.
"""

import sys
from pathlib import Path

import pytest
import pytest_asyncio
import httpx
from fastapi.testclient import TestClient

# Ensure the demo package is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from ledger import app, lifespan, limiter
from importer import import_all
from store import LedgerStore


@pytest.fixture(autouse=True)
def no_rate_limit():
    # Disable rate limiting so the suite is never throttled
    limiter.enabled = False
    yield
    limiter.enabled = True


@pytest_asyncio.fixture
async def client():
    """In-process httpx AsyncClient; each test starts from the seed data."""
    async with lifespan(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
            yield c


@pytest_asyncio.fixture
async def tolerant_client():
    """Like ``client`` but returns the 500 response instead of re-raising."""
    async with lifespan(app):
        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
            yield c


@pytest.fixture
def ws_client():
    """Synchronous TestClient sharing one event loop for REST and WebSocket calls."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def store():
    return LedgerStore()


@pytest.fixture
def seeded_store():
    s = LedgerStore()
    import_all(s)
    return s


@pytest.fixture
def policy_body():
    return {
        "title": "Jal Jeevan Mission Rollout",
        "description": "Household tap connections for rural habitations",
        "category": "Water",
        "fund_allocation": "1000000",
        "district": "Puri",
        "eligibility_criteria": ["Rural household", "No piped water"],
        "execution_conditions": ["Tap connection within 6 months"],
    }
