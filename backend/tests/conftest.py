"""
Pytest configuration and shared fixtures for backend tests.

WHAT: Centralized test configuration with markers and shared fixtures
WHY: Enable test organization, filtering, and isolated stores per test
HOW: Point the app at a throwaway SQLite file before it is imported,
     then provide in-memory and SQL stores, a controllable clock and a
     recording webhook dispatcher
"""

import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="unbound-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TEST_DIR}/unbound-test.db")
os.environ.setdefault("LOG_FILE", f"{_TEST_DIR}/test.log")

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from unbound.core.container import build_services, get_services
from unbound.core.database import drop_db, init_db
from unbound.services.commitment_ledger import CommitmentLedger
from unbound.services.deal_engine import DealEngine
from unbound.services.pricing_oracle import PricingOracle
from unbound.store.memory import MemoryStore


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (isolated component tests)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (multiple components)"
    )
    config.addinivalue_line(
        "markers", "pricing: Pricing oracle tests"
    )
    config.addinivalue_line(
        "markers", "deals: Deal engine tests"
    )
    config.addinivalue_line(
        "markers", "proofs: Commitment ledger tests"
    )
    config.addinivalue_line(
        "markers", "webhooks: Webhook dispatch tests"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take significant time to run"
    )


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingDispatcher:
    """Dispatcher double that records (event, data) instead of POSTing."""

    def __init__(self):
        self.events = []

    def dispatch(self, event, data):
        self.events.append((event, data))

    def names(self):
        return [event for event, _ in self.events]


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 3, 1, 12, 0, 0))


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def oracle(memory_store):
    return PricingOracle(memory_store)


@pytest.fixture
def deal_engine(memory_store, oracle, dispatcher, clock):
    return DealEngine(memory_store, oracle, dispatcher, clock=clock)


@pytest.fixture
def ledger(memory_store, dispatcher, clock):
    return CommitmentLedger(memory_store, dispatcher, clock=clock)


@pytest.fixture
def sql_store():
    """
    SQL store over fresh tables.

    WHAT: Setup and teardown test database
    WHY: Ensure test isolation
    HOW: Create all tables before the test, drop them after
    """
    from unbound.store.sql import SqlStore

    init_db()
    try:
        yield SqlStore()
    finally:
        drop_db()


@pytest.fixture
def services(memory_store, dispatcher):
    return build_services(memory_store, dispatcher=dispatcher)


@pytest.fixture
def client(services):
    """FastAPI test client wired to the in-memory services."""
    from unbound.main import app

    app.dependency_overrides[get_services] = lambda: services
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
