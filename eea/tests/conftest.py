# eea/tests/conftest.py
import pytest
from fastapi.testclient import TestClient

from eea.config import Settings
from eea.service_http import create_app
from eea.storage import InMemoryKeyValueStore

SECRET = "test-signing-secret"

# 2024-12-27T10:30:10Z, ten seconds into a rate-limit window
T0 = 1_735_295_410.0


class FakeClock:
    def __init__(self, now: float = T0):
        self.now = float(now)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def sample_event(**overrides):
    event = {
        "event_type": "payment",
        "occurred_at": "2024-12-27T10:30:00Z",
        "amount": "150.00",
        "currency": "GBP",
        "source_system": "stripe",
        "references": {"order_id": "ORD-001"},
    }
    event.update(overrides)
    return event


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(signing_key=SECRET)


@pytest.fixture
def kv(clock):
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def app(settings, kv, clock):
    return create_app(settings, kv=kv, clock=clock)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def api_key(app):
    raw, _, _ = app.state.attestor.registry.create("tenant-a", "standard")
    return raw


@pytest.fixture
def make_event():
    return sample_event
