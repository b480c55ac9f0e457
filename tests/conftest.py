import pytest

from geotrack.core.config import Settings
from geotrack.schemas.location import LocationSample
from geotrack.services.permissions import PermissionGate, StaticPrompter
from geotrack.services.providers import LocationProvider, Subscription


class FakeProvider(LocationProvider):
    """Provider whose subscriptions never poll; tests push samples with `emit`."""

    name = "fake"

    def __init__(self):
        super().__init__()
        self.subscribe_calls = 0

    def subscribe(self, request, sink):
        self.subscribe_calls += 1
        sub = Subscription(request, sink)
        self.subscriptions.append(sub)
        return sub

    def emit(self, sample):
        for sub in list(self.subscriptions):
            if sub.active:
                sub.sink(sample)

    async def _fix(self, priority):
        return LocationSample(latitude=1.0, longitude=2.0, provider=self.name)


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def granted_gate():
    return PermissionGate(StaticPrompter(True))


@pytest.fixture
def denied_gate():
    return PermissionGate(StaticPrompter(False))


@pytest.fixture
def sf_sample():
    """The sample used in the display test: San Francisco city hall area."""
    return LocationSample(latitude=37.7749, longitude=-122.4194)


@pytest.fixture
def make_settings():
    def _make(**overrides):
        base = {
            "permission_mode": "grant",
            "forward_endpoint": None,
            "update_interval_ms": 10,
            "min_distance_m": 0.0,
        }
        base.update(overrides)
        return Settings(**base)
    return _make
