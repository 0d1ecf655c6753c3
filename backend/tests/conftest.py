import pytest

from apps.connections import services as connection_services
from apps.crawler.config import Pacing
from apps.crawler.rate_limit import Pacer

from factories import FakePlatformClient


@pytest.fixture
def fake_client():
    return FakePlatformClient()


@pytest.fixture
def pacer():
    """Pacer that never blocks."""
    return Pacer(sleep=lambda seconds: None)


@pytest.fixture
def no_pacing():
    return Pacing.none()


@pytest.fixture(autouse=True)
def fresh_connection_pool(monkeypatch):
    """Each test builds its own process-level pool."""
    monkeypatch.setattr(connection_services, "_process_pool", None)
