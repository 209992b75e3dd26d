import pytest

from clinic_notify.config import clear_settings_cache
from notify_factories import FakeSessionFactory, InMemoryLedger


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Each test sees settings read from its own environment."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def ledger():
    return InMemoryLedger()


@pytest.fixture
def session_factory():
    return FakeSessionFactory()
