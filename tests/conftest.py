import pytest

from postguard.config import Settings
from postguard.core.clock import ManualClock
from postguard.security.engine import ProtectionEngine
from postguard.services.event_logger import EventLog
from postguard.storage.base import StoreError
from postguard.storage.memory import MemoryRecordStore


class FailingStore(MemoryRecordStore):
    """Memory store whose reads fail, as an unreachable backend would."""

    def get(self, key):
        raise StoreError("store offline")


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def test_settings():
    return Settings(
        event_log_capacity=50,
        alert_capacity=10,
        integrity_interval_seconds=0.05,
        store_backend="memory",
    )


@pytest.fixture
def store():
    return MemoryRecordStore()


@pytest.fixture
def event_log(test_settings, clock):
    return EventLog(test_settings, clock)


@pytest.fixture
def engine(test_settings, store, clock):
    engine = ProtectionEngine(test_settings, store=store, clock=clock).init()
    yield engine
    engine.shutdown()


@pytest.fixture
def failing_store():
    return FailingStore()
