import pytest
from unittest.mock import AsyncMock, MagicMock

from hcp_sync.services.hcp_client import HousecallProClient
from hcp_sync.sync.guards import ProcessingLocks
from hcp_sync.sync.reconciler import EventReconciler
from hcp_sync.sync.storage import SyncStorageManager
from hcp_sync.utils.rate_limit import RateLimitedCaller


class FakeClock:
    """Monotonic clock that advances only when the caller sleeps"""

    def __init__(self, start: float = 100.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def storage(tmp_path):
    """File-backed storage manager in a temporary directory"""
    return SyncStorageManager(use_redis=False, storage_path=str(tmp_path / "storage"))


@pytest.fixture
def unthrottled_caller(fake_clock):
    """Caller without spacing whose backoff sleeps are recorded, not awaited"""
    return RateLimitedCaller(min_interval_ms=0, max_attempts=3, backoff_base_ms=1000,
                             sleep=fake_clock.sleep, clock=fake_clock)


@pytest.fixture
def hcp_client(storage, unthrottled_caller):
    """HCP client whose raw HTTP send is an AsyncMock"""
    client = HousecallProClient(storage, caller=unthrottled_caller,
                                api_base="https://hcp.example.com", api_key="test-key")
    client.customer_id = ""
    client.customer_name = "Ben King"
    client.assignee_email = ""
    client.timezone = "UTC"
    client._send = AsyncMock()
    return client


@pytest.fixture
def mock_hcp():
    """Stand-in for HousecallProClient used by reconciliation tests"""
    hcp = MagicMock()
    hcp.resolve_customer_id = AsyncMock(return_value="cus_1")
    hcp.resolve_assignee_id = AsyncMock(return_value=None)
    hcp.create_job = AsyncMock(return_value="job_1")
    hcp.update_job = AsyncMock(return_value=None)
    hcp.cancel_job = AsyncMock(return_value=None)
    return hcp


@pytest.fixture
def reconciler(mock_hcp, storage):
    return EventReconciler(mock_hcp, storage, locks=ProcessingLocks(), default_duration_minutes=60)
