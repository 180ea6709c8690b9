import asyncio
import pytest
from unittest.mock import AsyncMock, MagicMock

from hcp_sync.sync.architecture import Notification
from hcp_sync.sync.controller import CalendarSyncController
from hcp_sync.sync.guards import DedupWindow, ProcessingLocks
from hcp_sync.utils.errors import NoCredentialError


@pytest.fixture
def puller():
    mock_puller = MagicMock()
    mock_puller.pull = AsyncMock(return_value={"status": "completed"})
    return mock_puller


@pytest.fixture
def controller(storage, puller, reconciler):
    return CalendarSyncController(storage, puller, reconciler, dedup_window_size=3)


def notification(number, state="exists", channel="ch1"):
    return Notification(channel_id=channel, resource_id="res1", resource_state=state, message_number=number)


def test_dedup_window_evicts_oldest():
    window = DedupWindow(max_size=2)

    assert window.add(1)
    assert window.add(2)
    assert not window.add(2)
    assert window.add(3)

    assert 1 not in window
    assert len(window) == 2
    assert window.add(1)


def test_dedup_window_rejects_zero_size():
    with pytest.raises(ValueError):
        DedupWindow(max_size=0)


def test_processing_locks_skip_when_held():
    locks = ProcessingLocks()

    assert locks.try_acquire("evt1")
    assert not locks.try_acquire("evt1")
    assert "evt1" in locks

    locks.release("evt1")
    locks.release("evt1")
    assert locks.try_acquire("evt1")


@pytest.mark.asyncio
async def test_notification_starts_background_pull(controller, puller, reconciler):
    started = await controller.handle_notification(notification(1))
    await controller.wait_for_pending()

    assert started is True
    puller.pull.assert_awaited_once_with(reconciler.handle)


@pytest.mark.asyncio
async def test_redelivered_message_is_dropped(controller, puller):
    assert await controller.handle_notification(notification(7))
    assert not await controller.handle_notification(notification(7))
    await controller.wait_for_pending()

    assert puller.pull.await_count == 1


@pytest.mark.asyncio
async def test_same_message_number_on_another_channel_is_new(controller, puller):
    assert await controller.handle_notification(notification(7, channel="ch1"))
    await controller.wait_for_pending()
    assert await controller.handle_notification(notification(7, channel="ch2"))
    await controller.wait_for_pending()

    assert puller.pull.await_count == 2


@pytest.mark.asyncio
async def test_evicted_message_number_is_processed_again(controller, puller):
    for number in (1, 2, 3, 4):
        await controller.handle_notification(notification(number))
        await controller.wait_for_pending()

    assert await controller.handle_notification(notification(1))
    await controller.wait_for_pending()

    assert puller.pull.await_count == 5


@pytest.mark.asyncio
async def test_sync_handshake_does_not_pull(controller, puller):
    started = await controller.handle_notification(notification(1, state="sync"))
    await controller.wait_for_pending()

    assert started is False
    puller.pull.assert_not_awaited()


@pytest.mark.asyncio
async def test_notification_is_acknowledged_before_pull_finishes(controller, puller):
    release = asyncio.Event()

    async def slow_pull(handler):
        await release.wait()
        return {"status": "completed"}

    puller.pull.side_effect = slow_pull

    assert await controller.handle_notification(notification(1))
    assert len(controller.pending_pulls) == 1

    release.set()
    await controller.wait_for_pending()
    assert len(controller.pending_pulls) == 0


@pytest.mark.asyncio
async def test_background_pull_swallows_missing_credentials(controller, puller):
    puller.pull.side_effect = NoCredentialError()

    assert await controller.run_pull() is None


@pytest.mark.asyncio
async def test_background_pull_logs_failures(controller, puller, caplog):
    puller.pull.side_effect = RuntimeError("google down")

    assert await controller.run_pull() is None
    assert "Pulling Google changes failed" in caplog.text


@pytest.mark.asyncio
async def test_pull_now_raises(controller, puller):
    puller.pull.side_effect = NoCredentialError()

    with pytest.raises(NoCredentialError):
        await controller.pull_now()


@pytest.mark.asyncio
async def test_status_hides_token_values(controller, storage):
    await storage.save_refresh_token("secret-refresh")
    await storage.save_next_sync_token("secret-sync")
    await storage.save_watch_state({"channel_id": "ch1", "resource_id": "res1", "expiration": "123"})
    await storage.put_mapping("evt1", "job_1")
    await controller.handle_notification(notification(1, state="sync"))

    status = await controller.get_status()

    assert status["authorized"] is True
    assert status["watch"] == {
        "channel_id": "ch1",
        "resource_id": "res1",
        "expiration": "123",
        "has_sync_token": True
    }
    assert status["mappings"] == 1
    assert status["dedup_window"] == 1
    assert status["events_in_flight"] == 0
    assert "secret" not in repr(status)


@pytest.mark.asyncio
async def test_burst_during_pull_queues_a_single_rerun(controller, puller):
    release = asyncio.Event()
    started = asyncio.Event()

    async def slow_pull(handler):
        started.set()
        await release.wait()
        return {"status": "completed"}

    puller.pull.side_effect = slow_pull

    await controller.handle_notification(notification(1))
    await started.wait()
    for number in range(2, 12):
        assert await controller.handle_notification(notification(number))

    assert len(controller.pending_pulls) == 1
    assert (await controller.get_status())["pull_rerun_queued"] is True

    release.set()
    await controller.wait_for_pending()

    assert puller.pull.await_count == 2
    assert len(controller.pending_pulls) == 0


@pytest.mark.asyncio
async def test_notifications_before_pull_starts_share_it(controller, puller):
    await controller.handle_notification(notification(1))
    await controller.handle_notification(notification(2))
    await controller.wait_for_pending()

    assert puller.pull.await_count == 1
