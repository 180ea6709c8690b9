"""
Calendar Synchronization Controller

This module defines the notification receiver that ties Google push
notifications to the change-pull loop and the reconciliation handler.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Set

from hcp_sync.sync.architecture import Notification, ResourceState, WatchState
from hcp_sync.sync.guards import DedupWindow, ProcessingLocks
from hcp_sync.sync.puller import ChangePuller
from hcp_sync.sync.reconciler import EventReconciler
from hcp_sync.sync.storage import SyncStorageManager
from hcp_sync.utils.config import settings
from hcp_sync.utils.errors import NoCredentialError

# Set up logging
logger = logging.getLogger(__name__)

class CalendarSyncController:
    """
    Receives push notifications and runs pulls in the background.

    Owns the dedup window of seen message numbers and shares its processing
    locks with the reconciler. Both live for the life of the process only.
    """

    def __init__(
        self,
        storage: SyncStorageManager,
        puller: ChangePuller,
        reconciler: EventReconciler,
        dedup_window_size: Optional[int] = None,
    ):
        """Initialize the calendar sync controller"""
        self.storage = storage
        self.puller = puller
        self.reconciler = reconciler
        self.dedup = DedupWindow(dedup_window_size or settings.DEDUP_WINDOW_SIZE)
        self.locks: ProcessingLocks = reconciler.locks
        self.pending_pulls: Set[asyncio.Task] = set()  # Track background pulls
        self._pull_task: Optional[asyncio.Task] = None
        self._rerun_requested = False

    async def handle_notification(self, notification: Notification) -> bool:
        """
        Accept one push notification.

        Redelivered message numbers are dropped. The channel handshake
        carries no changes and starts no pull. Anything else requests a pull
        without waiting for it: at most one background pull runs, and
        notifications arriving meanwhile queue a single rerun.

        Returns:
            True when a pull was started or queued
        """
        if notification.message_number is not None:
            key = (notification.channel_id, notification.message_number)
            if not self.dedup.add(key):
                logger.debug(f"Duplicate notification {notification.message_number} on channel {notification.channel_id}")
                return False

        if notification.resource_state == ResourceState.SYNC.value:
            logger.info(f"Watch channel {notification.channel_id} handshake received")
            return False

        self._request_pull()
        return True

    def _request_pull(self) -> None:
        if self._pull_task and not self._pull_task.done():
            self._rerun_requested = True
            return

        task = asyncio.create_task(self._drain_pull_requests())
        self._pull_task = task
        self.pending_pulls.add(task)
        task.add_done_callback(self.pending_pulls.discard)

    async def _drain_pull_requests(self) -> None:
        while True:
            # Requests made before this pull starts are covered by it
            self._rerun_requested = False
            await self.run_pull()
            if not self._rerun_requested:
                return

    async def run_pull(self) -> Optional[Dict[str, Any]]:
        """Pull for a notification; errors are logged, never raised"""
        try:
            return await self.pull_now()
        except NoCredentialError:
            # Not authorized yet; nothing to pull
            return None
        except Exception:
            logger.exception("Pulling Google changes failed")
            return None

    async def pull_now(self) -> Dict[str, Any]:
        """Pull and reconcile immediately, raising any failure"""
        return await self.puller.pull(self.reconciler.handle)

    async def wait_for_pending(self) -> None:
        """Wait for background pulls started so far"""
        if self.pending_pulls:
            await asyncio.gather(*list(self.pending_pulls), return_exceptions=True)

    async def get_status(self) -> Dict[str, Any]:
        """Watch registration and engine state, never exposing token values"""
        state = await self.storage.get_watch_state()
        watch = WatchState(
            channel_id=state.get("channel_id"),
            resource_id=state.get("resource_id"),
            expiration=state.get("expiration"),
            has_sync_token=bool(state.get("next_sync_token"))
        )
        return {
            "authorized": bool(await self.storage.get_refresh_token()),
            "watch": watch.model_dump(),
            "mappings": await self.storage.count_mappings(),
            "dedup_window": len(self.dedup),
            "events_in_flight": len(self.locks),
            "pulls_in_flight": len(self.pending_pulls),
            "pull_rerun_queued": self._rerun_requested
        }
