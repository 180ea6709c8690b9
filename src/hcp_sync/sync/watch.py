"""
Watch Channel Manager

Registers and renews the Google push channel. The channel has its own
lifecycle: renewing it never resets the continuation token.
"""

import logging
import time
import uuid
from typing import Any, Dict, Optional

from hcp_sync.services.google_calendar import GoogleCalendarService
from hcp_sync.sync.puller import ChangePuller
from hcp_sync.sync.storage import SyncStorageManager
from hcp_sync.utils.config import settings

# Set up logging
logger = logging.getLogger(__name__)

WEBHOOK_PATH = "/webhook/google"


class WatchChannelManager:
    def __init__(
        self,
        google_service: GoogleCalendarService,
        storage: SyncStorageManager,
        puller: ChangePuller,
        public_base_url: Optional[str] = None,
        renewal_threshold_hours: Optional[int] = None,
    ):
        self.google = google_service
        self.storage = storage
        self.puller = puller
        self.public_base_url = (public_base_url or settings.PUBLIC_BASE_URL).rstrip("/")
        if renewal_threshold_hours is None:
            renewal_threshold_hours = settings.WATCH_RENEWAL_THRESHOLD_HOURS
        self.renewal_threshold_ms = renewal_threshold_hours * 3600 * 1000

    @property
    def webhook_address(self) -> str:
        return f"{self.public_base_url}{WEBHOOK_PATH}"

    async def ensure_watch_channel(self) -> Dict[str, Any]:
        """
        Register a fresh push channel and record it.

        Seeds the continuation token first when none is stored. The previous
        channel is stopped after the new one is in place; failing to stop it
        only means a few redundant notifications until it expires.
        """
        if not await self.storage.get_next_sync_token():
            await self.puller.seed()

        previous = await self.storage.get_watch_state()

        channel_id = str(uuid.uuid4())
        watch = await self.google.watch(channel_id, self.webhook_address)
        resource_id = watch.get("resourceId") or ""
        expiration = str(watch.get("expiration") or "")

        await self.storage.save_watch_state({
            "channel_id": channel_id,
            "resource_id": resource_id,
            "expiration": expiration
        })
        logger.info(f"Registered Google watch channel {channel_id} (expires {expiration or 'unknown'})")

        if previous.get("channel_id") and previous.get("resource_id"):
            try:
                await self.google.stop_channel(previous["channel_id"], previous["resource_id"])
                logger.info(f"Stopped previous watch channel {previous['channel_id']}")
            except Exception as e:
                logger.warning(f"Could not stop previous watch channel {previous['channel_id']}: {e}")

        return {"channel_id": channel_id, "resource_id": resource_id, "expiration": expiration}

    def needs_renewal(self, state: Dict[str, str], now_ms: Optional[int] = None) -> bool:
        """True when no channel is recorded or it expires within the threshold"""
        if not state.get("channel_id") or not state.get("expiration"):
            return True
        try:
            expiration = int(state["expiration"])
        except ValueError:
            return True
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        return expiration - now_ms < self.renewal_threshold_ms

    async def renew_if_needed(self) -> bool:
        """Re-register the channel when it is missing or about to expire"""
        state = await self.storage.get_watch_state()
        if not self.needs_renewal(state):
            return False
        await self.ensure_watch_channel()
        return True
