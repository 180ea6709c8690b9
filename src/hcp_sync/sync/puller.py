"""
Change-Pull Loop

Fetches the Google change feed since the stored continuation token and feeds
each changed event to a handler.
"""

import logging
from collections import Counter
from typing import Any, Awaitable, Callable, Dict

from hcp_sync.services.calendar_event import RemoteEvent
from hcp_sync.services.google_calendar import GoogleCalendarService
from hcp_sync.sync.architecture import PullStatus
from hcp_sync.sync.storage import SyncStorageManager
from hcp_sync.utils.errors import SyncTokenInvalidError

# Set up logging
logger = logging.getLogger(__name__)

EventHandler = Callable[[RemoteEvent], Awaitable[Any]]


class ChangePuller:
    """
    Drains the change feed from the stored continuation token.

    The token is replaced only once every page has been consumed; a crash
    mid-pull means the same delta is delivered again, which reconciliation
    tolerates. A failing handler is logged and the loop moves on, so one bad
    event never holds the cursor back.
    """

    def __init__(self, google_service: GoogleCalendarService, storage: SyncStorageManager):
        self.google = google_service
        self.storage = storage

    async def seed(self) -> bool:
        """Store a fresh continuation token; True when Google supplied one"""
        token = await self.google.seed_sync_token()
        if not token:
            return False
        await self.storage.save_next_sync_token(token)
        logger.info("Seeded Google continuation token")
        return True

    async def pull(self, handler: EventHandler) -> Dict[str, Any]:
        """
        Deliver every event changed since the stored token to handler.

        Returns:
            Summary with status, pages, events_processed, events_failed,
            per-outcome counts and whether the token advanced
        """
        results: Dict[str, Any] = {
            "status": PullStatus.COMPLETED.value,
            "pages": 0,
            "events_processed": 0,
            "events_failed": 0,
            "outcomes": {},
            "token_advanced": False
        }

        sync_token = await self.storage.get_next_sync_token()
        if not sync_token:
            await self.seed()
            results["status"] = PullStatus.SEEDED.value
            return results

        outcomes: Counter = Counter()
        page_token = None
        new_sync_token = None

        try:
            while True:
                page = await self.google.list_changes(sync_token, page_token)
                results["pages"] += 1

                for item in page["items"]:
                    event_id = item.get("id")
                    try:
                        outcome = await handler(RemoteEvent.from_google(item))
                        results["events_processed"] += 1
                        if outcome is not None:
                            outcomes[getattr(outcome, "value", str(outcome))] += 1
                    except Exception:
                        results["events_failed"] += 1
                        logger.exception(f"Handling event {event_id} failed")

                new_sync_token = page.get("next_sync_token") or new_sync_token
                page_token = page.get("next_page_token")
                if not page_token:
                    break
        except SyncTokenInvalidError:
            logger.warning("Stored sync token rejected by Google, re-seeding")
            await self.seed()
            results["status"] = PullStatus.RESEEDED.value
            results["outcomes"] = dict(outcomes)
            return results

        if new_sync_token:
            await self.storage.save_next_sync_token(new_sync_token)
            results["token_advanced"] = True
        else:
            logger.warning("Change feed drained without a new sync token; keeping the stored one")

        results["outcomes"] = dict(outcomes)
        logger.info(
            f"Pull completed: {results['pages']} page(s), "
            f"{results['events_processed']} event(s), {results['events_failed']} failure(s)"
        )
        return results
