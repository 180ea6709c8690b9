import asyncio
import logging
from typing import Dict, Any, Optional
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception
from google.auth.exceptions import RefreshError
from googleapiclient.errors import HttpError

from hcp_sync.auth.google_auth import GoogleCalendarAuth
from hcp_sync.utils.config import settings
from hcp_sync.utils.errors import SyncTokenInvalidError, UnauthorizedError

# Set up logging
logger = logging.getLogger(__name__)

# Page size used to walk past the probe when Google withholds the sync token
SEED_FOLLOWUP_PAGE_SIZE = 2500


def _is_transient_http_error(error: BaseException) -> bool:
    if not isinstance(error, HttpError):
        return False
    return error.resp.status == 429 or error.resp.status >= 500


class GoogleCalendarService:
    def __init__(self, auth: GoogleCalendarAuth, calendar_id: Optional[str] = None):
        """Initialize the Google Calendar service"""
        self.auth = auth
        self.calendar_id = calendar_id or settings.GOOGLE_CALENDAR_ID

    async def _execute(self, request) -> Dict[str, Any]:
        """Run a prepared API request on a worker thread"""
        try:
            return await asyncio.to_thread(request.execute)
        except RefreshError as e:
            raise UnauthorizedError(f"Google rejected the stored credential: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_transient_http_error),
        reraise=True
    )
    async def seed_sync_token(self) -> Optional[str]:
        """
        Obtain a fresh continuation token without delivering any events.

        Probes with a single-result page including deleted events. Google
        only attaches nextSyncToken to the last page, so when the probe is
        not the last page the remaining pages are walked with only the page
        and sync tokens requested.
        """
        service = await self.auth.get_calendar_service()

        result = await self._execute(service.events().list(
            calendarId=self.calendar_id,
            singleEvents=True,
            showDeleted=True,
            maxResults=1
        ))

        while not result.get('nextSyncToken') and result.get('nextPageToken'):
            result = await self._execute(service.events().list(
                calendarId=self.calendar_id,
                singleEvents=True,
                showDeleted=True,
                maxResults=SEED_FOLLOWUP_PAGE_SIZE,
                pageToken=result['nextPageToken'],
                fields='nextPageToken,nextSyncToken'
            ))

        token = result.get('nextSyncToken')
        if not token:
            logger.warning(f"Google returned no sync token for calendar {self.calendar_id}")
        return token

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(_is_transient_http_error),
        reraise=True
    )
    async def list_changes(self, sync_token: str, page_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Fetch one page of the change feed since sync_token.

        Args:
            sync_token: Continuation token from the last drained pull
            page_token: Cursor of the page to fetch within this pull

        Returns:
            Dictionary with items, next_page_token and next_sync_token

        Raises:
            SyncTokenInvalidError: Google answered 410 Gone for the token
        """
        service = await self.auth.get_calendar_service()

        params = {
            'calendarId': self.calendar_id,
            'singleEvents': True,
            'showDeleted': True,
            'syncToken': sync_token
        }
        if page_token:
            params['pageToken'] = page_token

        try:
            result = await self._execute(service.events().list(**params))
        except HttpError as error:
            if error.resp.status == 410:
                raise SyncTokenInvalidError("Google sync token expired or invalid") from error
            logger.error(f"Error listing Google calendar changes: {error}")
            raise

        return {
            'items': result.get('items', []),
            'next_page_token': result.get('nextPageToken'),
            'next_sync_token': result.get('nextSyncToken')
        }

    async def watch(self, channel_id: str, address: str) -> Dict[str, Any]:
        """Register a web_hook push channel for the calendar's events"""
        service = await self.auth.get_calendar_service()
        return await self._execute(service.events().watch(
            calendarId=self.calendar_id,
            body={
                'id': channel_id,
                'type': 'web_hook',
                'address': address
            }
        ))

    async def stop_channel(self, channel_id: str, resource_id: str) -> None:
        """Stop a push channel"""
        service = await self.auth.get_calendar_service()
        await self._execute(service.channels().stop(
            body={'id': channel_id, 'resourceId': resource_id}
        ))
