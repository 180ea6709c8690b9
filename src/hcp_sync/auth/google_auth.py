import asyncio
import logging
from typing import Dict, Any, Optional
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build

from hcp_sync.sync.storage import SyncStorageManager
from hcp_sync.utils.config import settings
from hcp_sync.utils.errors import NoCredentialError

# OAuth scope for Google Calendar API
SCOPES = [
    'https://www.googleapis.com/auth/calendar.readonly'
]

TOKEN_URI = "https://oauth2.googleapis.com/token"

logger = logging.getLogger(__name__)

class GoogleCalendarAuth:
    def __init__(self, storage: SyncStorageManager):
        """Initialize Google Calendar authentication"""
        self.storage = storage
        self.client_id = settings.GOOGLE_CLIENT_ID
        self.client_secret = settings.GOOGLE_CLIENT_SECRET
        self.redirect_uri = settings.GOOGLE_REDIRECT_URI

    def _flow(self) -> Flow:
        if not all([self.client_id, self.client_secret]):
            raise ValueError("Google Calendar API credentials not configured")

        flow = Flow.from_client_config(
            {
                "web": {
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                    "token_uri": TOKEN_URI,
                    "redirect_uris": [self.redirect_uri]
                }
            },
            scopes=SCOPES
        )
        flow.redirect_uri = self.redirect_uri
        return flow

    def create_auth_url(self) -> str:
        """
        Create the consent URL for the Google OAuth flow.
        Offline access with forced consent so Google always returns a refresh token.
        """
        auth_url, _ = self._flow().authorization_url(
            access_type='offline',
            prompt='consent'
        )
        return auth_url

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code and store the refresh token it yields"""
        flow = self._flow()
        await asyncio.to_thread(flow.fetch_token, code=code)
        credentials = flow.credentials

        if credentials.refresh_token:
            await self.storage.save_refresh_token(credentials.refresh_token)
            logger.info("Stored Google refresh token")
        else:
            logger.warning("Google did not return a refresh token; keeping the stored one")

        return {
            "token_type": "Bearer",
            "has_refresh_token": bool(credentials.refresh_token),
            "expires_at": credentials.expiry.timestamp() if credentials.expiry else None
        }

    async def reset(self) -> None:
        """Forget the stored credential"""
        await self.storage.clear_refresh_token()
        logger.info("Cleared stored Google refresh token")

    async def get_credentials(self) -> Credentials:
        """Build refreshable credentials from the stored refresh token"""
        refresh_token: Optional[str] = await self.storage.get_refresh_token()
        if not refresh_token:
            raise NoCredentialError()

        return Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=SCOPES
        )

    async def get_calendar_service(self):
        """Get Google Calendar API service using the stored refresh token"""
        credentials = await self.get_credentials()
        return build('calendar', 'v3', credentials=credentials, cache_discovery=False)
