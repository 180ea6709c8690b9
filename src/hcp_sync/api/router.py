import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import PlainTextResponse, RedirectResponse, Response

from hcp_sync.auth.google_auth import GoogleCalendarAuth
from hcp_sync.sync.architecture import Notification
from hcp_sync.sync.controller import CalendarSyncController
from hcp_sync.sync.watch import WatchChannelManager

logger = logging.getLogger(__name__)

# Initialize API router
router = APIRouter()

# Dependencies resolved from the services built at startup
def get_sync_controller(request: Request) -> CalendarSyncController:
    return request.app.state.sync_controller

def get_google_auth(request: Request) -> GoogleCalendarAuth:
    return request.app.state.google_auth

def get_watch_manager(request: Request) -> WatchChannelManager:
    return request.app.state.watch_manager

def _parse_message_number(value: Optional[str]) -> Optional[int]:
    try:
        return int(value) if value else None
    except ValueError:
        return None

@router.get("/", response_class=PlainTextResponse)
async def root():
    """Liveness check"""
    return "HCP Calendar Sync is running"

# Authentication routes
@router.get("/auth/google")
async def google_auth_redirect(auth: GoogleCalendarAuth = Depends(get_google_auth)):
    """Redirect to Google consent"""
    try:
        return RedirectResponse(auth.create_auth_url())
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )

@router.get("/oauth2/callback", response_class=PlainTextResponse)
async def google_auth_callback(
    code: Optional[str] = None,
    auth: GoogleCalendarAuth = Depends(get_google_auth),
    watch_manager: WatchChannelManager = Depends(get_watch_manager)
):
    """Exchange the authorization code, then (re)register the watch channel"""
    if not code:
        return PlainTextResponse("No authorization code received", status_code=status.HTTP_400_BAD_REQUEST)

    try:
        await auth.exchange_code(code)
        await watch_manager.ensure_watch_channel()
    except Exception as e:
        logger.error(f"OAuth callback error: {e}")
        return PlainTextResponse(f"Auth error: {e}", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    return "Google authorized. Watch channel set. You can close this window."

@router.api_route("/auth/reset", methods=["GET", "POST"])
async def reset_google_auth(auth: GoogleCalendarAuth = Depends(get_google_auth)):
    """Clear the stored Google credential"""
    await auth.reset()
    return {"status": "reset"}

# Push notifications
@router.post("/webhook/google")
async def google_webhook(
    request: Request,
    controller: CalendarSyncController = Depends(get_sync_controller)
):
    """
    Google Calendar push endpoint.

    Only the X-Goog-* transport headers are read, never the body. The answer
    is always 200; the pull runs in the background.
    """
    headers = request.headers
    notification = Notification(
        channel_id=headers.get("X-Goog-Channel-ID"),
        resource_id=headers.get("X-Goog-Resource-ID"),
        resource_state=headers.get("X-Goog-Resource-State"),
        message_number=_parse_message_number(headers.get("X-Goog-Message-Number"))
    )

    try:
        await controller.handle_notification(notification)
    except Exception:
        logger.exception("Error accepting Google notification")

    return Response(status_code=status.HTTP_200_OK)
