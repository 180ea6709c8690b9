import asyncio
import logging
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Load environment variables early
load_dotenv()

from hcp_sync.api.router import router as api_router
from hcp_sync.api.sync_router import router as sync_router
from hcp_sync.auth.google_auth import GoogleCalendarAuth
from hcp_sync.services.google_calendar import GoogleCalendarService
from hcp_sync.services.hcp_client import HousecallProClient
from hcp_sync.sync.controller import CalendarSyncController
from hcp_sync.sync.guards import ProcessingLocks
from hcp_sync.sync.puller import ChangePuller
from hcp_sync.sync.reconciler import EventReconciler
from hcp_sync.sync.storage import SyncStorageManager
from hcp_sync.sync.watch import WatchChannelManager
from hcp_sync.utils.config import settings
from hcp_sync.utils.errors import NoCredentialError

# Set up logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("hcp_sync")

# Initialize FastAPI app
app = FastAPI(
    title="HCP Calendar Sync",
    description="Mirrors Google Calendar events into Housecall Pro jobs",
    version="1.0.0"
)

# Exception handler for application errors
@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error(f"Global exception handler caught: {exc}")
    return JSONResponse(
        status_code=500,
        content={"message": f"Internal server error: {str(exc)}"},
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)
app.include_router(sync_router)

async def periodic_watch_renewal(watch_manager: WatchChannelManager, interval_minutes: int = 60):
    """Keep the Google watch channel registered"""
    logger.info(f"Starting watch renewal with {interval_minutes} minute interval")
    while True:
        try:
            if await watch_manager.renew_if_needed():
                logger.info("Google watch channel renewed")
            await asyncio.sleep(interval_minutes * 60)
        except asyncio.CancelledError:
            logger.info("Watch renewal task cancelled, exiting cleanly")
            break
        except NoCredentialError:
            # Nothing to renew before the first authorization
            await asyncio.sleep(interval_minutes * 60)
        except Exception as e:
            logger.error(f"Error renewing watch channel: {e}")
            # Wait a minute before retrying after an error
            await asyncio.sleep(60)

@app.on_event("startup")
async def startup_event():
    storage = SyncStorageManager()
    await storage.initialize()

    google_auth = GoogleCalendarAuth(storage)
    google_service = GoogleCalendarService(google_auth)
    hcp_client = HousecallProClient(storage)

    puller = ChangePuller(google_service, storage)
    reconciler = EventReconciler(hcp_client, storage, locks=ProcessingLocks())
    controller = CalendarSyncController(storage, puller, reconciler)
    watch_manager = WatchChannelManager(google_service, storage, puller)

    app.state.storage = storage
    app.state.google_auth = google_auth
    app.state.hcp_client = hcp_client
    app.state.sync_controller = controller
    app.state.watch_manager = watch_manager

    app.state.watch_task = asyncio.create_task(
        periodic_watch_renewal(watch_manager, settings.WATCH_RENEWAL_INTERVAL_MINUTES)
    )

    logger.info(f"HCP Calendar Sync started; visit {settings.PUBLIC_BASE_URL}/auth/google to link the calendar")

@app.on_event("shutdown")
async def shutdown_event():
    watch_task = getattr(app.state, "watch_task", None)
    if watch_task:
        watch_task.cancel()
        try:
            await watch_task
        except asyncio.CancelledError:
            pass

    controller = getattr(app.state, "sync_controller", None)
    if controller:
        await controller.wait_for_pending()

    hcp_client = getattr(app.state, "hcp_client", None)
    if hcp_client:
        await hcp_client.close()

    storage = getattr(app.state, "storage", None)
    if storage:
        await storage.close()
        logger.info("Sync storage closed")

# Direct execution for development
if __name__ == "__main__":
    uvicorn.run("hcp_sync.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
