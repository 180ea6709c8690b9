"""
Synchronization API Router

This module defines the operator endpoints for the calendar-to-job sync:
manual pulls, watch registration, status and directory cache clearing.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from hcp_sync.api.router import get_sync_controller, get_watch_manager
from hcp_sync.sync.controller import CalendarSyncController
from hcp_sync.sync.watch import WatchChannelManager
from hcp_sync.utils.errors import UnauthorizedError

# Create router
router = APIRouter(prefix="/sync", tags=["sync"])

@router.get("/status")
async def get_status(
    controller: CalendarSyncController = Depends(get_sync_controller)
):
    """Get the watch registration and engine state"""
    try:
        return await controller.get_status()
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to load status: {str(e)}"
        )

@router.post("/pull")
async def pull_changes(
    controller: CalendarSyncController = Depends(get_sync_controller)
):
    """Pull and reconcile Google changes now"""
    try:
        return await controller.pull_now()
    except UnauthorizedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Synchronization failed: {str(e)}"
        )

@router.post("/watch")
async def register_watch(
    watch_manager: WatchChannelManager = Depends(get_watch_manager)
):
    """Register a new Google watch channel"""
    try:
        return await watch_manager.ensure_watch_channel()
    except UnauthorizedError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e)
        )
    except Exception as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to register watch channel: {str(e)}"
        )

@router.delete("/cache")
async def clear_directory_cache(
    controller: CalendarSyncController = Depends(get_sync_controller)
):
    """Clear cached HCP customer and employee ids"""
    await controller.storage.clear_cache()
    return {"status": "success", "message": "Directory cache cleared"}
