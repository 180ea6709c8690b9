"""
Calendar-to-Job Synchronization Architecture

This module defines the shared vocabulary of the incremental sync engine that
mirrors Google Calendar events into Housecall Pro jobs.

Architecture Overview:
---------------------

1. Notification Receiver (sync.controller):
   - Receives Google push notifications through the webhook endpoint
   - Acknowledges immediately and drops redelivered message numbers
   - Starts a pull in the background for every fresh notification

2. Change-Pull Loop (sync.puller):
   - Pages through the change feed from the stored continuation token
   - Hands every changed event to the reconciliation handler in order
   - Stores the new token only after the whole delta is drained
   - Re-seeds the token when Google rejects it

3. Reconciliation Handler (sync.reconciler):
   - Decides create, update or cancel for one event against the mapping table
   - Recreates jobs deleted out-of-band when an update answers 404
   - Serializes work per event id with a skip-if-busy lock

4. Downstream Job Client (services.hcp_client):
   - Housecall Pro jobs and directory API behind a rate-limited caller
   - Minimum spacing between calls, exponential backoff on throttling

5. Watch Channel Manager (sync.watch):
   - Registers and renews the push channel independently of the token
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel


class ReconcileOutcome(str, Enum):
    """Result of reconciling one event"""
    CREATED = "created"
    UPDATED = "updated"
    RECREATED = "recreated"  # Update hit 404, job created again
    CANCELLED = "cancelled"
    SKIPPED = "skipped"  # Active event without a usable time range
    NOOP = "noop"  # Cancelled event that was never mapped
    LOCKED = "locked"  # Another reconciliation of the same event is in flight
    FAILED = "failed"


class PullStatus(str, Enum):
    """How a pull ended"""
    SEEDED = "seeded"  # No token was stored; a fresh one was obtained
    RESEEDED = "reseeded"  # The stored token was rejected and replaced
    COMPLETED = "completed"


class ResourceState(str, Enum):
    """X-Goog-Resource-State values of a push notification"""
    SYNC = "sync"  # Channel handshake, carries no changes
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


class WatchState(BaseModel):
    """Active push subscription plus whether a continuation token is stored"""
    channel_id: Optional[str] = None
    resource_id: Optional[str] = None
    expiration: Optional[str] = None  # Milliseconds since epoch, as Google reports it
    has_sync_token: bool = False


class Notification(BaseModel):
    """Transport headers of one Google push notification"""
    channel_id: Optional[str] = None
    resource_id: Optional[str] = None
    resource_state: Optional[str] = None
    message_number: Optional[int] = None
