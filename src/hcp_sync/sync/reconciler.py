"""
Reconciliation Handler

Turns one changed Google event into at most one Housecall Pro mutation,
keeping the event-to-job mapping as the only record of what exists
downstream.
"""

import logging
from typing import Optional

from hcp_sync.services.calendar_event import JobSpec, RemoteEvent
from hcp_sync.services.hcp_client import HousecallProClient
from hcp_sync.sync.architecture import ReconcileOutcome
from hcp_sync.sync.guards import ProcessingLocks
from hcp_sync.sync.storage import SyncStorageManager
from hcp_sync.utils.config import settings
from hcp_sync.utils.errors import JobNotFoundError

# Set up logging
logger = logging.getLogger(__name__)


class EventReconciler:
    """
    Reconciles Google events against the mapping table.

    The mapping is read before any create call and recreation only follows
    a 404 on update, so replaying an unchanged event converges on the same
    single job and mapping.
    """

    def __init__(
        self,
        hcp_client: HousecallProClient,
        storage: SyncStorageManager,
        locks: Optional[ProcessingLocks] = None,
        default_duration_minutes: Optional[int] = None,
    ):
        self.hcp = hcp_client
        self.storage = storage
        self.locks = locks if locks is not None else ProcessingLocks()
        if default_duration_minutes is None:
            default_duration_minutes = settings.DEFAULT_EVENT_DURATION_MINUTES
        self.default_duration_minutes = default_duration_minutes

    async def handle(self, event: RemoteEvent) -> ReconcileOutcome:
        """Reconcile one event; failures are logged and reported as FAILED"""
        if not self.locks.try_acquire(event.id):
            logger.info(f"Event {event.id} is already being reconciled, skipping")
            return ReconcileOutcome.LOCKED

        try:
            return await self._reconcile(event)
        finally:
            self.locks.release(event.id)

    async def _reconcile(self, event: RemoteEvent) -> ReconcileOutcome:
        existing = await self.storage.get_mapping(event.id)

        if event.is_cancelled:
            if not existing:
                return ReconcileOutcome.NOOP
            return await self._cancel(event, existing)

        time_range = event.time_range(self.default_duration_minutes)
        if time_range is None:
            logger.warning(f"Event {event.id} missing start or end, skipping")
            logger.debug(f"Skipped event payload: {event.original_data}")
            return ReconcileOutcome.SKIPPED

        assignee_id = await self.hcp.resolve_assignee_id()

        if existing:
            spec = JobSpec.from_event(event, time_range, assignee_id=assignee_id)
            return await self._update(event, existing, spec)

        try:
            customer_id = await self.hcp.resolve_customer_id()
        except Exception as e:
            logger.error(f"Event {event.id}: could not resolve HCP customer: {e}")
            return ReconcileOutcome.FAILED

        spec = JobSpec.from_event(event, time_range, customer_id=customer_id, assignee_id=assignee_id)
        job_id = await self._create(event, spec)
        return ReconcileOutcome.CREATED if job_id else ReconcileOutcome.FAILED

    async def _cancel(self, event: RemoteEvent, job_id: str) -> ReconcileOutcome:
        try:
            await self.hcp.cancel_job(job_id)
        except Exception as e:
            logger.error(f"Event {event.id}: cancelling HCP job {job_id} failed: {e}")
        await self.storage.delete_mapping(event.id)
        logger.info(f"Event {event.id} cancelled, unmapped HCP job {job_id}")
        return ReconcileOutcome.CANCELLED

    async def _update(self, event: RemoteEvent, job_id: str, spec: JobSpec) -> ReconcileOutcome:
        try:
            await self.hcp.update_job(job_id, spec)
            return ReconcileOutcome.UPDATED
        except JobNotFoundError:
            logger.warning(f"Event {event.id}: HCP job {job_id} no longer exists, recreating")
        except Exception as e:
            logger.error(f"Event {event.id}: updating HCP job {job_id} failed, keeping mapping for retry: {e}")
            return ReconcileOutcome.FAILED

        try:
            spec.customer_id = await self.hcp.resolve_customer_id()
        except Exception as e:
            logger.error(f"Event {event.id}: could not resolve HCP customer for recreation: {e}")
            return ReconcileOutcome.FAILED

        new_job_id = await self._create(event, spec)
        if not new_job_id:
            return ReconcileOutcome.FAILED
        logger.info(f"Event {event.id}: replaced HCP job {job_id} with {new_job_id}")
        return ReconcileOutcome.RECREATED

    async def _create(self, event: RemoteEvent, spec: JobSpec) -> Optional[str]:
        try:
            job_id = await self.hcp.create_job(spec)
        except Exception as e:
            body = getattr(e, "body", None)
            logger.error(
                f"Event {event.id}: creating HCP job failed, leaving it unmapped: {e}"
                + (f" (response: {body})" if body else "")
            )
            return None

        await self.storage.put_mapping(event.id, job_id)
        return job_id
