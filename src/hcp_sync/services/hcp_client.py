"""
Housecall Pro Job Client

Creates, reschedules and cancels HCP jobs, and resolves directory ids
(customers by name, employees by email). Every call goes through the
rate-limited caller.
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import aiohttp

from hcp_sync.services.calendar_event import JobSpec, to_schedule_window
from hcp_sync.sync.storage import SyncStorageManager
from hcp_sync.utils.config import settings
from hcp_sync.utils.errors import (
    DirectoryResolutionError, HcpApiError, JobNotFoundError, MalformedResponseError
)
from hcp_sync.utils.rate_limit import RateLimitedCaller

# Set up logging
logger = logging.getLogger(__name__)

# Cache key of the default customer the calendar's jobs are filed under
DEFAULT_CUSTOMER_CACHE_KEY = "customer_id"

# Statuses meaning the tenant has no job delete
CANCEL_UNSUPPORTED_STATUSES = (404, 405, 501)


class DirectoryKind(str, Enum):
    """HCP directories that can be searched"""
    CUSTOMER = "customer"
    EMPLOYEE = "employee"


def _customer_keys(record: Dict[str, Any]) -> List[str]:
    full_name = f"{record.get('first_name') or ''} {record.get('last_name') or ''}"
    return [
        full_name.strip().lower(),
        (record.get("name") or "").strip().lower(),
        (record.get("company_name") or "").strip().lower(),
    ]


def _employee_keys(record: Dict[str, Any]) -> List[str]:
    return [(record.get("email") or "").strip().lower()]


# kind -> (listing path, list key in the response, match keys)
DIRECTORIES = {
    DirectoryKind.CUSTOMER: ("/customers", "customers", _customer_keys),
    DirectoryKind.EMPLOYEE: ("/employees", "employees", _employee_keys),
}


def extract_id(payload: Any, wrapper: str) -> str:
    """
    Pull a record id out of a create response.

    Shapes are tried in order: {id}, {<wrapper>: {id}}, {data: {id}},
    {<wrapper>_id}. A response matching none of them is malformed.
    """
    paths: Tuple[Tuple[str, ...], ...] = (
        ("id",),
        (wrapper, "id"),
        ("data", "id"),
        (f"{wrapper}_id",),
    )
    if isinstance(payload, dict):
        for path in paths:
            value: Any = payload
            for key in path:
                value = value.get(key) if isinstance(value, dict) else None
            if value not in (None, ""):
                return str(value)
    raise MalformedResponseError(payload)


def extract_job_id(payload: Any) -> str:
    return extract_id(payload, "job")


def _records(data: Any, list_key: str) -> List[Dict[str, Any]]:
    if isinstance(data, dict) and isinstance(data.get(list_key), list):
        return data[list_key]
    if isinstance(data, list):
        return data
    return []


def _schedule_echoed(data: Any) -> bool:
    """True when a create response already carries the scheduled window"""
    if not isinstance(data, dict):
        return False
    for candidate in (data, data.get("job"), data.get("data")):
        if isinstance(candidate, dict):
            schedule = candidate.get("schedule")
            if isinstance(schedule, dict) and schedule.get("scheduled_start"):
                return True
    return False


class HousecallProClient:
    """Client for the Housecall Pro jobs and directory API"""

    def __init__(
        self,
        storage: SyncStorageManager,
        caller: Optional[RateLimitedCaller] = None,
        api_base: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.storage = storage
        self.caller = caller or RateLimitedCaller()
        self.api_base = (api_base or settings.HCP_API_BASE).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.HCP_API_KEY
        self.timeout = timeout or settings.HCP_REQUEST_TIMEOUT_SECONDS
        self.customer_id = settings.HCP_CUSTOMER_ID.strip()
        self.customer_name = settings.HCP_CUSTOMER_NAME.strip()
        self.assignee_email = settings.HCP_ASSIGNEE_EMAIL.strip()
        self.timezone = settings.EVENT_TIMEZONE
        self.max_pages = settings.HCP_DIRECTORY_MAX_PAGES
        self.page_size = settings.HCP_PAGE_SIZE
        self.http_session: Optional[aiohttp.ClientSession] = None

    async def close(self):
        """Close the HTTP session"""
        if self.http_session and not self.http_session.closed:
            await self.http_session.close()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.http_session is None or self.http_session.closed:
            self.http_session = aiohttp.ClientSession(
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self.http_session

    async def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Issue one HTTP request; non-2xx responses raise HcpApiError"""
        session = await self._get_session()
        query = {k: str(v) for k, v in (params or {}).items()}
        async with session.request(method, f"{self.api_base}{path}", params=query, json=payload) as response:
            text = await response.text()
            if response.status >= 400:
                raise HcpApiError(response.status, text, method, path)
            if not text:
                return {}
            try:
                return json.loads(text)
            except ValueError:
                return text

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        return await self.caller.call(
            lambda: self._send(method, path, params=params, payload=payload)
        )

    # Directory resolution

    async def resolve_directory_id(
        self,
        kind: DirectoryKind,
        lookup_key: str,
        cache_key: Optional[str] = None,
    ) -> Optional[str]:
        """
        Find a directory record id by name (customers) or email (employees).

        Looks in the cache first, then pages through the listing up to the
        configured page limit matching case-insensitively. The first match
        is cached. Returns None when the listing runs out without a match.
        """
        target = (lookup_key or "").strip().lower()
        if not target:
            return None

        kind = DirectoryKind(kind)
        cache_key = cache_key or f"{kind.value}_id:{target}"
        cached = await self.storage.cache_get(cache_key)
        if cached:
            return cached

        path, list_key, match_keys = DIRECTORIES[kind]
        page = 1
        while page <= self.max_pages:
            data = await self._request("GET", path, params={"page": page, "page_size": self.page_size})
            for record in _records(data, list_key):
                if record.get("id") is not None and target in match_keys(record):
                    found = str(record["id"])
                    await self.storage.cache_set(cache_key, found)
                    logger.info(f"Resolved HCP {kind.value} '{lookup_key}' to {found}")
                    return found

            try:
                total_pages = int(data.get("total_pages") or page) if isinstance(data, dict) else page
            except (TypeError, ValueError):
                total_pages = page
            if page >= total_pages:
                break
            page += 1

        logger.info(f"No HCP {kind.value} matched '{lookup_key}'")
        return None

    async def _create_customer(self, name: str) -> str:
        first_name, _, last_name = name.partition(" ")
        payload = {"first_name": first_name, "last_name": last_name.strip() or None}
        data = await self._request("POST", "/customers", payload=payload)
        return extract_id(data, "customer")

    async def resolve_customer_id(self) -> str:
        """
        Resolve the customer every calendar job is filed under.

        An explicit HCP_CUSTOMER_ID wins, then the cache, then a directory
        search by HCP_CUSTOMER_NAME. When the search finds nothing the
        customer is created.

        Raises:
            DirectoryResolutionError: the customer could be neither found nor created
        """
        if self.customer_id:
            return self.customer_id

        cached = await self.storage.cache_get(DEFAULT_CUSTOMER_CACHE_KEY)
        if cached:
            return cached

        if not self.customer_name:
            raise DirectoryResolutionError("Set HCP_CUSTOMER_ID or HCP_CUSTOMER_NAME to choose the job customer")

        found = await self.resolve_directory_id(
            DirectoryKind.CUSTOMER, self.customer_name, cache_key=DEFAULT_CUSTOMER_CACHE_KEY
        )
        if found:
            return found

        logger.info(f"Creating HCP customer '{self.customer_name}'")
        try:
            created = await self._create_customer(self.customer_name)
        except Exception as e:
            raise DirectoryResolutionError(
                f"Could not resolve HCP customer_id for '{self.customer_name}'. Set HCP_CUSTOMER_ID."
            ) from e

        await self.storage.cache_set(DEFAULT_CUSTOMER_CACHE_KEY, created)
        return created

    async def resolve_assignee_id(self) -> Optional[str]:
        """Employee id for HCP_ASSIGNEE_EMAIL, or None when unset or unresolvable"""
        if not self.assignee_email:
            return None
        try:
            return await self.resolve_directory_id(DirectoryKind.EMPLOYEE, self.assignee_email)
        except Exception as e:
            logger.error(f"Could not resolve HCP employee '{self.assignee_email}': {e}")
            return None

    # Jobs

    async def _set_schedule(self, job_id: str, window: Tuple[str, str], assignee_id: Optional[str]) -> None:
        start, end = window
        payload: Dict[str, Any] = {"start_time": start, "end_time": end}
        if assignee_id:
            payload["dispatched_employees"] = [{"employee_id": assignee_id}]
        await self._request("PUT", f"/jobs/{job_id}/schedule", payload=payload)

    async def create_job(self, spec: JobSpec) -> str:
        """
        Create a job for the customer and time range in spec.

        When the response does not echo a schedule, the schedule is set with
        a follow-up call. That follow-up failing only degrades the job's
        calendar visibility, so it is logged and the job id still returned.

        Raises:
            MalformedResponseError: the create response had no job id
        """
        window = to_schedule_window(spec.start, spec.end, self.timezone)
        payload: Dict[str, Any] = {
            "customer_id": spec.customer_id,
            "description": spec.job_description,
            "schedule": {"scheduled_start": window[0], "scheduled_end": window[1]},
        }
        if spec.assignee_id:
            payload["assigned_employee_ids"] = [spec.assignee_id]

        data = await self._request("POST", "/jobs", payload=payload)
        job_id = extract_job_id(data)
        logger.info(f"Created HCP job {job_id}")

        if not _schedule_echoed(data):
            try:
                await self._set_schedule(job_id, window, spec.assignee_id)
            except Exception as e:
                logger.error(f"HCP job {job_id} created but setting its schedule failed: {e}")

        return job_id

    async def update_job(self, job_id: str, spec: JobSpec) -> None:
        """
        Re-issue the schedule of an existing job.

        Raises:
            JobNotFoundError: the job no longer exists downstream
        """
        window = to_schedule_window(spec.start, spec.end, self.timezone)
        try:
            await self._set_schedule(job_id, window, spec.assignee_id)
        except HcpApiError as e:
            if e.status == 404:
                raise JobNotFoundError(e.status, e.body, e.method, e.path) from e
            raise
        logger.info(f"Updated HCP job {job_id}")

    async def cancel_job(self, job_id: str) -> None:
        """
        Remove a job, best-effort.

        Tenants without a job delete answer 404/405/501; that is only a
        warning, since the mapping is dropped either way.
        """
        try:
            await self._request("DELETE", f"/jobs/{job_id}")
        except HcpApiError as e:
            if e.status in CANCEL_UNSUPPORTED_STATUSES:
                logger.warning(f"HCP job {job_id} could not be deleted (status {e.status}); leaving it in place")
                return
            raise
        logger.info(f"Cancelled HCP job {job_id}")
