"""
Rate-Limited Caller

Spaces outbound Housecall Pro calls and retries throttled or transient
responses with exponential backoff.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from tenacity import AsyncRetrying, RetryError, retry_if_exception, stop_after_attempt, wait_exponential

from hcp_sync.utils.config import settings
from hcp_sync.utils.errors import HcpApiError, RateLimitExceeded

# Set up logging
logger = logging.getLogger(__name__)


def is_throttled(error: BaseException) -> bool:
    """True for a plain 429 response"""
    return isinstance(error, HcpApiError) and not isinstance(error, RateLimitExceeded) and error.status == 429


def is_transient(error: BaseException) -> bool:
    """True for responses worth retrying at the call layer (429 and 5xx)"""
    if not isinstance(error, HcpApiError) or isinstance(error, RateLimitExceeded):
        return False
    return error.status == 429 or error.status >= 500


class RateLimitedCaller:
    """
    Wraps outbound calls with a minimum spacing and a bounded retry budget.

    The last-call time is owned by the instance. Concurrent callers take turns
    on an asyncio lock while claiming their slot, so spacing holds across
    tasks sharing one caller; the wrapped call itself runs outside the lock.
    """

    def __init__(
        self,
        min_interval_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
        backoff_base_ms: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if min_interval_ms is None:
            min_interval_ms = settings.HCP_MIN_CALL_INTERVAL_MS
        if max_attempts is None:
            max_attempts = settings.HCP_MAX_ATTEMPTS
        if backoff_base_ms is None:
            backoff_base_ms = settings.HCP_BACKOFF_BASE_MS

        self.min_interval = min_interval_ms / 1000.0
        self.max_attempts = max(1, max_attempts)
        self.backoff_base = backoff_base_ms / 1000.0
        self._sleep = sleep
        self._clock = clock
        self._last_call: Optional[float] = None
        self._lock = asyncio.Lock()

    async def _wait_for_slot(self) -> None:
        async with self._lock:
            if self._last_call is not None:
                elapsed = self._clock() - self._last_call
                if elapsed < self.min_interval:
                    await self._sleep(self.min_interval - elapsed)
            self._last_call = self._clock()

    def _log_backoff(self, retry_state) -> None:
        error = retry_state.outcome.exception()
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"HCP call failed with status {getattr(error, 'status', '?')} "
            f"(attempt {retry_state.attempt_number}/{self.max_attempts}), "
            f"waiting {delay * 1000:.0f}ms before retry"
        )

    async def call(self, fn: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run fn once its slot comes up, retrying 429/5xx responses.

        Raises:
            RateLimitExceeded: when every attempt was throttled
            HcpApiError: the last 5xx once the budget is spent, or any other
                failure immediately
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_base, exp_base=2),
            retry=retry_if_exception(is_transient),
            sleep=self._sleep,
            before_sleep=self._log_backoff,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._wait_for_slot()
                    return await fn()
        except RetryError as e:
            last_error = e.last_attempt.exception()
            if is_throttled(last_error):
                raise RateLimitExceeded(self.max_attempts, last_error) from last_error
            raise last_error
