"""
Sync Errors

Exception types shared by the Google change feed, the Housecall Pro client
and the reconciliation engine.
"""

from typing import Any, Optional


class SyncError(Exception):
    """Base class for calendar-to-job sync failures"""


class UnauthorizedError(SyncError):
    """Google rejected the stored credential"""


class NoCredentialError(UnauthorizedError):
    """No Google refresh token has been stored yet"""

    def __init__(self, message: str = "No Google refresh token stored. Authorize first."):
        super().__init__(message)


class SyncTokenInvalidError(SyncError):
    """The stored continuation token was rejected by the change feed"""


class HcpApiError(SyncError):
    """Non-success response from the Housecall Pro API"""

    def __init__(
        self,
        status: int,
        body: Any = None,
        method: Optional[str] = None,
        path: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.status = status
        self.body = body
        self.method = method
        self.path = path
        super().__init__(message or f"HCP {method or ''} {path or ''} failed with status {status}: {body}")


class JobNotFoundError(HcpApiError):
    """The job referenced by a mapping no longer exists downstream"""


class RateLimitExceeded(HcpApiError):
    """Throttling persisted through the whole retry budget"""

    def __init__(self, attempts: int, last_error: Optional[HcpApiError] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            status=429,
            body=last_error.body if last_error else None,
            method=last_error.method if last_error else None,
            path=last_error.path if last_error else None,
            message=f"HCP rate limit exceeded after {attempts} attempts",
        )


class MalformedResponseError(SyncError):
    """A create response carried no recognizable job id"""

    def __init__(self, payload: Any):
        self.payload = payload
        super().__init__(f"No job id found in HCP response: {payload!r}")


class DirectoryResolutionError(SyncError):
    """The default customer could neither be found nor created"""
