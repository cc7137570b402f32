# src/ai_review_sync/exceptions.py
from typing import Optional

# Throttling and transient server-side failures worth another attempt
RETRYABLE_STATUS_CODES = (408, 429, 500, 502, 503, 504)


class SCMAPIError(Exception):
    """Raised by mutating hosting-platform calls that did not succeed."""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: Optional[bool] = None):
        super().__init__(message)
        self.status_code = status_code
        if retryable is None:
            # No status code means the request never got an answer (timeout, connection reset)
            retryable = status_code is None or status_code in RETRYABLE_STATUS_CODES
        self.retryable = retryable


class SyncAbortedError(Exception):
    """Raised when a pass cannot work with any file of the pull request."""
