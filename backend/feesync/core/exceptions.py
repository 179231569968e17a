"""
Custom exception hierarchy for the marketplace fee sync.

Exceptions are categorized as:
- RetryableError: Transient faults the sync engine recovers from
- NonRetryableError: Permanent faults that abort the run

The run controller only ever catches FeeSyncException; anything else is a bug
and propagates untouched.
"""


class FeeSyncException(Exception):
    """Base exception for the fee sync."""
    pass


# ============================================
# RETRYABLE ERRORS - Recovered inside the run
# ============================================
class RetryableError(FeeSyncException):
    """
    Base class for transient errors.

    Use this for faults where waiting or refreshing might succeed:
    - Rate limits (with backoff)
    - Expired access tokens
    - A single failed database write
    """
    pass


class RateLimitError(RetryableError):
    """
    Rate limit exceeded more often than the run is allowed to absorb.

    Raised once a batch has been restarted max_restarts times.
    """
    def __init__(self, service: str, restarts: int, retry_after: int = 120):
        self.service = service
        self.restarts = restarts
        self.retry_after = retry_after
        super().__init__(
            f"{service} rate limited {restarts} times in one batch. Retry after {retry_after}s"
        )


class TokenExpiredError(RetryableError):
    """Access token rejected by the provider as expired."""
    pass


class PersistenceError(RetryableError):
    """
    A single keyed write to the order store failed.

    Logged and counted by the flush, never aborts it.
    """
    def __init__(self, table: str, key: str, message: str):
        self.table = table
        self.key = key
        super().__init__(f"{table} update failed for {key}: {message}")


# ============================================
# NON-RETRYABLE ERRORS - Abort the run
# ============================================
class NonRetryableError(FeeSyncException):
    """
    Base class for errors that end the run.

    Use this for permanent errors where retrying won't help:
    - Rejected credentials
    - Unexpected API failures
    - Invalid input
    """
    pass


class ValidationError(NonRetryableError):
    """Invalid input - retrying won't help."""
    pass


class AuthError(NonRetryableError):
    """
    Refresh-token exchange failed.

    Needs a credentials fix, not a retry.
    """
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(f"LWA token exchange failed: {message}")


class FinancesAPIError(NonRetryableError):
    """Any Finances API failure that is neither a rate limit nor an expired token."""
    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(f"Finances API error: {message}")


class CredentialsNotConfiguredError(NonRetryableError):
    """No marketplace credentials are available."""
    pass


class SyncAlreadyRunningError(NonRetryableError):
    """A sync run is already active in this process."""
    pass
