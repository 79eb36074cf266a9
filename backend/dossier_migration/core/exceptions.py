"""Exception hierarchy for the migration pipeline."""
from typing import Optional


class MigrationError(Exception):
    """Base class for all migration pipeline errors."""


class OperationTimeoutError(MigrationError):
    """An external call did not finish within its timeout."""

    def __init__(self, operation: str, timeout_duration: float, message: Optional[str] = None):
        self.operation = operation
        self.timeout_duration = timeout_duration
        super().__init__(message or f"Operation '{operation}' timed out after {timeout_duration}s")


class RetryExhaustedError(MigrationError):
    """An external call kept failing after all retries."""

    def __init__(self, operation: str, retry_count: int, message: Optional[str] = None):
        self.operation = operation
        self.retry_count = retry_count
        super().__init__(message or f"Operation '{operation}' failed after {retry_count} retries")


class ContentRepositoryError(MigrationError):
    """Content repository returned an error response."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Optional[str] = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class ContentRepositoryTimeoutError(OperationTimeoutError, ContentRepositoryError):
    """Content repository call timed out."""

    def __init__(self, operation: str, timeout_duration: float):
        OperationTimeoutError.__init__(self, operation, timeout_duration)


class ContentRepositoryRetryExhaustedError(RetryExhaustedError, ContentRepositoryError):
    """Content repository call failed after all retries."""

    def __init__(self, operation: str, retry_count: int):
        RetryExhaustedError.__init__(self, operation, retry_count)


class ClientApiError(MigrationError):
    """Client data API returned an error response."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Optional[str] = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class ClientApiTimeoutError(OperationTimeoutError, ClientApiError):
    """Client data API call timed out."""

    def __init__(self, operation: str, timeout_duration: float):
        OperationTimeoutError.__init__(self, operation, timeout_duration)


class ClientApiRetryExhaustedError(RetryExhaustedError, ClientApiError):
    """Client data API call failed after all retries."""

    def __init__(self, operation: str, retry_count: int):
        RetryExhaustedError.__init__(self, operation, retry_count)


class OfferApiError(MigrationError):
    """Deposit offer API returned an error response."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_body: Optional[str] = None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class StagingStoreError(MigrationError):
    """Staging database could not be reached when starting a transaction."""

    def __init__(self, message: str, host: Optional[str] = None, database: Optional[str] = None,
                 timeout: Optional[float] = None):
        self.host = host
        self.database = database
        self.timeout = timeout
        super().__init__(message)


class PhaseNotFoundError(MigrationError):
    """Checkpoint row for a phase does not exist."""
