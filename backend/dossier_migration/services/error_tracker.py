"""Process-wide counter of timeouts and exhausted retries."""
import logging
import threading
from dataclasses import dataclass

from dossier_migration.core.exceptions import OperationTimeoutError, RetryExhaustedError

logger = logging.getLogger(__name__)


@dataclass
class ErrorMetrics:
    timeout_count: int
    retry_failure_count: int
    total_error_count: int
    max_timeouts: int
    max_retry_failures: int
    max_total_errors: int
    should_stop: bool

    @property
    def timeouts_remaining(self) -> int:
        return max(0, self.max_timeouts - self.timeout_count)

    @property
    def retry_failures_remaining(self) -> int:
        return max(0, self.max_retry_failures - self.retry_failure_count)

    @property
    def total_errors_remaining(self) -> int:
        return max(0, self.max_total_errors - self.total_error_count)

    @property
    def timeout_percentage(self) -> float:
        return _percentage(self.timeout_count, self.max_timeouts)

    @property
    def retry_failure_percentage(self) -> float:
        return _percentage(self.retry_failure_count, self.max_retry_failures)

    @property
    def total_error_percentage(self) -> float:
        return _percentage(self.total_error_count, self.max_total_errors)


def _percentage(count: int, maximum: int) -> float:
    return count * 100.0 / maximum if maximum > 0 else 0.0


class GlobalErrorTracker:
    """
    Thread-safe advisory error counter.

    The tracker never stops anything itself. Callers consult
    `should_stop_migration` and decide.
    """

    def __init__(self, max_timeouts: int = 10, max_retry_failures: int = 50, max_total_errors: int = 100):
        self.max_timeouts = max_timeouts
        self.max_retry_failures = max_retry_failures
        self.max_total_errors = max_total_errors
        self._lock = threading.Lock()
        self._timeout_count = 0
        self._retry_failure_count = 0
        self._total_error_count = 0

    def record_timeout(self, error: OperationTimeoutError) -> None:
        with self._lock:
            self._timeout_count += 1
            self._total_error_count += 1
            timeouts, total = self._timeout_count, self._total_error_count

        logger.warning(
            f"Timeout in operation '{error.operation}' after {error.timeout_duration}s "
            f"(timeouts {timeouts}/{self.max_timeouts}, total errors {total}/{self.max_total_errors})"
        )
        self._check_thresholds("timeouts", timeouts, self.max_timeouts)
        self._check_thresholds("total errors", total, self.max_total_errors)

    def record_retry_exhausted(self, error: RetryExhaustedError) -> None:
        with self._lock:
            self._retry_failure_count += 1
            self._total_error_count += 1
            failures, total = self._retry_failure_count, self._total_error_count

        logger.warning(
            f"Retries exhausted in operation '{error.operation}' after {error.retry_count} attempts "
            f"(retry failures {failures}/{self.max_retry_failures}, total errors {total}/{self.max_total_errors})"
        )
        self._check_thresholds("retry failures", failures, self.max_retry_failures)
        self._check_thresholds("total errors", total, self.max_total_errors)

    def record(self, error: BaseException) -> bool:
        """Record a timeout or retry-exhausted error; returns False for anything else."""
        if isinstance(error, OperationTimeoutError):
            self.record_timeout(error)
            return True
        if isinstance(error, RetryExhaustedError):
            self.record_retry_exhausted(error)
            return True
        return False

    @staticmethod
    def _check_thresholds(label: str, count: int, maximum: int) -> None:
        # Exact match: warns once per crossing
        warning_at = int(maximum * 0.75)
        if warning_at > 0 and count == warning_at:
            logger.warning(f"Approaching {label} threshold: {count}/{maximum}")
        if count >= maximum:
            logger.critical(f"{label.capitalize()} threshold reached: {count}/{maximum}, migration should stop")

    @property
    def timeout_count(self) -> int:
        with self._lock:
            return self._timeout_count

    @property
    def retry_failure_count(self) -> int:
        with self._lock:
            return self._retry_failure_count

    @property
    def total_error_count(self) -> int:
        with self._lock:
            return self._total_error_count

    @property
    def should_stop_migration(self) -> bool:
        with self._lock:
            return (
                self._timeout_count >= self.max_timeouts
                or self._retry_failure_count >= self.max_retry_failures
                or self._total_error_count >= self.max_total_errors
            )

    def reset(self) -> None:
        with self._lock:
            self._timeout_count = 0
            self._retry_failure_count = 0
            self._total_error_count = 0
        logger.info("Global error tracker reset")

    def get_metrics(self) -> ErrorMetrics:
        with self._lock:
            timeouts, failures, total = self._timeout_count, self._retry_failure_count, self._total_error_count
        return ErrorMetrics(
            timeout_count=timeouts,
            retry_failure_count=failures,
            total_error_count=total,
            max_timeouts=self.max_timeouts,
            max_retry_failures=self.max_retry_failures,
            max_total_errors=self.max_total_errors,
            should_stop=(
                timeouts >= self.max_timeouts
                or failures >= self.max_retry_failures
                or total >= self.max_total_errors
            ),
        )
