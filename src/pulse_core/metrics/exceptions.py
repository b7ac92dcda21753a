"""Custom exceptions for the metrics collection layer."""
from datetime import date


class MetricsError(Exception):
    """Base exception for all metrics collection errors."""


class ConfigurationError(MetricsError):
    """Raised when required connection settings are missing or unusable."""


class DateRangeError(MetricsError):
    """Raised for invalid date input (reversed range, unparsable date)."""

    def __init__(self, message: str, start_date: date | None = None, end_date: date | None = None):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(message)


class CollectionLockedError(MetricsError):
    """Raised when another collector holds the lock for the target date."""

    def __init__(self, target_date: date, lock_key: str):
        self.target_date = target_date
        self.lock_key = lock_key
        super().__init__(
            f"Collection lock already held for date={target_date.isoformat()}, key={lock_key}"
        )


class SourceQueryError(MetricsError):
    """Raised when a source count query fails or returns malformed data."""

    def __init__(self, table: str, message: str, status: int | None = None):
        self.table = table
        self.status = status
        detail = f"HTTP {status}, " if status is not None else ""
        super().__init__(f"Source query failed for table={table}: {detail}{message}")
