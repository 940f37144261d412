"""Exception classes raised by the rank tracker."""

from typing import Any, Dict, Optional


class RankTrackerError(Exception):
    """Base exception for all rank tracker errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(RankTrackerError):
    """Exception raised for configuration-related issues."""


class RefreshPreconditionError(RankTrackerError):
    """A refresh run cannot start (no credentials, products or keywords)."""


class DuplicateEntryError(RankTrackerError):
    """A product or keyword with the same identity already exists."""


class NotFoundError(RankTrackerError):
    """The requested product or keyword does not exist."""


class PermissionDeniedError(RankTrackerError):
    """The acting user does not own the target resource."""


class HistoryWriteError(RankTrackerError):
    """A rank history batch could not be written.

    ``rows_written`` counts the rows of earlier batches that already landed.
    """

    def __init__(self, message: str, rows_written: int = 0, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.rows_written = rows_written
