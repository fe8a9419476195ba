"""Custom exception hierarchy for checklist-sync."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Standardized error codes for sync outcomes and logs."""

    # Target errors
    TARGET_NOT_FOUND = "TARGET_NOT_FOUND"

    # Concurrency errors
    VERSION_CONFLICT = "VERSION_CONFLICT"

    # Transport errors
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    WAF_BLOCKED = "WAF_BLOCKED"

    # Configuration errors
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ChecklistSyncError(Exception):
    """
    Base exception for all checklist-sync errors.

    Provides structured error information with:
    - Human-readable message
    - Machine-readable error code
    - HTTP status code of the failed call (0 when not HTTP related)
    - Optional additional details
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 0,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for logs and batch reports.

        Returns:
            Dictionary with error, message, and details fields
        """
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details
        }


class TargetNotFoundError(ChecklistSyncError):
    """Page to sync does not exist."""

    def __init__(self, page_id: str):
        super().__init__(
            f"Page not found: {page_id}",
            ErrorCode.TARGET_NOT_FOUND,
            status_code=404,
            details={"page_id": page_id}
        )


class VersionConflictError(ChecklistSyncError):
    """Write rejected because the page was modified since it was read."""

    def __init__(self, page_id: str, version: Optional[int] = None):
        details: Dict[str, Any] = {"page_id": page_id}
        if version is not None:
            details["version"] = version
        super().__init__(
            f"Version conflict on page {page_id}",
            ErrorCode.VERSION_CONFLICT,
            status_code=409,
            details=details
        )


class TransportError(ChecklistSyncError):
    """Non-success response or network failure talking to Confluence."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        error_code: ErrorCode = ErrorCode.TRANSPORT_FAILURE,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message,
            error_code,
            status_code=status_code,
            details=details,
        )


class ConfigurationError(ChecklistSyncError):
    """Required connection settings are missing or invalid."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message,
            ErrorCode.CONFIGURATION_ERROR,
            details=details
        )
