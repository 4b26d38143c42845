"""Structured exception hierarchy for the school sheets service.

Three failure modes are distinguished:

- ``ConfigurationError``: spreadsheet id or credentials missing/invalid.
- ``UpstreamFetchError``: the Sheets API could not be read.
- ``PersistenceError``: the snapshot file could not be read or written.

``error.message`` is the short text returned to API clients; ``str(error)``
adds details and a suggestion for the logs.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "SchoolSheetsError",
    "ConfigurationError",
    "UpstreamFetchError",
    "PersistenceError",
]

_SHARING_HINT = (
    "Check that the spreadsheet is shared with the service account "
    "or that the API key allows the Sheets API."
)


class SchoolSheetsError(Exception):
    """Base exception for all service errors."""

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        self.suggestion = suggestion
        self.cause = cause

        if cause is not None:
            self.details.setdefault("cause", str(cause))
            self.details.setdefault("cause_type", type(cause).__name__)

        super().__init__(self._render())

    def _render(self) -> str:
        lines = [self.message]
        if self.details:
            lines.append("Details:")
            lines.extend(f"  {key}: {value}" for key, value in self.details.items())
        if self.suggestion:
            lines.append(f"Suggestion: {self.suggestion}")
        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigurationError(SchoolSheetsError):
    """Missing or invalid configuration. Never retried."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.field = field
        self.value = value

        details: Dict[str, Any] = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)

        super().__init__(message, details=details, suggestion=suggestion)


class UpstreamFetchError(SchoolSheetsError):
    """A range could not be read from the spreadsheet.

    Covers network failures, rejected credentials and quota errors.
    Authorization failures (401/403) carry a sharing hint.
    """

    def __init__(
        self,
        message: str,
        *,
        range_spec: Optional[str] = None,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.range_spec = range_spec
        self.status_code = status_code

        details: Dict[str, Any] = {}
        if range_spec:
            details["range"] = range_spec
        if status_code is not None:
            details["status_code"] = status_code

        super().__init__(
            message,
            details=details,
            suggestion=_SHARING_HINT if status_code in (401, 403) else None,
            cause=cause,
        )


class PersistenceError(SchoolSheetsError):
    """The snapshot file could not be read or written."""

    def __init__(
        self,
        message: str,
        *,
        path: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        self.path = path
        super().__init__(message, details={"path": path} if path else None, cause=cause)
