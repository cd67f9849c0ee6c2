"""
Exception hierarchy for the triage queue engine.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TriageError(Exception):
    """Base exception for all triage queue errors."""

    def __init__(
        self,
        message: str,
        code: str = "TRIAGE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(TriageError):
    """Malformed, missing or implausible vitals/demographics."""

    def __init__(
        self,
        message: str,
        field: str = "unknown",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field": field, **(details or {})},
        )
        self.field = field


class ExternalServiceError(TriageError):
    """The prioritization authority timed out, failed, or answered garbage."""

    def __init__(
        self,
        message: str,
        operation: str = "unknown",
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code="EXTERNAL_SERVICE_ERROR",
            details={"operation": operation, "status_code": status_code, **(details or {})},
        )
        self.operation = operation
        self.status_code = status_code


class EmptyQueueError(TriageError):
    """Raised when popping from an empty queue."""

    def __init__(self, message: str = "No patients in queue"):
        super().__init__(message=message, code="EMPTY_QUEUE")
