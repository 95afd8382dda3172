"""Custom exception hierarchy for the recording ingestion pipeline.

All exceptions inherit from IngestError, enabling targeted handling
at pipeline boundaries while preserving specific failure context.
"""

from __future__ import annotations


class IngestError(Exception):
    """Base exception for all recording ingestion errors."""

    def __init__(self, message: str, call_sid: str | None = None) -> None:
        self.call_sid = call_sid
        super().__init__(message)

    def __str__(self) -> str:
        if self.call_sid:
            return f"[call_sid={self.call_sid}] {super().__str__()}"
        return super().__str__()


class ConfigurationError(IngestError):
    """Raised when an environment setting is missing or malformed."""


class TransientTransportError(IngestError):
    """Raised on network failures, timeouts, and retryable HTTP statuses."""

    def __init__(
        self,
        message: str,
        call_sid: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, call_sid)


class ClientContentError(IngestError):
    """Raised when the source is malformed: fatal 4xx, empty or oversized body."""

    def __init__(
        self,
        message: str,
        call_sid: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, call_sid)


class InvalidRecordingError(IngestError):
    """Raised when a downloaded buffer fails hard validation."""


class RetriesExhaustedError(IngestError):
    """Raised when every allowed attempt failed with a retryable error."""

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: BaseException,
        call_sid: str | None = None,
    ) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(message, call_sid)


class BreakerOpenError(IngestError):
    """Raised when a circuit breaker rejects a call without attempting it."""

    def __init__(
        self,
        message: str,
        breaker: str,
        mode: str,
        call_sid: str | None = None,
    ) -> None:
        self.breaker = breaker
        self.mode = mode
        super().__init__(message, call_sid)


class StorageError(IngestError):
    """Raised when object storage operations fail."""

    def __init__(
        self,
        message: str,
        call_sid: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, call_sid)


class PersistenceError(IngestError):
    """Raised when writing a call record outcome fails."""

    def __init__(
        self,
        message: str,
        call_sid: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, call_sid)


class InvalidTransitionError(IngestError):
    """Raised when a job state machine receives an event it cannot accept."""


class SchedulerBusyError(IngestError):
    """Raised when the ingestion backlog is full."""
