"""Data models for recording ingestion jobs and their outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import urlparse


class RecordingState(str, Enum):
    """Recording lifecycle persisted on the owning call record."""

    QUEUED = "queued"
    DOWNLOADING = "downloading"
    VALIDATED = "validated"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RecordingState.COMPLETED, RecordingState.FAILED)


class JobState(str, Enum):
    """Stage a single pipeline run is in."""

    QUEUED = "queued"
    DOWNLOADING = "downloading"
    VALIDATING = "validating"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


def _first(body: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in body and body[key] is not None:
            return body[key]
    return None


@dataclass(frozen=True)
class RecordingJob:
    """One recording to ingest, created when a call-completion event arrives."""

    call_id: str
    call_sid: str
    recording_url: str
    recording_duration: float = 0.0

    @classmethod
    def from_payload(cls, body: dict[str, Any]) -> RecordingJob:
        """Deserialize and validate a job descriptor.

        Accepts the webhook layer's camelCase keys (callId, callSid,
        recordingUrl, recordingDuration) as well as snake_case.

        Args:
            body: Raw job descriptor dict.

        Returns:
            Validated RecordingJob.

        Raises:
            ValueError: If required fields are missing or invalid.
        """
        if not isinstance(body, dict):
            raise ValueError("Job descriptor must be a JSON object")

        call_id = _first(body, "callId", "call_id")
        if isinstance(call_id, int) and not isinstance(call_id, bool):
            call_id = str(call_id)
        if not call_id or not isinstance(call_id, str):
            raise ValueError("Missing or invalid 'callId' in job descriptor")

        call_sid = _first(body, "callSid", "call_sid")
        if not call_sid or not isinstance(call_sid, str):
            raise ValueError("Missing or invalid 'callSid' in job descriptor")

        recording_url = _first(body, "recordingUrl", "recording_url")
        if not recording_url or not isinstance(recording_url, str):
            raise ValueError("Missing or invalid 'recordingUrl' in job descriptor")
        parsed = urlparse(recording_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(
                "Invalid 'recordingUrl': must be an http(s) URL"
            )

        raw_duration = _first(body, "recordingDuration", "recording_duration")
        if raw_duration is None or raw_duration == "":
            duration = 0.0
        else:
            if isinstance(raw_duration, bool):
                raise ValueError("Invalid 'recordingDuration': must be a number")
            try:
                duration = float(raw_duration)
            except (TypeError, ValueError) as exc:
                raise ValueError(
                    f"Invalid 'recordingDuration': '{raw_duration}'"
                ) from exc
            if duration < 0:
                raise ValueError("Invalid 'recordingDuration': must not be negative")

        return cls(
            call_id=call_id,
            call_sid=call_sid,
            recording_url=recording_url,
            recording_duration=duration,
        )


@dataclass
class IngestionFailure:
    """Details about a failed run."""

    stage: str
    message: str
    exception_type: str


@dataclass
class IngestionResult:
    """Outcome of one pipeline run."""

    call_id: str
    call_sid: str
    status: RecordingState
    storage_key: str | None = None
    size_bytes: int = 0
    duration_seconds: float = 0.0
    retry_count: int = 0
    advisory: str | None = None
    stage_timings: dict[str, float] = field(default_factory=dict)
    error: IngestionFailure | None = None
