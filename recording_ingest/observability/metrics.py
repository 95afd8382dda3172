"""Per-job ingestion metrics.

Provides IngestionMetrics for structured observability data, StageTimer
for measuring stage durations, and log_ingestion_metrics() for emitting
one JSON line per finished job.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime


@dataclass
class IngestionMetrics:
    """All metrics collected for a single ingestion run."""

    call_id: str
    call_sid: str
    status: str
    size_bytes: int
    recording_duration_seconds: float
    processing_wall_time_seconds: float
    retry_count: int = 0
    advisory: str | None = None
    stage_timings: dict[str, float] = field(default_factory=dict)
    error_stage: str | None = None
    error_message: str | None = None


class StageTimer:
    """Context manager that records the wall-clock duration of a stage.

    Successful stages are stored under their name; a stage that raised is
    stored as ``_{name}_failed``.

    Usage:
        timings = {}
        with StageTimer("download", timings):
            await do_work()
    """

    def __init__(self, stage_name: str, timings: dict[str, float]) -> None:
        self.stage_name = stage_name
        self.duration_seconds: float = 0.0
        self._timings = timings
        self._start: float = 0.0

    def __enter__(self) -> StageTimer:
        self._start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.duration_seconds = time.monotonic() - self._start
        if exc_type is not None:
            self._timings[f"_{self.stage_name}_failed"] = self.duration_seconds
        else:
            self._timings[self.stage_name] = self.duration_seconds


def log_ingestion_metrics(metrics: IngestionMetrics) -> None:
    """Emit job metrics as a single structured JSON line to stdout.

    Args:
        metrics: Populated IngestionMetrics dataclass.
    """
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "recording_ingestion",
        **asdict(metrics),
    }
    print(json.dumps(entry))
