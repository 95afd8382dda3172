"""Per-job orchestration of the recording ingestion pipeline.

Runs download -> validate -> upload -> persist for one RecordingJob,
advancing a JobStateMachine at each step. Any fatal error moves the job
to ``failed`` and writes a failure record; the run itself never raises.
"""

from __future__ import annotations

import logging
import time

from recording_ingest.models import (
    IngestionFailure,
    IngestionResult,
    JobState,
    RecordingJob,
    RecordingState,
)
from recording_ingest.observability.metrics import (
    IngestionMetrics,
    StageTimer,
    log_ingestion_metrics,
)
from recording_ingest.recording.downloader import Downloader
from recording_ingest.recording.uploader import Uploader
from recording_ingest.recording.validator import validate_recording
from recording_ingest.storage.call_store import CallRecordStore
from recording_ingest.utils.errors import InvalidTransitionError, PersistenceError
from recording_ingest.utils.retry import RetryAttempt

logger = logging.getLogger(__name__)

# (state, event) -> next state
TRANSITIONS: dict[tuple[JobState, str], JobState] = {
    (JobState.QUEUED, "start"): JobState.DOWNLOADING,
    (JobState.QUEUED, "fail"): JobState.FAILED,
    (JobState.DOWNLOADING, "downloaded"): JobState.VALIDATING,
    (JobState.DOWNLOADING, "fail"): JobState.FAILED,
    (JobState.VALIDATING, "validated"): JobState.UPLOADING,
    (JobState.VALIDATING, "fail"): JobState.FAILED,
    (JobState.UPLOADING, "uploaded"): JobState.COMPLETED,
    (JobState.UPLOADING, "fail"): JobState.FAILED,
}

# Stage name reported for a failure raised while in each state
_STAGE_FOR_STATE: dict[JobState, str] = {
    JobState.QUEUED: "init",
    JobState.DOWNLOADING: "download",
    JobState.VALIDATING: "validate",
    JobState.UPLOADING: "upload",
}


class JobStateMachine:
    """Lifecycle of a single run. Terminal states accept no events."""

    def __init__(self, call_id: str) -> None:
        self.call_id = call_id
        self.state = JobState.QUEUED
        self.history: list[JobState] = [JobState.QUEUED]

    def advance(self, event: str) -> JobState:
        """Apply ``event`` and return the new state.

        Raises:
            InvalidTransitionError: If the event is not allowed in the
                current state.
        """
        next_state = TRANSITIONS.get((self.state, event))
        if next_state is None:
            raise InvalidTransitionError(
                f"Event '{event}' not allowed in state '{self.state.value}' "
                f"for call {self.call_id}"
            )
        logger.debug(
            "Job %s: %s -> %s",
            self.call_id,
            self.state.value,
            next_state.value,
            extra={"call_id": self.call_id},
        )
        self.state = next_state
        self.history.append(next_state)
        return next_state


class IngestionPipeline:
    """Runs the four ingestion stages for one job at a time.

    A single instance is shared by all workers; it holds no per-job state.

    Args:
        downloader: Provider download client.
        uploader: Breaker-protected storage writer.
        call_store: Call record outcome writer.
        max_size_bytes: Ceiling used by the validator.
    """

    def __init__(
        self,
        downloader: Downloader,
        uploader: Uploader,
        call_store: CallRecordStore,
        max_size_bytes: int,
    ) -> None:
        self.downloader = downloader
        self.uploader = uploader
        self.call_store = call_store
        self.max_size_bytes = max_size_bytes

    async def run(self, job: RecordingJob) -> IngestionResult:
        """Process one recording job to a terminal state.

        Args:
            job: The recording to ingest.

        Returns:
            IngestionResult with status ``completed`` or ``failed``.
        """
        wall_start = time.monotonic()
        machine = JobStateMachine(job.call_id)
        result = IngestionResult(
            call_id=job.call_id,
            call_sid=job.call_sid,
            status=RecordingState.QUEUED,
            duration_seconds=job.recording_duration,
        )
        retries: list[RetryAttempt] = []
        context = {"call_id": job.call_id, "call_sid": job.call_sid}

        logger.info("Starting recording ingestion", extra=context)

        try:
            machine.advance("start")
            await self._report_progress(job, RecordingState.DOWNLOADING)
            with StageTimer("download", result.stage_timings):
                data = await self.downloader.download(
                    job.recording_url, job.call_sid, on_retry=retries.append
                )
            result.retry_count = len(retries)
            result.size_bytes = len(data)

            machine.advance("downloaded")
            with StageTimer("validate", result.stage_timings):
                validation = validate_recording(
                    data, job.call_sid, self.max_size_bytes
                )
            result.advisory = validation.advisory
            await self._report_progress(job, RecordingState.VALIDATED)

            machine.advance("validated")
            await self._report_progress(job, RecordingState.UPLOADING)
            with StageTimer("upload", result.stage_timings):
                storage_key = await self.uploader.upload(
                    job.call_id, job.call_sid, data, job.recording_duration
                )
            result.storage_key = storage_key

            with StageTimer("persist", result.stage_timings):
                await self.call_store.mark_completed(
                    job.call_id, storage_key, job.recording_duration, len(data)
                )
            machine.advance("uploaded")
            result.status = RecordingState.COMPLETED
            logger.info(
                "Recording ingestion complete: %s",
                storage_key,
                extra=context,
            )

        except Exception as exc:
            stage = _STAGE_FOR_STATE.get(machine.state, "unknown")
            if stage == "upload" and result.storage_key is not None:
                stage = "persist"
            error_message = str(exc)
            result.retry_count = max(
                result.retry_count, getattr(exc, "_retry_count", len(retries))
            )
            logger.error(
                "Recording ingestion failed at stage '%s': %s",
                stage,
                error_message,
                exc_info=True,
                extra={**context, "stage": stage},
            )
            if not machine.state.is_terminal:
                machine.advance("fail")
            result.status = RecordingState.FAILED
            result.error = IngestionFailure(
                stage=stage,
                message=error_message,
                exception_type=type(exc).__name__,
            )
            await self._record_failure(job, error_message)

        wall_time = time.monotonic() - wall_start
        log_ingestion_metrics(
            IngestionMetrics(
                call_id=job.call_id,
                call_sid=job.call_sid,
                status=result.status.value,
                size_bytes=result.size_bytes,
                recording_duration_seconds=job.recording_duration,
                processing_wall_time_seconds=wall_time,
                retry_count=result.retry_count,
                advisory=result.advisory,
                stage_timings=dict(result.stage_timings),
                error_stage=result.error.stage if result.error else None,
                error_message=result.error.message if result.error else None,
            )
        )
        return result

    async def _report_progress(
        self, job: RecordingJob, status: RecordingState
    ) -> None:
        """Best-effort intermediate status write."""
        try:
            await self.call_store.update_status(job.call_id, status)
        except PersistenceError:
            logger.warning(
                "Failed to record recording status '%s'",
                status.value,
                exc_info=True,
                extra={"call_id": job.call_id, "call_sid": job.call_sid},
            )

    async def _record_failure(self, job: RecordingJob, error_message: str) -> None:
        """Best-effort failure write; never escalates."""
        try:
            await self.call_store.mark_failed(job.call_id, error_message)
        except Exception:
            logger.error(
                "Failed to record recording failure in call record",
                exc_info=True,
                extra={"call_id": job.call_id, "call_sid": job.call_sid},
            )
