"""Fire-and-forget scheduling of ingestion runs on a bounded worker pool.

enqueue() returns immediately; a fixed number of worker tasks pull jobs
from an in-process queue and run the pipeline, so a burst of call
completions never runs more than ``max_concurrency`` jobs at once.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from recording_ingest.config import DEFAULT_MAX_BACKLOG, DEFAULT_MAX_CONCURRENCY
from recording_ingest.models import RecordingJob
from recording_ingest.pipeline import IngestionPipeline
from recording_ingest.utils.errors import SchedulerBusyError

logger = logging.getLogger(__name__)


class IngestionScheduler:
    """In-process job queue drained by a fixed pool of asyncio workers.

    A call id that is pending or running is not enqueued again, so no two
    runs ever write the same call's recording state concurrently.
    """

    def __init__(
        self,
        pipeline: IngestionPipeline,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        max_backlog: int = DEFAULT_MAX_BACKLOG,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._pipeline = pipeline
        self.max_concurrency = max_concurrency
        self._queue: asyncio.Queue[RecordingJob] = asyncio.Queue(maxsize=max_backlog)
        self._in_flight: set[str] = set()
        self._workers: list[asyncio.Task] = []
        self._running = False

    @property
    def pending(self) -> int:
        """Jobs waiting for a worker."""
        return self._queue.qsize()

    @property
    def in_flight(self) -> int:
        """Jobs pending or running."""
        return len(self._in_flight)

    @property
    def running(self) -> bool:
        return self._running

    def enqueue(self, job: RecordingJob | dict[str, Any]) -> dict[str, Any]:
        """Queue a recording for ingestion without waiting for it.

        Args:
            job: A RecordingJob or a raw job descriptor dict.

        Returns:
            ``{"queued": True}`` on success, or ``{"queued": False,
            "reason": "duplicate"}`` when the call is already queued or
            running.

        Raises:
            ValueError: If a raw descriptor is invalid.
            SchedulerBusyError: If the backlog is full.
        """
        if not isinstance(job, RecordingJob):
            job = RecordingJob.from_payload(job)

        context = {"call_id": job.call_id, "call_sid": job.call_sid}
        if job.call_id in self._in_flight:
            logger.warning("Recording already queued for call; skipping", extra=context)
            return {"queued": False, "reason": "duplicate"}

        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull as exc:
            logger.error("Recording backlog full; rejecting job", extra=context)
            raise SchedulerBusyError(
                f"Ingestion backlog is full ({self._queue.maxsize} jobs)",
                call_sid=job.call_sid,
            ) from exc

        self._in_flight.add(job.call_id)
        logger.info(
            "Recording queued for processing (duration %gs)",
            job.recording_duration,
            extra=context,
        )
        return {"queued": True}

    async def start(self) -> None:
        """Spawn the worker pool."""
        if self._running:
            return
        self._running = True
        self._workers = [
            asyncio.create_task(self._worker_loop(index), name=f"ingest-worker-{index}")
            for index in range(self.max_concurrency)
        ]
        logger.info("Ingestion scheduler started with %d workers", self.max_concurrency)

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the workers. In-flight runs are abandoned, not drained."""
        self._running = False
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Ingestion scheduler stopped")

    async def _worker_loop(self, index: int) -> None:
        """Run jobs one at a time until cancelled."""
        while self._running:
            job = await self._queue.get()
            try:
                await self._pipeline.run(job)
            except Exception:
                logger.error(
                    "Worker %d: unexpected error processing recording",
                    index,
                    exc_info=True,
                    extra={"call_id": job.call_id, "call_sid": job.call_sid},
                )
            finally:
                self._in_flight.discard(job.call_id)
                self._queue.task_done()
