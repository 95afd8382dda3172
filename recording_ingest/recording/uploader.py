"""Durable upload of validated recordings.

Every attempt goes through the storage circuit breaker. The uploader does
not retry: recovery of the storage leg is the breaker's open/half-open
cooldown cycle.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from recording_ingest.storage.object_store import ObjectStore
from recording_ingest.utils.circuit_breaker import CircuitBreaker
from recording_ingest.utils.errors import BreakerOpenError

logger = logging.getLogger(__name__)

RECORDING_CONTENT_TYPE = "audio/wav"


def build_storage_key(call_id: str, call_sid: str, now: datetime) -> str:
    """Build the object key ``recordings/{year}/{month}/{call_id}/{call_sid}.wav``.

    The month is not zero padded.
    """
    return f"recordings/{now.year}/{now.month}/{call_id}/{call_sid}.wav"


class Uploader:
    """Writes recordings to the object store behind a circuit breaker."""

    def __init__(
        self,
        store: ObjectStore,
        breaker: CircuitBreaker,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._breaker = breaker
        self._clock = clock or (lambda: datetime.now(UTC))

    async def upload(
        self, call_id: str, call_sid: str, data: bytes, duration: float
    ) -> str:
        """Upload a validated recording.

        Args:
            call_id: Owning call record identifier.
            call_sid: Provider call-session identifier.
            data: Validated recording bytes.
            duration: Reported duration in seconds.

        Returns:
            The storage key.

        Raises:
            BreakerOpenError: If the storage breaker rejected the call.
            TransientTransportError: If the write itself failed.
        """
        key = build_storage_key(call_id, call_sid, self._clock())
        metadata = {
            "call-id": call_id,
            "call-sid": call_sid,
            "duration-seconds": f"{duration:g}",
        }

        async def _put() -> str:
            logger.info(
                "Uploading recording to %s (%d bytes)",
                key,
                len(data),
                extra={"call_id": call_id, "call_sid": call_sid, "stage": "upload"},
            )
            etag = await asyncio.to_thread(
                self._store.put_object, key, data, RECORDING_CONTENT_TYPE, metadata
            )
            logger.info(
                "Recording uploaded to %s (etag %s)",
                key,
                etag or "-",
                extra={"call_id": call_id, "call_sid": call_sid, "stage": "upload"},
            )
            return key

        def _on_open(error: BreakerOpenError) -> str:
            error.call_sid = call_sid
            logger.error(
                "Recording upload rejected - storage circuit breaker open",
                extra={
                    "call_id": call_id,
                    "call_sid": call_sid,
                    "stage": "upload",
                    "breaker": error.breaker,
                },
            )
            raise error

        return await self._breaker.call(_put, on_open=_on_open)
