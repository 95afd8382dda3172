"""Call record client for persisting recording outcomes.

The platform API owns the calls table; this service reports recording
progress and outcome through the API's internal endpoint.
"""

from __future__ import annotations

import logging
import os
from datetime import UTC, datetime
from typing import Any

import httpx

from recording_ingest.models import RecordingState
from recording_ingest.utils.errors import PersistenceError

logger = logging.getLogger(__name__)


class CallRecordStore:
    """Client for call-record recording fields via the internal API.

    Reads configuration from environment variables:
        CALL_RECORDS_API_URL, CALL_RECORDS_API_SECRET
    """

    def __init__(
        self,
        api_url: str | None = None,
        internal_secret: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = (
            api_url or os.environ.get("CALL_RECORDS_API_URL", "")
        ).rstrip("/")
        self.internal_secret = internal_secret or os.environ.get(
            "CALL_RECORDS_API_SECRET", ""
        )

        if not self.api_url:
            raise PersistenceError(
                "CALL_RECORDS_API_URL is required", operation="init"
            )
        if not self.internal_secret:
            raise PersistenceError(
                "CALL_RECORDS_API_SECRET is required", operation="init"
            )

        self._client = client or httpx.AsyncClient(timeout=30.0)

    def _headers(self) -> dict[str, str]:
        """Build authentication headers for the internal endpoint."""
        return {
            "X-Internal-Secret": self.internal_secret,
            "Content-Type": "application/json",
        }

    async def close(self) -> None:
        """Close the shared HTTP client and release connection pool."""
        await self._client.aclose()

    async def _post(
        self, call_id: str, payload: dict[str, Any], operation: str
    ) -> None:
        url = f"{self.api_url}/internal/calls/{call_id}/recording"
        try:
            response = await self._client.post(
                url,
                headers=self._headers(),
                json=payload,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise PersistenceError(
                f"Call record update failed for call '{call_id}': "
                f"HTTP {exc.response.status_code}",
                operation=operation,
            ) from exc
        except httpx.RequestError as exc:
            raise PersistenceError(
                f"Call record update failed for call '{call_id}': {exc}",
                operation=operation,
            ) from exc

    async def update_status(self, call_id: str, status: RecordingState) -> None:
        """Record an intermediate recording status.

        Args:
            call_id: The call record identifier.
            status: Non-terminal RecordingState.

        Raises:
            PersistenceError: If the API call fails.
        """
        await self._post(
            call_id,
            {"recording_status": RecordingState(status).value},
            operation="update_status",
        )

    async def mark_completed(
        self,
        call_id: str,
        storage_key: str,
        duration: float,
        size: int,
    ) -> None:
        """Record a successfully stored recording.

        Args:
            call_id: The call record identifier.
            storage_key: Object key of the stored recording.
            duration: Recording duration in seconds.
            size: Recording size in bytes.

        Raises:
            PersistenceError: If the API call fails.
        """
        payload = {
            "recording_status": RecordingState.COMPLETED.value,
            "recording_key": storage_key,
            "recording_duration_seconds": duration,
            "recording_size_bytes": size,
            "recording_processed_at": datetime.now(UTC).isoformat(),
        }
        await self._post(call_id, payload, operation="mark_completed")
        logger.info(
            "Call recording marked completed",
            extra={"call_id": call_id, "stage": "persist"},
        )

    async def mark_failed(self, call_id: str, error_message: str) -> None:
        """Record a failed ingestion.

        Args:
            call_id: The call record identifier.
            error_message: Human-readable failure description.

        Raises:
            PersistenceError: If the API call fails.
        """
        payload = {
            "recording_status": RecordingState.FAILED.value,
            "recording_error": error_message,
            "recording_failed_at": datetime.now(UTC).isoformat(),
        }
        await self._post(call_id, payload, operation="mark_failed")
        logger.warning(
            "Call recording marked failed: %s",
            error_message,
            extra={"call_id": call_id, "stage": "persist"},
        )
