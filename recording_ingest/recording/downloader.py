"""Recording download from the telephony provider.

Each attempt streams the body with a hard per-attempt timeout and a size
ceiling. Transport failures, timeouts, 5xx, 408 and 429 are retried with
exponential backoff; other 4xx responses and empty or oversized bodies
fail immediately.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

import httpx

from recording_ingest.config import (
    DEFAULT_DOWNLOAD_TIMEOUT_MS,
    DEFAULT_MAX_RECORDING_SIZE_BYTES,
    DEFAULT_USER_AGENT,
)
from recording_ingest.utils.errors import ClientContentError, TransientTransportError
from recording_ingest.utils.retry import (
    RetryAttempt,
    RetryPolicy,
    SleepFn,
    is_retryable_status,
    retry_with_backoff,
)

logger = logging.getLogger(__name__)

# Provider URLs carry signed tokens; only a prefix is logged
LOGGED_URL_CHARS = 50


def _redact_url(url: str) -> str:
    if len(url) <= LOGGED_URL_CHARS:
        return url
    return url[:LOGGED_URL_CHARS] + "..."


class Downloader:
    """Fetches raw recording bytes over HTTP with bounded retries.

    Args:
        client: Shared httpx client. One is created (and owned) if omitted.
        policy: Retry policy; defaults to 3 attempts with 1s base delay.
        timeout_seconds: Hard timeout for a single attempt.
        max_size_bytes: Largest accepted body.
        user_agent: User-Agent header sent to the provider.
        sleep: Suspend primitive used between attempts.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        policy: RetryPolicy | None = None,
        timeout_seconds: float = DEFAULT_DOWNLOAD_TIMEOUT_MS / 1000,
        max_size_bytes: int = DEFAULT_MAX_RECORDING_SIZE_BYTES,
        user_agent: str = DEFAULT_USER_AGENT,
        sleep: SleepFn | None = None,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(follow_redirects=True)
        self.policy = policy or RetryPolicy()
        self.timeout_seconds = timeout_seconds
        self.max_size_bytes = max_size_bytes
        self.user_agent = user_agent
        self._sleep = sleep

    async def close(self) -> None:
        """Close the HTTP client if this downloader created it."""
        if self._owns_client:
            await self._client.aclose()

    async def download(
        self,
        url: str,
        call_sid: str,
        on_retry: Callable[[RetryAttempt], None] | None = None,
    ) -> bytes:
        """Download a recording.

        Args:
            url: Provider recording URL.
            call_sid: Provider call-session identifier.
            on_retry: Optional hook receiving each scheduled RetryAttempt.

        Returns:
            Raw recording bytes.

        Raises:
            ClientContentError: Non-retryable status, empty or oversized body.
            RetriesExhaustedError: Every attempt failed transiently.
        """
        logger.info(
            "Downloading recording from %s",
            _redact_url(url),
            extra={"call_sid": call_sid, "stage": "download"},
        )
        fetch = retry_with_backoff(
            self.policy,
            sleep=self._sleep,
            operation_name="Recording download",
            on_retry=on_retry,
        )(self._fetch_once)
        data = await fetch(url, call_sid)
        logger.info(
            "Recording downloaded: %d bytes",
            len(data),
            extra={"call_sid": call_sid, "stage": "download"},
        )
        return data

    async def _fetch_once(self, url: str, call_sid: str) -> bytes:
        """Single download attempt under the hard timeout."""
        try:
            return await asyncio.wait_for(
                self._stream_body(url, call_sid), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            raise TransientTransportError(
                f"Recording download timed out after {self.timeout_seconds:g}s",
                call_sid=call_sid,
            ) from exc
        except httpx.TimeoutException as exc:
            raise TransientTransportError(
                f"Recording download timed out: {exc}", call_sid=call_sid
            ) from exc
        except httpx.RequestError as exc:
            raise TransientTransportError(
                f"Recording download failed: {type(exc).__name__}: {exc}",
                call_sid=call_sid,
            ) from exc

    async def _stream_body(self, url: str, call_sid: str) -> bytes:
        buffer = bytearray()
        async with self._client.stream(
            "GET",
            url,
            headers={"User-Agent": self.user_agent},
            timeout=self.timeout_seconds,
        ) as response:
            status = response.status_code
            if not response.is_success:
                message = f"Recording download failed: HTTP {status}"
                if is_retryable_status(status):
                    raise TransientTransportError(
                        message, call_sid=call_sid, status_code=status
                    )
                raise ClientContentError(
                    message, call_sid=call_sid, status_code=status
                )

            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > self.max_size_bytes:
                raise ClientContentError(
                    f"Recording too large: {declared} bytes", call_sid=call_sid
                )

            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                if len(buffer) > self.max_size_bytes:
                    raise ClientContentError(
                        f"Recording too large: more than {self.max_size_bytes} bytes",
                        call_sid=call_sid,
                    )

        if not buffer:
            raise ClientContentError(
                "Empty recording data received", call_sid=call_sid
            )
        return bytes(buffer)
