"""Tests for recording_ingest.recording.downloader."""

import asyncio
import logging

import httpx
import pytest

from recording_ingest.recording.downloader import Downloader
from recording_ingest.utils.errors import (
    ClientContentError,
    RetriesExhaustedError,
    TransientTransportError,
)
from recording_ingest.utils.retry import RetryAttempt, RetryPolicy

URL = "https://provider.example.com/v1/Accounts/acme/Recordings/RE123.wav"
WAV = b"RIFF" + b"\x00" * 2044


class RecordingSleep:
    """Async sleep stand-in that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
async def downloader(sleep):
    client = httpx.AsyncClient()
    yield Downloader(
        client=client,
        policy=RetryPolicy(max_attempts=3, base_delay=1.0),
        timeout_seconds=5.0,
        max_size_bytes=4096,
        sleep=sleep,
    )
    await client.aclose()


class TestDownloadSuccess:
    """Tests for successful downloads."""

    async def test_returns_body_bytes(self, downloader, httpx_mock) -> None:
        httpx_mock.add_response(url=URL, method="GET", content=WAV)

        data = await downloader.download(URL, "CA123")

        assert data == WAV
        request = httpx_mock.get_request()
        assert request.headers["User-Agent"] == "recording-ingest/1.0"

    async def test_recovers_after_transient_failures(
        self, downloader, httpx_mock, sleep
    ) -> None:
        httpx_mock.add_response(url=URL, status_code=503)
        httpx_mock.add_exception(httpx.ConnectError("connection refused"), url=URL)
        httpx_mock.add_response(url=URL, content=WAV)
        attempts: list[RetryAttempt] = []

        data = await downloader.download(URL, "CA123", on_retry=attempts.append)

        assert data == WAV
        assert len(httpx_mock.get_requests()) == 3
        assert len(sleep.delays) == 2
        assert [a.attempt for a in attempts] == [1, 2]

    @pytest.mark.parametrize("status", [408, 429])
    async def test_timeout_and_rate_limit_statuses_retry(
        self, downloader, httpx_mock, status
    ) -> None:
        httpx_mock.add_response(url=URL, status_code=status)
        httpx_mock.add_response(url=URL, content=WAV)

        assert await downloader.download(URL, "CA123") == WAV
        assert len(httpx_mock.get_requests()) == 2


class TestDownloadRetriesExhausted:
    """Tests for transient failures on every attempt."""

    async def test_503_on_all_attempts(self, downloader, httpx_mock, sleep) -> None:
        for _ in range(3):
            httpx_mock.add_response(url=URL, status_code=503)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await downloader.download(URL, "CA123")

        assert len(httpx_mock.get_requests()) == 3
        assert "after 3 attempts" in str(exc_info.value)
        assert exc_info.value.last_error.status_code == 503

    async def test_backoff_delays_between_attempts(
        self, downloader, httpx_mock, sleep
    ) -> None:
        for _ in range(3):
            httpx_mock.add_response(url=URL, status_code=500)

        with pytest.raises(RetriesExhaustedError):
            await downloader.download(URL, "CA123")

        assert len(sleep.delays) == 2
        assert 1.0 <= sleep.delays[0] < 2.0
        assert 2.0 <= sleep.delays[1] < 3.0

    async def test_network_errors_exhaust(self, downloader, httpx_mock) -> None:
        for _ in range(3):
            httpx_mock.add_exception(httpx.ReadTimeout("read timed out"), url=URL)

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await downloader.download(URL, "CA123")

        assert isinstance(exc_info.value.last_error, TransientTransportError)
        assert "timed out" in str(exc_info.value)


class TestDownloadFatal:
    """Tests for content errors that are never retried."""

    @pytest.mark.parametrize("status", [400, 401, 403, 404])
    async def test_client_error_fails_after_one_attempt(
        self, downloader, httpx_mock, sleep, status
    ) -> None:
        httpx_mock.add_response(url=URL, status_code=status)

        with pytest.raises(ClientContentError) as exc_info:
            await downloader.download(URL, "CA123")

        assert exc_info.value.status_code == status
        assert len(httpx_mock.get_requests()) == 1
        assert sleep.delays == []

    async def test_empty_body_fails_after_one_attempt(
        self, downloader, httpx_mock, sleep
    ) -> None:
        httpx_mock.add_response(url=URL, content=b"")

        with pytest.raises(ClientContentError, match="Empty recording"):
            await downloader.download(URL, "CA123")

        assert len(httpx_mock.get_requests()) == 1
        assert sleep.delays == []

    async def test_oversized_body_fails_after_one_attempt(
        self, downloader, httpx_mock, sleep
    ) -> None:
        httpx_mock.add_response(url=URL, content=b"RIFF" + b"\x00" * 5000)

        with pytest.raises(ClientContentError, match="too large"):
            await downloader.download(URL, "CA123")

        assert len(httpx_mock.get_requests()) == 1
        assert sleep.delays == []


class TestDownloadTimeout:
    """Tests for the hard per-attempt timeout."""

    async def test_hung_attempt_times_out_and_retries(self, sleep) -> None:
        downloader = Downloader(
            policy=RetryPolicy(max_attempts=2),
            timeout_seconds=0.01,
            sleep=sleep,
        )
        calls = 0

        async def hang(url: str, call_sid: str) -> bytes:
            nonlocal calls
            calls += 1
            await asyncio.sleep(10)
            return b""

        downloader._stream_body = hang  # type: ignore[method-assign]

        with pytest.raises(RetriesExhaustedError, match="timed out"):
            await downloader.download(URL, "CA123")

        assert calls == 2
        await downloader.close()


class TestDownloadLogging:
    """Tests for download log hygiene."""

    async def test_url_truncated_in_logs(self, downloader, httpx_mock, caplog) -> None:
        httpx_mock.add_response(url=URL, content=WAV)

        with caplog.at_level(
            logging.INFO, logger="recording_ingest.recording.downloader"
        ):
            await downloader.download(URL, "CA123")

        assert all(URL not in r.getMessage() for r in caplog.records)
        assert any(URL[:50] in r.getMessage() for r in caplog.records)
