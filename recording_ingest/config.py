"""Ingestion settings loaded from environment variables.

Durations are configured in milliseconds (matching the telephony and
storage timeouts used elsewhere in the platform) and exposed in seconds.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

from recording_ingest.utils.errors import ConfigurationError

DEFAULT_DOWNLOAD_TIMEOUT_MS = 60_000
DEFAULT_MAX_RECORDING_SIZE_BYTES = 100 * 1024 * 1024
DEFAULT_MAX_DOWNLOAD_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY_MS = 1_000
DEFAULT_BREAKER_FAILURE_THRESHOLD = 5
DEFAULT_BREAKER_COOLDOWN_MS = 30_000
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_MAX_BACKLOG = 1_000
DEFAULT_USER_AGENT = "recording-ingest/1.0"


def _positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{name} must be an integer, got '{raw}'"
        ) from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class IngestConfig:
    """Pipeline tuning knobs.

    Storage and call-record credentials are read by their clients
    (ObjectStore, CallRecordStore) rather than held here.
    """

    download_timeout_seconds: float = DEFAULT_DOWNLOAD_TIMEOUT_MS / 1000
    max_recording_size_bytes: int = DEFAULT_MAX_RECORDING_SIZE_BYTES
    max_download_attempts: int = DEFAULT_MAX_DOWNLOAD_ATTEMPTS
    retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_MS / 1000
    breaker_failure_threshold: int = DEFAULT_BREAKER_FAILURE_THRESHOLD
    breaker_cooldown_seconds: float = DEFAULT_BREAKER_COOLDOWN_MS / 1000
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    max_backlog: int = DEFAULT_MAX_BACKLOG
    user_agent: str = DEFAULT_USER_AGENT
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> IngestConfig:
        """Build a config from environment variables.

        Args:
            env: Mapping to read from. Defaults to os.environ.

        Returns:
            Populated IngestConfig.

        Raises:
            ConfigurationError: If a numeric setting is malformed or not
                positive.
        """
        if env is None:
            env = os.environ
        return cls(
            download_timeout_seconds=_positive_int(
                env, "RECORDING_DOWNLOAD_TIMEOUT_MS", DEFAULT_DOWNLOAD_TIMEOUT_MS
            )
            / 1000,
            max_recording_size_bytes=_positive_int(
                env, "RECORDING_MAX_SIZE_BYTES", DEFAULT_MAX_RECORDING_SIZE_BYTES
            ),
            max_download_attempts=_positive_int(
                env, "RECORDING_MAX_DOWNLOAD_ATTEMPTS", DEFAULT_MAX_DOWNLOAD_ATTEMPTS
            ),
            retry_base_delay_seconds=_positive_int(
                env, "RECORDING_RETRY_BASE_DELAY_MS", DEFAULT_RETRY_BASE_DELAY_MS
            )
            / 1000,
            breaker_failure_threshold=_positive_int(
                env,
                "STORAGE_BREAKER_FAILURE_THRESHOLD",
                DEFAULT_BREAKER_FAILURE_THRESHOLD,
            ),
            breaker_cooldown_seconds=_positive_int(
                env, "STORAGE_BREAKER_COOLDOWN_MS", DEFAULT_BREAKER_COOLDOWN_MS
            )
            / 1000,
            max_concurrency=_positive_int(
                env, "INGEST_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY
            ),
            max_backlog=_positive_int(env, "INGEST_MAX_BACKLOG", DEFAULT_MAX_BACKLOG),
            user_agent=env.get("RECORDING_USER_AGENT") or DEFAULT_USER_AGENT,
            log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
        )
