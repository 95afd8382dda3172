"""Plausibility checks for downloaded recording buffers.

Size problems are fatal. An unrecognized container signature is only an
advisory: some provider payloads are valid audio that does not start
with one of the known headers, so the buffer is logged and accepted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from recording_ingest.utils.errors import InvalidRecordingError

logger = logging.getLogger(__name__)

# Header hex prefix -> container label
KNOWN_SIGNATURES: dict[str, str] = {
    "52494646": "wav",  # RIFF
    "494433": "mp3",  # ID3 tag
    "fffb": "mp3",  # MPEG-1 Layer III frame sync
    "fffa": "mp3",
    "fff3": "mp3",  # MPEG-2 Layer III frame sync
    "fff2": "mp3",
}

HEADER_BYTES = 4


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating a recording buffer."""

    size_bytes: int
    header_hex: str
    container: str | None
    advisory: str | None = None


def detect_container(header_hex: str) -> str | None:
    """Match a hex-encoded header against the known audio signatures."""
    for signature, container in KNOWN_SIGNATURES.items():
        if header_hex.startswith(signature):
            return container
    return None


def validate_recording(
    data: bytes, call_sid: str, max_size_bytes: int
) -> ValidationResult:
    """Validate size and container signature of a recording buffer.

    Args:
        data: Raw recording bytes.
        call_sid: Provider call-session identifier, used for logging.
        max_size_bytes: Upper bound on accepted size.

    Returns:
        ValidationResult; ``advisory`` is set when the header is not
        recognized.

    Raises:
        InvalidRecordingError: If the buffer is empty or over the ceiling.
    """
    if not data:
        raise InvalidRecordingError("Recording buffer is empty", call_sid=call_sid)

    size = len(data)
    if size > max_size_bytes:
        raise InvalidRecordingError(
            f"Recording exceeds max size: {size} > {max_size_bytes}",
            call_sid=call_sid,
        )

    header_hex = data[:HEADER_BYTES].hex()
    container = detect_container(header_hex)

    advisory = None
    if container is None:
        advisory = f"Unrecognized recording header '{header_hex}'"
        logger.warning(
            "Recording header appears invalid (may still be valid): %s",
            header_hex,
            extra={"call_sid": call_sid, "stage": "validate"},
        )

    logger.info(
        "Recording validated: %d bytes, header %s",
        size,
        header_hex,
        extra={"call_sid": call_sid, "stage": "validate"},
    )
    return ValidationResult(
        size_bytes=size,
        header_hex=header_hex,
        container=container,
        advisory=advisory,
    )
