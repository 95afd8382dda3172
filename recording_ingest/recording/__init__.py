"""Recording ingestion stages: download, validate, upload."""

from recording_ingest.recording.downloader import Downloader
from recording_ingest.recording.uploader import Uploader, build_storage_key
from recording_ingest.recording.validator import ValidationResult, validate_recording

__all__ = [
    "Downloader",
    "Uploader",
    "ValidationResult",
    "build_storage_key",
    "validate_recording",
]
