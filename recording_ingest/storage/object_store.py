"""S3-compatible object store client for durable recording storage.

Works against Wasabi, Cloudflare R2, or AWS S3 through boto3.
"""

from __future__ import annotations

import logging
import os

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from recording_ingest.utils.errors import StorageError, TransientTransportError

logger = logging.getLogger(__name__)


class ObjectStore:
    """S3-compatible client for the recordings bucket.

    Reads configuration from environment variables:
        STORAGE_ENDPOINT, STORAGE_BUCKET, STORAGE_ACCESS_KEY_ID,
        STORAGE_SECRET_ACCESS_KEY, STORAGE_REGION
    """

    def __init__(
        self,
        endpoint_url: str | None = None,
        bucket: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        region: str | None = None,
    ) -> None:
        self.endpoint_url = endpoint_url or os.environ.get("STORAGE_ENDPOINT", "")
        self.bucket = bucket or os.environ.get("STORAGE_BUCKET", "")
        self.access_key_id = access_key_id or os.environ.get(
            "STORAGE_ACCESS_KEY_ID", ""
        )
        self.secret_access_key = secret_access_key or os.environ.get(
            "STORAGE_SECRET_ACCESS_KEY", ""
        )
        self.region = region or os.environ.get("STORAGE_REGION", "us-east-1")

        if not self.endpoint_url:
            raise StorageError("STORAGE_ENDPOINT is required", operation="init")
        if not self.bucket:
            raise StorageError("STORAGE_BUCKET is required", operation="init")

        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            region_name=self.region,
        )

    def put_object(
        self,
        key: str,
        data: bytes,
        content_type: str = "",
        metadata: dict[str, str] | None = None,
    ) -> str:
        """Store an object in the bucket.

        Args:
            key: Object key (e.g., "recordings/2026/3/call-1/CA123.wav").
            data: Raw bytes to store.
            content_type: Optional MIME content type.
            metadata: Optional user metadata stored with the object.

        Returns:
            The ETag reported by the store (empty if absent).

        Raises:
            TransientTransportError: If the object cannot be stored.
        """
        kwargs: dict = {"Bucket": self.bucket, "Key": key, "Body": data}
        if content_type:
            kwargs["ContentType"] = content_type
        if metadata:
            kwargs["Metadata"] = metadata
        try:
            response = self._client.put_object(**kwargs)
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code", "Unknown")
            status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            raise TransientTransportError(
                f"Failed to put object '{key}': {error_code}",
                status_code=status,
            ) from exc
        except BotoCoreError as exc:
            raise TransientTransportError(
                f"Failed to put object '{key}': {exc}"
            ) from exc
        return str(response.get("ETag", "")).strip('"')
