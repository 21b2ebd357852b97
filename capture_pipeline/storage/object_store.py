"""S3-compatible object storage for durable recordings.

Provides upload(), delete(), get_signed_url() and is_remote_reference()
using boto3 against any S3-compatible endpoint (Supabase Storage,
Cloudflare R2, MinIO, AWS S3). Uploads never overwrite an existing object.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence
from dataclasses import dataclass
from urllib.parse import unquote, urlparse

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from capture_pipeline.storage.readers import (
    DEFAULT_READ_STRATEGIES,
    ReadStrategy,
    read_first_available,
)
from capture_pipeline.utils.errors import (
    NetworkError,
    ObjectExistsError,
    PermissionDeniedError,
    PipelineError,
    StorageConfigError,
    TransientIOError,
)
from capture_pipeline.utils.retry import SleepFunc, retry
from capture_pipeline.utils.timestamps import Clock, now_millis
from capture_pipeline.utils.uris import extension_of, uri_to_path

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "audio-recordings"
DEFAULT_EXTENSION = "caf"
DEFAULT_CONTENT_TYPE = "audio/mpeg"
CONTENT_TYPES: dict[str, str] = {
    "caf": "audio/x-caf",
    "m4a": "audio/mp4",
}
CACHE_CONTROL = "max-age=3600"
SIGNED_URL_TTL_SECONDS = 3600
READ_ATTEMPTS = 5
READ_DELAY_SECONDS = 0.5

_COLLISION_CODES = {"PreconditionFailed", "ConditionalRequestConflict", "412", "409"}
_PERMISSION_CODES = {"AccessDenied", "Forbidden", "403", "InvalidAccessKeyId"}


def content_type_for(extension: str) -> str:
    """Map a file extension (without the dot) to its upload MIME type."""
    return CONTENT_TYPES.get(extension.lower(), DEFAULT_CONTENT_TYPE)


@dataclass(frozen=True)
class RemoteAudioReference:
    """Locator of an uploaded recording. The URL is not necessarily public."""

    bucket: str
    key: str
    url: str


@dataclass(frozen=True)
class UploadResult:
    """Outcome of an upload; failures are values, not exceptions."""

    success: bool
    url: str | None = None
    reference: RemoteAudioReference | None = None
    size_bytes: int = 0
    error: str | None = None
    kind: str | None = None
    retryable: bool = False

    @classmethod
    def failure(cls, exc: PipelineError) -> UploadResult:
        return cls(
            success=False,
            error=exc.args[0] if exc.args else str(exc),
            kind=exc.kind,
            retryable=exc.retryable,
        )


class RemoteObjectStore:
    """Uploads recordings to an S3-compatible bucket.

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
        read_strategies: Sequence[ReadStrategy] = DEFAULT_READ_STRATEGIES,
        read_attempts: int = READ_ATTEMPTS,
        read_delay: float = READ_DELAY_SECONDS,
        sleep: SleepFunc | None = None,
        clock: Clock = now_millis,
    ) -> None:
        self.endpoint_url = (
            endpoint_url or os.environ.get("STORAGE_ENDPOINT", "")
        ).rstrip("/")
        self.bucket = bucket or os.environ.get("STORAGE_BUCKET", "") or DEFAULT_BUCKET
        self.access_key_id = access_key_id or os.environ.get(
            "STORAGE_ACCESS_KEY_ID", ""
        )
        self.secret_access_key = secret_access_key or os.environ.get(
            "STORAGE_SECRET_ACCESS_KEY", ""
        )
        self.region = region or os.environ.get("STORAGE_REGION", "auto")

        if not self.endpoint_url:
            raise StorageConfigError(
                "STORAGE_ENDPOINT is required", setting="STORAGE_ENDPOINT"
            )

        self._read_strategies = tuple(read_strategies)
        self._read_attempts = read_attempts
        self._read_delay = read_delay
        self._sleep = sleep
        self._clock = clock
        self._last_timestamp = 0

        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            region_name=self.region,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )

    async def upload(self, local_uri: str, owner_id: str) -> UploadResult:
        """Upload a local recording under {owner_id}/{millis}.{ext}.

        Args:
            local_uri: file:// URI or path of the recording.
            owner_id: Owner identifier used as the key prefix.

        Returns:
            UploadResult with the object URL on success, or the failure
            kind and message. Never raises for storage or read errors.
        """
        extension = extension_of(local_uri) or DEFAULT_EXTENSION
        key = f"{owner_id}/{self._next_timestamp()}.{extension}"
        logger.info("Uploading %s to %s", local_uri[:80], key, extra={"stage": "upload"})

        try:
            uri_to_path(local_uri, stage="upload")
            data = await retry(
                lambda: read_first_available(local_uri, self._read_strategies),
                max_attempts=self._read_attempts,
                delay=self._read_delay,
                sleep=self._sleep,
                description="recording read",
            )
        except TransientIOError:
            logger.error("All read methods failed after retries for %s", local_uri)
            return UploadResult.failure(
                TransientIOError(
                    f"Cannot read recording file after retries. Path: {local_uri}",
                    stage="upload",
                    path=local_uri,
                )
            )
        except PipelineError as exc:
            return UploadResult.failure(exc)

        content_type = content_type_for(extension)
        try:
            await asyncio.to_thread(self._put_new_object, key, data, content_type)
        except PipelineError as exc:
            logger.error("Upload of %s failed: %s", key, exc, extra={"stage": "upload"})
            return UploadResult.failure(exc)

        reference = RemoteAudioReference(
            bucket=self.bucket, key=key, url=self.url_for(key)
        )
        logger.info(
            "Upload successful: %s (%d bytes, %s)",
            key,
            len(data),
            content_type,
            extra={"stage": "upload"},
        )
        return UploadResult(
            success=True,
            url=reference.url,
            reference=reference,
            size_bytes=len(data),
        )

    def _put_new_object(self, key: str, data: bytes, content_type: str) -> None:
        """Create an object, refusing to replace one that already exists.

        Raises:
            ObjectExistsError: If the key is already taken.
            PermissionDeniedError: If the credentials are refused.
            NetworkError: For any other storage or transport failure.
        """
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl=CACHE_CONTROL,
                IfNoneMatch="*",
            )
        except ClientError as exc:
            error_code = exc.response.get("Error", {}).get("Code", "Unknown")
            if error_code in _COLLISION_CODES:
                raise ObjectExistsError(
                    f"Object '{key}' already exists: {error_code}",
                    stage="upload",
                    key=key,
                ) from exc
            if error_code in _PERMISSION_CODES:
                raise PermissionDeniedError(
                    f"Storage refused upload of '{key}': {error_code}",
                    stage="upload",
                ) from exc
            raise NetworkError(
                f"Failed to put object '{key}': {error_code}", stage="upload"
            ) from exc
        except BotoCoreError as exc:
            raise NetworkError(
                f"Failed to put object '{key}': {exc}", stage="upload"
            ) from exc

    def _next_timestamp(self) -> int:
        timestamp = max(self._clock(), self._last_timestamp + 1)
        self._last_timestamp = timestamp
        return timestamp

    def url_for(self, key: str) -> str:
        return f"{self.endpoint_url}/{self.bucket}/{key}"

    def is_remote_reference(self, uri: str) -> bool:
        """True if uri points at an object in this store's bucket."""
        return self.key_from_reference(uri) is not None

    def key_from_reference(self, reference: str | RemoteAudioReference) -> str | None:
        """Extract the object key from a reference, stored URL or signed URL."""
        if isinstance(reference, RemoteAudioReference):
            return reference.key if reference.bucket == self.bucket else None

        parsed = urlparse(reference)
        endpoint = urlparse(self.endpoint_url)
        if parsed.scheme not in ("http", "https") or parsed.netloc != endpoint.netloc:
            return None

        prefix = f"{endpoint.path.rstrip('/')}/{self.bucket}/"
        if not parsed.path.startswith(prefix):
            return None
        key = unquote(parsed.path[len(prefix) :])
        return key or None

    async def delete(self, reference: str | RemoteAudioReference) -> bool:
        """Delete an uploaded object. Returns False instead of raising."""
        key = self.key_from_reference(reference)
        if key is None:
            logger.warning("Not a reference into bucket %s: %s", self.bucket, reference)
            return False

        try:
            await asyncio.to_thread(
                self._client.delete_object, Bucket=self.bucket, Key=key
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("Failed to delete object '%s': %s", key, exc)
            return False
        logger.info("Deleted object %s", key)
        return True

    def get_signed_url(
        self,
        reference: str | RemoteAudioReference,
        ttl: int = SIGNED_URL_TTL_SECONDS,
    ) -> str | None:
        """Create a time-boxed GET URL for a private object.

        Returns:
            The signed URL, or None if the reference is not in this bucket
            or signing fails.
        """
        key = self.key_from_reference(reference)
        if key is None:
            logger.warning("Could not extract object key from %s", reference)
            return None

        try:
            return self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=ttl,
            )
        except (ClientError, BotoCoreError) as exc:
            logger.error("Signed URL error for '%s': %s", key, exc)
            return None
