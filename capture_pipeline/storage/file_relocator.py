"""Durable storage for freshly recorded audio.

The recorder hands back a path inside a volatile cache directory before it
has necessarily finished writing the file. FileRelocator waits for the file
to appear, copies it into an application-owned directory under a unique
timestamped name, verifies the copy and only then removes the cache file.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from capture_pipeline.utils.errors import PipelineError, TransientIOError
from capture_pipeline.utils.retry import SleepFunc, retry
from capture_pipeline.utils.timestamps import Clock, now_millis
from capture_pipeline.utils.uris import (
    extension_of,
    is_file_uri,
    path_to_uri,
    uri_to_path,
)

logger = logging.getLogger(__name__)

RECORDINGS_DIR_NAME = "saved_recordings"
DEFAULT_PREFIX = "recording"
FALLBACK_EXTENSION = "caf"
READY_ATTEMPTS = 5
READY_DELAY_SECONDS = 0.5


def _default_recordings_dir() -> str:
    return os.path.join(
        os.path.expanduser("~"), ".capture_pipeline", RECORDINGS_DIR_NAME
    )


@dataclass(frozen=True)
class RawAudioArtifact:
    """A recording as handed over by the recorder, still in its cache dir."""

    path: Path
    extension: str
    created_at: datetime

    @classmethod
    def from_uri(cls, uri: str) -> RawAudioArtifact:
        return cls(
            path=uri_to_path(uri, stage="relocate"),
            extension=extension_of(uri) or FALLBACK_EXTENSION,
            created_at=datetime.now(UTC),
        )


@dataclass(frozen=True)
class DurableAudioArtifact:
    """A verified copy of a recording in the durable directory."""

    path: Path
    source_path: Path
    size_bytes: int


class FileRelocator:
    """Copies raw recordings out of the cache into durable storage.

    Reads configuration from environment variables:
        RECORDINGS_DIR
    """

    def __init__(
        self,
        recordings_dir: str | None = None,
        ready_attempts: int = READY_ATTEMPTS,
        ready_delay: float = READY_DELAY_SECONDS,
        sleep: SleepFunc | None = None,
        clock: Clock = now_millis,
    ) -> None:
        self.recordings_dir = Path(
            recordings_dir
            or os.environ.get("RECORDINGS_DIR", "")
            or _default_recordings_dir()
        )
        self._ready_attempts = ready_attempts
        self._ready_delay = ready_delay
        self._sleep = sleep
        self._clock = clock

    def ensure_dir_exists(self) -> None:
        """Create the durable directory if needed; safe to call concurrently."""
        os.makedirs(self.recordings_dir, exist_ok=True)

    async def relocate(self, source_uri: str, preferred_name: str | None = None) -> str:
        """Move a recording into durable storage.

        Never raises: if the source never becomes visible or the copy fails,
        the original URI is returned so the caller can carry on with the
        non-durable file.

        Args:
            source_uri: file:// URI or path of the raw recording.
            preferred_name: Optional filename prefix (default "recording").

        Returns:
            URI of the durable copy (same form as source_uri), or source_uri
            unchanged on failure.
        """
        try:
            artifact = await self.relocate_artifact(source_uri, preferred_name)
        except (PipelineError, OSError) as exc:
            logger.error(
                "Failed to relocate %s, continuing with original path: %s",
                source_uri[:80],
                exc,
                extra={"stage": "relocate"},
            )
            return source_uri

        if is_file_uri(source_uri):
            return path_to_uri(artifact.path)
        return str(artifact.path)

    async def relocate_artifact(
        self, source_uri: str, preferred_name: str | None = None
    ) -> DurableAudioArtifact:
        """Relocate a recording and return the durable artifact.

        Raises:
            UnsupportedSourceError: If source_uri is not a local file.
            TransientIOError: If the source never appears or the copy
                cannot be verified.
            OSError: If copying fails.
        """
        raw = RawAudioArtifact.from_uri(source_uri)
        self.ensure_dir_exists()

        async def _source_exists() -> bool:
            return raw.path.exists()

        try:
            await retry(
                _source_exists,
                max_attempts=self._ready_attempts,
                delay=self._ready_delay,
                sleep=self._sleep,
                description="recording visibility check",
            )
        except TransientIOError as exc:
            raise TransientIOError(
                f"Source file does not exist after retries: {raw.path}",
                stage="relocate",
                path=str(raw.path),
            ) from exc

        prefix = preferred_name or DEFAULT_PREFIX
        destination = await asyncio.to_thread(
            self._copy_exclusive, raw.path, prefix, raw.extension
        )

        if not destination.exists():
            raise TransientIOError(
                "Copy failed - destination file does not exist",
                stage="relocate",
                path=str(destination),
            )

        size_bytes = destination.stat().st_size
        logger.info(
            "Relocated recording to %s (%d bytes)",
            destination,
            size_bytes,
            extra={"stage": "relocate"},
        )

        try:
            raw.path.unlink()
        except OSError as exc:
            logger.warning(
                "Could not delete source file %s, ignoring: %s", raw.path, exc
            )

        return DurableAudioArtifact(
            path=destination, source_path=raw.path, size_bytes=size_bytes
        )

    def _copy_exclusive(self, source: Path, prefix: str, extension: str) -> Path:
        """Copy source to a fresh {prefix}_{millis}.{ext} file.

        The destination is created exclusively; a name already taken by a
        concurrent relocation bumps the timestamp by one millisecond. A
        failed copy leaves no partial destination behind.
        """
        timestamp = self._clock()
        while True:
            destination = self.recordings_dir / f"{prefix}_{timestamp}.{extension}"
            try:
                dst = open(destination, "xb")
            except FileExistsError:
                timestamp += 1
                continue

            try:
                with dst, open(source, "rb") as src:
                    shutil.copyfileobj(src, dst)
            except OSError:
                destination.unlink(missing_ok=True)
                raise
            return destination

    def clear_all_recordings(self) -> None:
        """Remove every durable recording and recreate the empty directory."""
        if self.recordings_dir.exists():
            shutil.rmtree(self.recordings_dir)
        self.ensure_dir_exists()
