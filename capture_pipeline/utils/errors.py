"""Custom exception hierarchy for the capture-to-transcript pipeline.

All exceptions inherit from PipelineError, which carries the stage that
failed (relocate, upload or transcribe), a short machine-readable kind and
whether the caller may retry that stage.
"""

from __future__ import annotations

from typing import Literal

Stage = Literal["relocate", "upload", "transcribe"]


class PipelineError(Exception):
    """Base exception for all capture pipeline errors."""

    kind = "pipeline"
    retryable = False

    def __init__(self, message: str, stage: Stage | None = None) -> None:
        self.stage = stage
        super().__init__(message)

    def __str__(self) -> str:
        if self.stage:
            return f"[stage={self.stage}] {super().__str__()}"
        return super().__str__()

    def to_dict(self) -> dict[str, object]:
        """Render the failure surface handed to callers."""
        return {
            "stage": self.stage,
            "kind": self.kind,
            "retryable": self.retryable,
            "message": self.args[0] if self.args else "",
        }


class TransientIOError(PipelineError):
    """Raised when a file is not yet visible or not yet fully flushed."""

    kind = "transient_io"
    retryable = True

    def __init__(
        self, message: str, stage: Stage | None = None, path: str | None = None
    ) -> None:
        self.path = path
        super().__init__(message, stage)


class RetryExhaustedError(TransientIOError):
    """Raised when a polled operation never became ready."""

    def __init__(
        self,
        message: str,
        stage: Stage | None = None,
        path: str | None = None,
        attempts: int = 0,
    ) -> None:
        self.attempts = attempts
        super().__init__(message, stage, path)


class PermissionDeniedError(PipelineError):
    """Raised when microphone, storage or API access is refused."""

    kind = "permission"


class NetworkError(PipelineError):
    """Raised when an upload or transcription call fails on the wire."""

    kind = "network"
    retryable = True

    def __init__(
        self,
        message: str,
        stage: Stage | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, stage)


class RateLimitError(NetworkError):
    """Raised when the transcription endpoint answers HTTP 429."""

    kind = "rate_limit"

    def __init__(self, message: str, stage: Stage | None = None) -> None:
        super().__init__(message, stage, status_code=429)


class UnsupportedSourceError(PipelineError):
    """Raised when an audio URI has a scheme no component can read."""

    kind = "unsupported_source"

    def __init__(
        self, message: str, stage: Stage | None = None, uri: str | None = None
    ) -> None:
        self.uri = uri
        super().__init__(message, stage)


class ObjectExistsError(PipelineError):
    """Raised when an upload would overwrite an existing object."""

    kind = "object_exists"

    def __init__(
        self, message: str, stage: Stage | None = None, key: str | None = None
    ) -> None:
        self.key = key
        super().__init__(message, stage)


class ProviderConfigError(PipelineError):
    """Raised when a transcription provider is unknown or not configured."""

    kind = "configuration"

    def __init__(
        self,
        message: str,
        stage: Stage | None = None,
        provider: str | None = None,
    ) -> None:
        self.provider = provider
        super().__init__(message, stage)


class StorageConfigError(PipelineError):
    """Raised when the object store is missing required settings."""

    kind = "configuration"

    def __init__(
        self,
        message: str,
        stage: Stage | None = None,
        setting: str | None = None,
    ) -> None:
        self.setting = setting
        super().__init__(message, stage)
