"""On-device transcription provider.

A thin adapter around a recognizer supplied by the host platform. Without
a recognizer the provider reports itself unavailable.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from capture_pipeline.asr.interface import (
    ErrorCallback,
    ResultCallback,
    TranscriptionOptions,
    TranscriptionResult,
)
from capture_pipeline.utils.errors import (
    PermissionDeniedError,
    PipelineError,
    ProviderConfigError,
)

logger = logging.getLogger(__name__)

PROVIDER_NAME = "on-device"
DEFAULT_LANGUAGES = ["en-US", "zh-CN"]

Recognizer = Callable[[str, TranscriptionOptions], Awaitable[tuple[str, float]]]
PermissionCheck = Callable[[], Awaitable[bool]]


class OnDeviceTranscriptionProvider:
    """Delegates recognition to a platform recognizer.

    Args:
        recognizer: Coroutine function returning (transcript, confidence).
        permission_check: Coroutine function asking for microphone access.
        supported_languages: Languages the recognizer handles.
    """

    def __init__(
        self,
        recognizer: Recognizer | None = None,
        permission_check: PermissionCheck | None = None,
        supported_languages: list[str] | None = None,
    ) -> None:
        self._recognizer = recognizer
        self._permission_check = permission_check
        self._languages = supported_languages or list(DEFAULT_LANGUAGES)
        self._result_callback: ResultCallback | None = None
        self._error_callback: ErrorCallback | None = None
        self._last_result = TranscriptionResult.empty(PROVIDER_NAME)

    async def is_available(self) -> bool:
        return self._recognizer is not None

    async def request_permissions(self) -> bool:
        if self._permission_check is None:
            return True
        return await self._permission_check()

    async def start_transcription(
        self, audio_uri: str, options: TranscriptionOptions | None = None
    ) -> None:
        try:
            if self._recognizer is None:
                raise ProviderConfigError(
                    "No on-device recognizer configured",
                    stage="transcribe",
                    provider=PROVIDER_NAME,
                )
            if not await self.request_permissions():
                raise PermissionDeniedError(
                    "Microphone permission not granted", stage="transcribe"
                )
            transcript, confidence = await self._recognizer(
                audio_uri, options or TranscriptionOptions()
            )
        except PipelineError as exc:
            self._last_result = TranscriptionResult.empty(PROVIDER_NAME)
            if self._error_callback:
                self._error_callback(exc)
            raise

        transcript = transcript.strip()
        self._last_result = TranscriptionResult(
            transcript=transcript,
            confidence=min(max(confidence, 0.0), 1.0) if transcript else 0.0,
            is_final=True,
            provider_name=PROVIDER_NAME,
        )
        if self._result_callback:
            self._result_callback(self._last_result)

    async def stop_transcription(self) -> TranscriptionResult:
        return self._last_result

    def on_result(self, callback: ResultCallback | None) -> None:
        self._result_callback = callback

    def on_error(self, callback: ErrorCallback | None) -> None:
        self._error_callback = callback

    async def cleanup(self) -> None:
        self._result_callback = None
        self._error_callback = None
        self._last_result = TranscriptionResult.empty(PROVIDER_NAME)

    async def get_supported_languages(self) -> list[str]:
        return list(self._languages)

    def get_provider_name(self) -> str:
        return PROVIDER_NAME
