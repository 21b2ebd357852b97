"""Transcription service: provider lifecycle and default tuning options.

TranscriptionService owns exactly one active provider. It injects options
tuned for slow, paused speech, shapes provider results, and swaps providers
on request. It does not relocate or upload audio; the recording pipeline
does that before calling transcribe().
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Mapping
from typing import Any

from capture_pipeline.asr.interface import (
    ErrorCallback,
    ResultCallback,
    TranscriptionOptions,
    TranscriptionProvider,
    TranscriptionResult,
)
from capture_pipeline.asr.registry import get_transcription_provider

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "gemini"

SLOW_SPEECH_DEFAULTS = TranscriptionOptions()

ProviderFactory = Callable[..., TranscriptionProvider]
OptionsInput = TranscriptionOptions | Mapping[str, Any] | None


def resolve_options(options: OptionsInput = None) -> TranscriptionOptions:
    """Merge caller overrides onto the slow-speech defaults.

    A mapping overrides only the keys it names. A TranscriptionOptions
    instance already carries the slow-speech values for any field the
    caller left unset, so it is used directly.
    """
    if options is None:
        return SLOW_SPEECH_DEFAULTS
    if isinstance(options, TranscriptionOptions):
        return options
    overrides = {key: value for key, value in options.items() if value is not None}
    return dataclasses.replace(SLOW_SPEECH_DEFAULTS, **overrides)


class TranscriptionService:
    """Runs transcriptions through one swappable provider.

    Transcriptions and provider switches on the same instance are
    serialized; create one service per run for parallel transcription.

    Args:
        provider_type: Registered provider name to start with.
        provider_options: Constructor kwargs per provider name, e.g.
            {"gemini": {"object_store": store}}.
        provider_factory: Builds a provider from a name and kwargs.
    """

    def __init__(
        self,
        provider_type: str = DEFAULT_PROVIDER,
        provider_options: Mapping[str, Mapping[str, Any]] | None = None,
        provider_factory: ProviderFactory = get_transcription_provider,
    ) -> None:
        self._provider_options = dict(provider_options or {})
        self._provider_factory = provider_factory
        self._lock = asyncio.Lock()
        self._provider_type = provider_type
        self._provider = self._create_provider(provider_type)

    def _create_provider(self, provider_type: str) -> TranscriptionProvider:
        kwargs = self._provider_options.get(provider_type, {})
        return self._provider_factory(provider_type, **kwargs)

    @property
    def provider_type(self) -> str:
        return self._provider_type

    async def switch_provider(self, provider_type: str) -> None:
        """Clean up the active provider, then replace it with a new one.

        Waits for any in-flight transcription on this instance to finish.
        If constructing the new provider fails, the cleaned-up previous
        provider stays active and the error propagates.
        """
        async with self._lock:
            previous = self._provider
            await previous.cleanup()
            self._provider = self._create_provider(provider_type)
            self._provider_type = provider_type
        logger.info(
            "Switched transcription provider from %s to %s",
            previous.get_provider_name(),
            self._provider.get_provider_name(),
        )

    def get_provider_name(self) -> str:
        return self._provider.get_provider_name()

    def get_provider_info(self) -> dict[str, str]:
        """Provider type and name, for analytics and debugging."""
        return {
            "type": self._provider_type,
            "name": self._provider.get_provider_name(),
        }

    async def is_available(self) -> bool:
        return await self._provider.is_available()

    async def request_permissions(self) -> bool:
        return await self._provider.request_permissions()

    async def get_supported_languages(self) -> list[str]:
        return await self._provider.get_supported_languages()

    async def cleanup(self) -> None:
        await self._provider.cleanup()

    async def transcribe(
        self, audio_uri: str, options: OptionsInput = None
    ) -> TranscriptionResult:
        """Transcribe one recording and return the final result.

        Args:
            audio_uri: Local path, file:// URI, object-store reference or URL.
            options: Overrides merged onto the slow-speech defaults.

        Returns:
            The provider's final result. An empty transcript is a success.

        Raises:
            PipelineError: Whatever the provider raised, stage-tagged.
        """
        resolved = resolve_options(options)
        async with self._lock:
            provider = self._provider
            await provider.start_transcription(audio_uri, resolved)
            result = await provider.stop_transcription()
        return self._shape(result, provider)

    async def start_realtime(
        self,
        audio_uri: str,
        on_result: ResultCallback,
        on_error: ErrorCallback | None = None,
        options: OptionsInput = None,
    ) -> None:
        """Transcribe with results delivered to callbacks.

        Still a single provider call; "realtime" means callback delivery,
        not incremental streaming.
        """
        resolved = resolve_options(options)
        async with self._lock:
            provider = self._provider
            # callbacks belong to this run only
            provider.on_result(on_result)
            provider.on_error(on_error)
            await provider.start_transcription(audio_uri, resolved)

    async def stop_realtime(self) -> TranscriptionResult:
        async with self._lock:
            provider = self._provider
            result = await provider.stop_transcription()
        return self._shape(result, provider)

    @staticmethod
    def _shape(
        result: TranscriptionResult, provider: TranscriptionProvider
    ) -> TranscriptionResult:
        if result.provider_name:
            return result
        return dataclasses.replace(result, provider_name=provider.get_provider_name())
