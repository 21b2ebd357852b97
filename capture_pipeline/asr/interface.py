"""Transcription provider capability set and its data models.

TranscriptionProvider is a structural Protocol: any object exposing these
methods can be plugged into TranscriptionService. Concrete variants are the
cloud Gemini provider and the thin on-device provider.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class TranscriptionOptions:
    """Tuning knobs passed to a provider for one transcription.

    Defaults favour slow, paused speech: elderly speakers pause longer, so
    the pause threshold is 2s instead of the usual 1s.
    """

    language: str = "en-US"
    continuous: bool = False
    interim_results: bool = True
    max_alternatives: int = 1
    pause_threshold_ms: int = 2000
    noise_reduction: bool = True
    slow_speech_optimization: bool = True


@dataclass(frozen=True)
class TranscriptionRequest:
    """One immutable transcription request."""

    audio_uri: str
    options: TranscriptionOptions = field(default_factory=TranscriptionOptions)

    @property
    def language(self) -> str:
        return self.options.language


@dataclass(frozen=True)
class TranscriptionResult:
    """Final text for a recording.

    An empty transcript with zero confidence is the defined outcome for
    silent or unintelligible audio, not an error.
    """

    transcript: str
    confidence: float
    is_final: bool = True
    provider_name: str = ""

    @classmethod
    def empty(cls, provider_name: str = "") -> TranscriptionResult:
        return cls(transcript="", confidence=0.0, is_final=True, provider_name=provider_name)


ResultCallback = Callable[[TranscriptionResult], None]
ErrorCallback = Callable[[Exception], None]


@runtime_checkable
class TranscriptionProvider(Protocol):
    """Capabilities every transcription provider exposes."""

    async def is_available(self) -> bool:
        """Whether the provider can run in the current environment."""
        ...

    async def request_permissions(self) -> bool:
        """Ask for any access the provider needs; True if granted."""
        ...

    async def start_transcription(
        self, audio_uri: str, options: TranscriptionOptions | None = None
    ) -> None:
        """Transcribe the audio; the result is kept for stop_transcription()."""
        ...

    async def stop_transcription(self) -> TranscriptionResult:
        """Return the final result of the last transcription."""
        ...

    def on_result(self, callback: ResultCallback | None) -> None:
        ...

    def on_error(self, callback: ErrorCallback | None) -> None:
        ...

    async def cleanup(self) -> None:
        """Drop callbacks and cached results."""
        ...

    async def get_supported_languages(self) -> list[str]:
        ...

    def get_provider_name(self) -> str:
        ...
