"""Transcription provider registry with name-based selection.

Maps provider name strings to provider classes. Use
get_transcription_provider() to instantiate a provider by name with
provider-specific configuration.
"""

from capture_pipeline.asr.gemini import GeminiTranscriptionProvider
from capture_pipeline.asr.interface import TranscriptionProvider
from capture_pipeline.asr.on_device import OnDeviceTranscriptionProvider
from capture_pipeline.utils.errors import ProviderConfigError

TRANSCRIPTION_PROVIDERS: dict[str, type] = {
    "gemini": GeminiTranscriptionProvider,
    "on-device": OnDeviceTranscriptionProvider,
}


def get_transcription_provider(provider: str, **kwargs: object) -> TranscriptionProvider:
    """Create a transcription provider instance by name.

    Args:
        provider: Provider name (e.g., "gemini", "on-device").
        **kwargs: Provider-specific configuration passed to the constructor.

    Returns:
        A new provider instance.

    Raises:
        ProviderConfigError: If the provider name is not registered.
    """
    provider_cls = TRANSCRIPTION_PROVIDERS.get(provider)
    if not provider_cls:
        available = ", ".join(sorted(TRANSCRIPTION_PROVIDERS.keys()))
        raise ProviderConfigError(
            f"Unknown transcription provider: '{provider}'. Available: {available}",
            provider=provider,
        )
    return provider_cls(**kwargs)
