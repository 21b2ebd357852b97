"""Gemini transcription provider.

Sends the recording inline (base64) to the Gemini generateContent REST
endpoint together with a fixed instruction prompt, and returns the model's
text as the transcript. Audio can come from a local file, from the object
store (via a short-lived signed URL) or from any HTTP(S) URL.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import httpx

from capture_pipeline.asr.interface import (
    ErrorCallback,
    ResultCallback,
    TranscriptionOptions,
    TranscriptionRequest,
    TranscriptionResult,
)
from capture_pipeline.storage.object_store import content_type_for
from capture_pipeline.utils.errors import (
    NetworkError,
    PermissionDeniedError,
    PipelineError,
    ProviderConfigError,
    RateLimitError,
    TransientIOError,
    UnsupportedSourceError,
)
from capture_pipeline.utils.retry import SleepFunc, retry
from capture_pipeline.utils.uris import (
    extension_of,
    is_http_url,
    is_local_path,
    uri_to_path,
)

if TYPE_CHECKING:
    from capture_pipeline.storage.object_store import RemoteObjectStore

logger = logging.getLogger(__name__)

PROVIDER_NAME = "gemini-flash"
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
# The API suggests ~32s; not parsed from the response.
RATE_LIMIT_RETRY_DELAY_SECONDS = 35.0
# Gemini returns no confidence; a fixed value for non-empty text.
HEURISTIC_CONFIDENCE = 0.9
SIGNED_URL_TTL_SECONDS = 300
REQUEST_TIMEOUT_SECONDS = 120.0
TEMPERATURE = 0.1
MAX_OUTPUT_TOKENS = 4096

SUPPORTED_LANGUAGES = [
    "en-US",
    "zh-CN",
    "zh-TW",
    "es-ES",
    "fr-FR",
    "de-DE",
    "ja-JP",
    "ko-KR",
]

TRANSCRIPTION_PROMPT = (
    "Transcribe this audio recording accurately in the ORIGINAL language "
    "spoken. Do NOT translate. If the speaker speaks Chinese, transcribe in "
    "Chinese. If they speak English, transcribe in English. The speaker may "
    "be elderly and speak slowly with pauses. Return ONLY the transcribed "
    "text, no timestamps, no labels, no explanations. If you cannot "
    "understand the audio or it's silent, return an empty string."
)


def _language_hint(language: str) -> str:
    if language.startswith("zh"):
        return "Chinese"
    if language.startswith("en"):
        return "English"
    return language


class GeminiTranscriptionProvider:
    """Cloud transcription through Gemini's multimodal generateContent API.

    Reads configuration from environment variables:
        GEMINI_API_KEY, GEMINI_MODEL

    Args:
        api_key: Gemini API key. A missing key makes the provider unavailable.
        model: Gemini model name.
        base_url: API base URL.
        object_store: Store used to sign references to uploaded recordings.
        http_client: Shared AsyncClient; one is created per call if omitted.
        rate_limit_delay: Seconds to wait before the single 429 retry.
        sleep: Awaitable sleep used for that wait.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str = DEFAULT_BASE_URL,
        object_store: RemoteObjectStore | None = None,
        http_client: httpx.AsyncClient | None = None,
        rate_limit_delay: float = RATE_LIMIT_RETRY_DELAY_SECONDS,
        sleep: SleepFunc | None = None,
    ) -> None:
        self._api_key = api_key if api_key is not None else os.environ.get(
            "GEMINI_API_KEY", ""
        )
        self._model = model or os.environ.get("GEMINI_MODEL", "") or DEFAULT_MODEL
        self._base_url = base_url.rstrip("/")
        self._object_store = object_store
        self._http_client = http_client
        self._rate_limit_delay = rate_limit_delay
        self._sleep = sleep
        self._result_callback: ResultCallback | None = None
        self._error_callback: ErrorCallback | None = None
        self._last_result = TranscriptionResult.empty(PROVIDER_NAME)

    async def is_available(self) -> bool:
        return bool(self._api_key)

    async def request_permissions(self) -> bool:
        # Cloud transcription needs no device permission.
        return True

    async def start_transcription(
        self, audio_uri: str, options: TranscriptionOptions | None = None
    ) -> None:
        """Transcribe audio_uri and keep the result for stop_transcription().

        Raises:
            ProviderConfigError: If no API key is configured.
            UnsupportedSourceError: If the URI cannot be resolved to bytes.
            TransientIOError: If a local file is missing or empty.
            RateLimitError: If the endpoint rate-limits twice in a row.
            NetworkError: For any other download or API failure.
        """
        request = TranscriptionRequest(audio_uri, options or TranscriptionOptions())
        logger.info(
            "Starting transcription for %s",
            audio_uri[:60],
            extra={"stage": "transcribe", "provider": PROVIDER_NAME},
        )

        try:
            if not self._api_key:
                raise ProviderConfigError(
                    "Gemini API key not configured. Set GEMINI_API_KEY",
                    stage="transcribe",
                    provider=PROVIDER_NAME,
                )

            async with self._client() as client:
                audio_data, mime_type = await self._load_audio(client, audio_uri)
                encoded = base64.b64encode(audio_data).decode("ascii")
                logger.info(
                    "Audio encoded, size: %d KB base64", round(len(encoded) / 1024)
                )
                transcript = await retry(
                    lambda: self._generate(client, request, encoded, mime_type),
                    max_attempts=2,
                    delay=self._rate_limit_delay,
                    retryable_exceptions=(RateLimitError,),
                    is_ready=lambda _: True,
                    sleep=self._sleep,
                    description="Gemini generateContent",
                )
        except PipelineError as exc:
            logger.error(
                "Transcription failed: %s",
                exc,
                extra={"stage": "transcribe", "provider": PROVIDER_NAME},
            )
            self._last_result = TranscriptionResult.empty(PROVIDER_NAME)
            if self._error_callback:
                self._error_callback(exc)
            raise

        self._last_result = TranscriptionResult(
            transcript=transcript,
            confidence=HEURISTIC_CONFIDENCE if transcript else 0.0,
            is_final=True,
            provider_name=PROVIDER_NAME,
        )
        logger.info(
            "Transcription result: %s%s",
            transcript[:100],
            "..." if len(transcript) > 100 else "",
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
        return list(SUPPORTED_LANGUAGES)

    def get_provider_name(self) -> str:
        return PROVIDER_NAME

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS) as client:
            yield client

    async def _load_audio(
        self, client: httpx.AsyncClient, audio_uri: str
    ) -> tuple[bytes, str]:
        """Resolve an audio URI to raw bytes and a MIME type.

        Local paths are read directly, object-store references go through a
        signed URL, other HTTP(S) URLs are downloaded as-is.
        """
        mime_type = content_type_for(extension_of(audio_uri))

        if is_local_path(audio_uri):
            logger.debug("Reading local file %s", audio_uri)
            return await self._read_local(audio_uri), mime_type

        if self._object_store is not None and self._object_store.is_remote_reference(
            audio_uri
        ):
            logger.debug("Downloading from object store")
            signed_url = self._object_store.get_signed_url(
                audio_uri, ttl=SIGNED_URL_TTL_SECONDS
            )
            if not signed_url:
                raise NetworkError(
                    f"Could not create signed URL for {audio_uri}", stage="transcribe"
                )
            return await self._download(client, signed_url), mime_type

        if is_http_url(audio_uri):
            logger.debug("Downloading from URL")
            return await self._download(client, audio_uri), mime_type

        raise UnsupportedSourceError(
            f"Unsupported URI scheme: {audio_uri[:30]}",
            stage="transcribe",
            uri=audio_uri,
        )

    async def _read_local(self, audio_uri: str) -> bytes:
        path = uri_to_path(audio_uri, stage="transcribe")
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise TransientIOError(
                f"Local file does not exist: {path}",
                stage="transcribe",
                path=str(path),
            ) from exc
        except OSError as exc:
            raise TransientIOError(
                f"Failed to read audio file {path}: {exc}",
                stage="transcribe",
                path=str(path),
            ) from exc
        if not data:
            raise TransientIOError(
                f"Audio file is empty: {path}", stage="transcribe", path=str(path)
            )
        return data

    async def _download(self, client: httpx.AsyncClient, url: str) -> bytes:
        try:
            response = await client.get(url)
        except httpx.HTTPError as exc:
            raise NetworkError(
                f"Audio download failed: {exc}", stage="transcribe"
            ) from exc

        if response.status_code != 200:
            raise NetworkError(
                f"Audio download failed with status {response.status_code}",
                stage="transcribe",
                status_code=response.status_code,
            )
        if not response.content:
            raise NetworkError("Downloaded audio is empty", stage="transcribe")
        return response.content

    def _build_payload(
        self, request: TranscriptionRequest, encoded_audio: str, mime_type: str
    ) -> dict[str, Any]:
        prompt = (
            f"{TRANSCRIPTION_PROMPT} Language hint: "
            f"{_language_hint(request.language)}."
        )
        return {
            "contents": [
                {
                    "parts": [
                        {
                            "inline_data": {
                                "mime_type": mime_type,
                                "data": encoded_audio,
                            }
                        },
                        {"text": prompt},
                    ]
                }
            ],
            "generationConfig": {
                "temperature": TEMPERATURE,
                "maxOutputTokens": MAX_OUTPUT_TOKENS,
            },
        }

    async def _generate(
        self,
        client: httpx.AsyncClient,
        request: TranscriptionRequest,
        encoded_audio: str,
        mime_type: str,
    ) -> str:
        """Make one generateContent call and return the stripped text.

        Raises:
            RateLimitError: On HTTP 429.
            PermissionDeniedError: On HTTP 401/403.
            NetworkError: On any other failure.
        """
        url = f"{self._base_url}/models/{self._model}:generateContent"
        headers = {"x-goog-api-key": self._api_key}
        payload = self._build_payload(request, encoded_audio, mime_type)

        try:
            response = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise NetworkError(
                f"Gemini request failed: {exc}", stage="transcribe"
            ) from exc

        if response.status_code == 429:
            raise RateLimitError(
                f"Rate limited by Gemini: {response.text[:200]}", stage="transcribe"
            )
        if response.status_code in (401, 403):
            raise PermissionDeniedError(
                f"Gemini rejected the API key ({response.status_code})",
                stage="transcribe",
            )
        if response.status_code != 200:
            raise NetworkError(
                f"Gemini API error: {response.status_code} - {response.text[:200]}",
                stage="transcribe",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise NetworkError(
                "Gemini returned a non-JSON response", stage="transcribe"
            ) from exc
        return self._extract_transcript(body)

    @staticmethod
    def _extract_transcript(body: Any) -> str:
        """Return the first candidate's text, stripped; "" when absent.

        Raises:
            NetworkError: If the body is not shaped like a generateContent
                response.
        """
        try:
            candidates = body.get("candidates") or []
            if not candidates:
                return ""
            parts = (candidates[0].get("content") or {}).get("parts") or []
            if not parts:
                return ""
            text = parts[0].get("text") or ""
            if not isinstance(text, str):
                raise TypeError(f"text is {type(text).__name__}")
        except (AttributeError, IndexError, KeyError, TypeError) as exc:
            raise NetworkError(
                "Gemini returned an unexpected response", stage="transcribe"
            ) from exc
        return text.strip()
