"""Transcription providers."""

from capture_pipeline.asr.registry import get_transcription_provider

__all__ = ["get_transcription_provider"]
