"""Command-line entry point for the capture pipeline.

Runs one recording through relocate -> upload -> transcribe and prints a
JSON summary. Storage and provider settings come from the environment.
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from capture_pipeline.observability.logger import configure_logging
from capture_pipeline.pipeline import ProcessingResult, RecordingPipeline
from capture_pipeline.service import DEFAULT_PROVIDER, TranscriptionService
from capture_pipeline.storage.file_relocator import FileRelocator
from capture_pipeline.storage.object_store import RemoteObjectStore
from capture_pipeline.utils.errors import PipelineError

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="capture-pipeline",
        description="Relocate, upload and transcribe one audio recording.",
    )
    parser.add_argument("audio_path", help="Path or file:// URI of the recording")
    parser.add_argument(
        "--owner",
        default=os.environ.get("OWNER_ID"),
        help="Owner id used as the object key prefix (env OWNER_ID)",
    )
    parser.add_argument("--name", default=None, help="Durable filename prefix")
    parser.add_argument("--language", default=None, help="BCP-47 language tag")
    parser.add_argument(
        "--provider",
        default=os.environ.get("TRANSCRIPTION_PROVIDER", DEFAULT_PROVIDER),
        help="Transcription provider name (env TRANSCRIPTION_PROVIDER)",
    )
    return parser


async def _run(args: argparse.Namespace) -> ProcessingResult:
    """Build the pipeline from the environment and process one recording."""
    object_store = RemoteObjectStore()
    service = TranscriptionService(
        provider_type=args.provider,
        provider_options={"gemini": {"object_store": object_store}},
    )
    pipeline = RecordingPipeline(FileRelocator(), object_store, service)
    try:
        return await pipeline.process(
            args.audio_path,
            args.owner,
            preferred_name=args.name,
            options={"language": args.language},
        )
    finally:
        await service.cleanup()


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run the pipeline and print the outcome as JSON."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.owner:
        parser.error("--owner is required (or set OWNER_ID)")

    try:
        result = asyncio.run(_run(args))
    except PipelineError as exc:
        logger.error("Pipeline setup failed: %s", exc, extra={"error": exc.kind})
        print(json.dumps({"status": "failed", "error": exc.to_dict()}))
        return 1

    print(json.dumps(result.to_dict(), ensure_ascii=False))
    return 0 if result.status == "completed" else 1


if __name__ == "__main__":
    sys.exit(main())
