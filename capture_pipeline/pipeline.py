"""Recording pipeline: relocate -> upload -> transcribe.

Runs once a recording is finished. Tracks each run through the states
Recorded -> Relocating -> Relocated -> Uploading -> Uploaded ->
Transcribing -> Completed | Failed(stage). A failed run remembers the stage
that failed so resume() can retry just that stage instead of starting over.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Literal

from capture_pipeline.asr.interface import TranscriptionResult
from capture_pipeline.observability.metrics import RunMetrics, StageTimer, log_run_metrics
from capture_pipeline.service import OptionsInput, TranscriptionService
from capture_pipeline.storage.file_relocator import FileRelocator
from capture_pipeline.storage.object_store import (
    RemoteAudioReference,
    RemoteObjectStore,
    UploadResult,
)
from capture_pipeline.utils.errors import PipelineError, Stage
from capture_pipeline.utils.uris import uri_to_path

logger = logging.getLogger(__name__)

STAGES: tuple[Stage, ...] = ("relocate", "upload", "transcribe")


class PipelineState(str, Enum):
    RECORDED = "recorded"
    RELOCATING = "relocating"
    RELOCATED = "relocated"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    TRANSCRIBING = "transcribing"
    COMPLETED = "completed"
    FAILED = "failed"


# stage -> (in-progress state, done state)
_STAGE_STATES: dict[str, tuple[PipelineState, PipelineState]] = {
    "relocate": (PipelineState.RELOCATING, PipelineState.RELOCATED),
    "upload": (PipelineState.UPLOADING, PipelineState.UPLOADED),
    "transcribe": (PipelineState.TRANSCRIBING, PipelineState.COMPLETED),
}
_ACTIVE_STAGE: dict[PipelineState, Stage] = {
    PipelineState.RELOCATING: "relocate",
    PipelineState.UPLOADING: "upload",
    PipelineState.TRANSCRIBING: "transcribe",
}
_TRANSITIONS: dict[PipelineState, set[PipelineState]] = {
    PipelineState.RECORDED: {PipelineState.RELOCATING},
    PipelineState.RELOCATING: {PipelineState.RELOCATED, PipelineState.FAILED},
    PipelineState.RELOCATED: {PipelineState.UPLOADING},
    PipelineState.UPLOADING: {PipelineState.UPLOADED, PipelineState.FAILED},
    PipelineState.UPLOADED: {PipelineState.TRANSCRIBING},
    PipelineState.TRANSCRIBING: {PipelineState.COMPLETED, PipelineState.FAILED},
    PipelineState.COMPLETED: set(),
    PipelineState.FAILED: {
        PipelineState.RELOCATING,
        PipelineState.UPLOADING,
        PipelineState.TRANSCRIBING,
    },
}


class InvalidTransitionError(ValueError):
    """Raised when a run is moved to a state it cannot reach."""


@dataclass
class ProcessingError:
    """Details about a stage failure."""

    stage: Stage
    kind: str
    retryable: bool
    message: str
    exception_type: str

    @classmethod
    def from_exception(cls, stage: Stage, exc: Exception) -> ProcessingError:
        if isinstance(exc, PipelineError):
            return cls(
                stage=exc.stage or stage,
                kind=exc.kind,
                retryable=exc.retryable,
                message=exc.args[0] if exc.args else str(exc),
                exception_type=type(exc).__name__,
            )
        return cls(
            stage=stage,
            kind="unexpected",
            retryable=False,
            message=str(exc),
            exception_type=type(exc).__name__,
        )


class _StageFailure(Exception):
    def __init__(self, error: ProcessingError) -> None:
        self.error = error
        super().__init__(error.message)


@dataclass
class PipelineRun:
    """Mutable record of one recording moving through the pipeline."""

    run_id: str
    source_uri: str
    owner_id: str
    preferred_name: str | None = None
    state: PipelineState = PipelineState.RECORDED
    durable_uri: str | None = None
    degraded: bool = False
    upload: UploadResult | None = None
    result: TranscriptionResult | None = None
    error: ProcessingError | None = None
    retry_count: int = 0
    stage_timings: dict[str, float] = field(default_factory=dict)

    @property
    def reference(self) -> RemoteAudioReference | None:
        return self.upload.reference if self.upload else None

    @property
    def next_stage(self) -> Stage | None:
        """Stage the next process/resume call starts at; None when done."""
        if self.state == PipelineState.RECORDED:
            return "relocate"
        if self.state == PipelineState.RELOCATED:
            return "upload"
        if self.state == PipelineState.UPLOADED:
            return "transcribe"
        if self.state == PipelineState.FAILED and self.error is not None:
            return self.error.stage
        if self.state in _ACTIVE_STAGE:
            raise InvalidTransitionError(
                f"Run {self.run_id} is already {self.state.value}"
            )
        return None

    def transition(self, new_state: PipelineState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(
                f"Cannot move run {self.run_id} from {self.state.value} "
                f"to {new_state.value}"
            )
        if self.state == PipelineState.FAILED:
            failed_stage = self.error.stage if self.error else None
            if _ACTIVE_STAGE.get(new_state) != failed_stage:
                raise InvalidTransitionError(
                    f"Run {self.run_id} failed at {failed_stage}; "
                    f"cannot resume at {new_state.value}"
                )
        self.state = new_state


@dataclass
class ProcessingResult:
    """Outcome of one process() or resume() call."""

    status: Literal["completed", "failed"]
    run: PipelineRun
    error: ProcessingError | None = None

    @property
    def result(self) -> TranscriptionResult | None:
        return self.run.result

    def to_dict(self) -> dict[str, Any]:
        result = self.run.result
        return {
            "run_id": self.run.run_id,
            "status": self.status,
            "state": self.run.state.value,
            "durable_uri": self.run.durable_uri,
            "degraded": self.run.degraded,
            "remote_url": self.run.upload.url if self.run.upload else None,
            "transcript": result.transcript if result else None,
            "confidence": result.confidence if result else None,
            "provider_name": result.provider_name if result else None,
            "error": asdict(self.error) if self.error else None,
        }


class RecordingPipeline:
    """Sequences relocation, upload and transcription for recordings.

    Args:
        relocator: Moves raw recordings into durable storage.
        object_store: Uploads durable recordings.
        transcription_service: Turns uploaded recordings into text.
    """

    def __init__(
        self,
        relocator: FileRelocator,
        object_store: RemoteObjectStore,
        transcription_service: TranscriptionService,
    ) -> None:
        self._relocator = relocator
        self._object_store = object_store
        self._service = transcription_service

    async def process(
        self,
        source_uri: str,
        owner_id: str,
        preferred_name: str | None = None,
        options: OptionsInput = None,
        run_id: str | None = None,
    ) -> ProcessingResult:
        """Run a freshly recorded file through every stage.

        Args:
            source_uri: Path or file:// URI handed over by the recorder.
            owner_id: Owner of the recording (object key prefix).
            preferred_name: Optional durable filename prefix.
            options: Transcription option overrides.
            run_id: Optional identifier; a random one is generated otherwise.

        Returns:
            ProcessingResult; failures are reported, not raised.
        """
        run = PipelineRun(
            run_id=run_id or uuid.uuid4().hex,
            source_uri=source_uri,
            owner_id=owner_id,
            preferred_name=preferred_name,
        )
        return await self.resume(run, options)

    async def resume(
        self, run: PipelineRun, options: OptionsInput = None
    ) -> ProcessingResult:
        """Continue a run from its next stage, or retry its failed stage.

        Cancelling the awaiting task marks the run failed with kind
        "cancelled" and re-raises CancelledError.
        """
        start_stage = run.next_stage
        if start_stage is None:
            return ProcessingResult(status="completed", run=run)

        wall_start = time.monotonic()

        try:
            for stage in STAGES[STAGES.index(start_stage) :]:
                await self._run_stage(run, stage, options)
        except asyncio.CancelledError:
            stage = _ACTIVE_STAGE.get(run.state, start_stage)
            self._fail(
                run,
                ProcessingError(
                    stage=stage,
                    kind="cancelled",
                    retryable=True,
                    message="Run cancelled",
                    exception_type="CancelledError",
                ),
            )
            raise
        except _StageFailure as failure:
            self._fail(run, failure.error)

        self._log_metrics(run, time.monotonic() - wall_start)

        if run.error is not None:
            return ProcessingResult(status="failed", run=run, error=run.error)

        logger.info(
            "Run %s completed",
            run.run_id,
            extra={"run_id": run.run_id, "stage": "transcribe"},
        )
        return ProcessingResult(status="completed", run=run)

    async def _run_stage(
        self, run: PipelineRun, stage: Stage, options: OptionsInput
    ) -> None:
        in_progress, done = _STAGE_STATES[stage]
        run.transition(in_progress)
        # the failed stage is known only until the run re-enters it
        run.error = None

        try:
            with StageTimer(stage, run.stage_timings):
                if stage == "relocate":
                    await self._relocate(run)
                elif stage == "upload":
                    await self._upload(run)
                else:
                    await self._transcribe(run, options)
        except _StageFailure:
            raise
        except PipelineError as exc:
            run.retry_count += getattr(exc, "_retry_count", 0)
            raise _StageFailure(ProcessingError.from_exception(stage, exc)) from exc
        except Exception as exc:
            logger.error(
                "Unexpected error in stage '%s' for run %s",
                stage,
                run.run_id,
                exc_info=True,
                extra={"run_id": run.run_id, "stage": stage},
            )
            raise _StageFailure(ProcessingError.from_exception(stage, exc)) from exc

        run.transition(done)

    async def _relocate(self, run: PipelineRun) -> None:
        durable_uri = await self._relocator.relocate(run.source_uri, run.preferred_name)
        run.durable_uri = durable_uri
        run.degraded = durable_uri == run.source_uri
        if run.degraded:
            logger.warning(
                "Run %s continues with non-durable recording %s",
                run.run_id,
                durable_uri,
                extra={"run_id": run.run_id, "stage": "relocate"},
            )

    async def _upload(self, run: PipelineRun) -> None:
        upload = await self._object_store.upload(
            run.durable_uri or run.source_uri, run.owner_id
        )
        run.upload = upload
        if not upload.success:
            raise _StageFailure(
                ProcessingError(
                    stage="upload",
                    kind=upload.kind or "unknown",
                    retryable=upload.retryable,
                    message=upload.error or "Upload failed",
                    exception_type="UploadResult",
                )
            )

    async def _transcribe(self, run: PipelineRun, options: OptionsInput) -> None:
        audio_uri = run.upload.url if run.upload and run.upload.url else run.durable_uri
        run.result = await self._service.transcribe(
            audio_uri or run.source_uri, options
        )

    def _fail(self, run: PipelineRun, error: ProcessingError) -> None:
        run.error = error
        run.transition(PipelineState.FAILED)
        logger.error(
            "Pipeline failed at stage '%s' for run %s: %s",
            error.stage,
            run.run_id,
            error.message,
            extra={"run_id": run.run_id, "stage": error.stage, "error": error.kind},
        )

    async def discard(self, run: PipelineRun) -> None:
        """Remove a run's durable file and uploaded object.

        Used when the owning memory is deleted; cancel the processing task
        first if it is still running.
        """
        if run.durable_uri and not run.degraded:
            try:
                uri_to_path(run.durable_uri).unlink(missing_ok=True)
            except (OSError, PipelineError) as exc:
                logger.warning("Could not delete durable file %s: %s", run.durable_uri, exc)
        if run.reference is not None:
            await self._object_store.delete(run.reference)
        logger.info("Discarded run %s", run.run_id, extra={"run_id": run.run_id})

    def _log_metrics(self, run: PipelineRun, wall_time: float) -> None:
        result = run.result
        timings = run.stage_timings
        log_run_metrics(
            RunMetrics(
                run_id=run.run_id,
                owner_id=run.owner_id,
                status="failed" if run.error else "completed",
                final_state=run.state.value,
                provider_name=(
                    result.provider_name if result else self._service.get_provider_name()
                ),
                audio_size_bytes=run.upload.size_bytes if run.upload else 0,
                transcript_chars=len(result.transcript) if result else 0,
                confidence=result.confidence if result else 0.0,
                relocation_degraded=run.degraded,
                processing_wall_time_seconds=wall_time,
                relocate_duration_seconds=timings.get(
                    "relocate", timings.get("_relocate_failed", 0.0)
                ),
                upload_duration_seconds=timings.get(
                    "upload", timings.get("_upload_failed", 0.0)
                ),
                transcribe_duration_seconds=timings.get(
                    "transcribe", timings.get("_transcribe_failed", 0.0)
                ),
                retry_count=run.retry_count,
                error_stage=run.error.stage if run.error else None,
                error_kind=run.error.kind if run.error else None,
                error_message=run.error.message if run.error else None,
            )
        )
