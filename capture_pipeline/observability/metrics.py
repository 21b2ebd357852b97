"""Per-run metrics collection and reporting.

Provides the RunMetrics dataclass, a StageTimer context manager for
measuring pipeline stage durations, and log_run_metrics() for emitting
metrics as one structured JSON line to stdout.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from typing import Any


@dataclass
class RunMetrics:
    """All metrics collected for one capture-to-transcript run."""

    run_id: str
    owner_id: str
    status: str
    final_state: str
    provider_name: str
    audio_size_bytes: int
    transcript_chars: int
    confidence: float
    relocation_degraded: bool
    processing_wall_time_seconds: float
    relocate_duration_seconds: float = 0.0
    upload_duration_seconds: float = 0.0
    transcribe_duration_seconds: float = 0.0
    retry_count: int = 0
    error_stage: str | None = None
    error_kind: str | None = None
    error_message: str | None = None


class StageTimer:
    """Context manager that records the wall-clock duration of a stage.

    The duration is stored in `timings` under the stage name; a stage that
    raises is stored under `_{stage}_failed` instead.

    Usage:
        timings: dict[str, float] = {}
        with StageTimer("upload", timings):
            await store.upload(...)
    """

    def __init__(self, stage_name: str, timings: dict[str, float]) -> None:
        self.stage_name = stage_name
        self.duration_seconds: float = 0.0
        self._timings = timings
        self._start: float = 0.0

    def __enter__(self) -> StageTimer:
        self._start = time.monotonic()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.duration_seconds = time.monotonic() - self._start
        if exc_type is not None:
            self._timings[f"_{self.stage_name}_failed"] = self.duration_seconds
        else:
            self._timings[self.stage_name] = self.duration_seconds


def log_run_metrics(metrics: RunMetrics) -> None:
    """Emit run metrics as a single structured JSON line to stdout.

    Args:
        metrics: Populated RunMetrics dataclass.
    """
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "run_completion",
        **asdict(metrics),
    }
    print(json.dumps(entry, ensure_ascii=False))
