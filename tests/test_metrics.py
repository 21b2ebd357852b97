"""Tests for capture_pipeline.observability.metrics module."""

from __future__ import annotations

import json
import time
from dataclasses import asdict

import pytest

from capture_pipeline.observability.metrics import (
    RunMetrics,
    StageTimer,
    log_run_metrics,
)


def _make_run_metrics(**overrides) -> RunMetrics:
    """Create a RunMetrics with sensible defaults, applying any overrides."""
    defaults = {
        "run_id": "run-001",
        "owner_id": "user-1",
        "status": "completed",
        "final_state": "completed",
        "provider_name": "gemini-flash",
        "audio_size_bytes": 250_000,
        "transcript_chars": 120,
        "confidence": 0.9,
        "relocation_degraded": False,
        "processing_wall_time_seconds": 4.2,
        "relocate_duration_seconds": 0.1,
        "upload_duration_seconds": 0.8,
        "transcribe_duration_seconds": 3.3,
        "retry_count": 0,
        "error_stage": None,
        "error_kind": None,
        "error_message": None,
    }
    defaults.update(overrides)
    return RunMetrics(**defaults)


class TestRunMetrics:
    """Tests for RunMetrics dataclass."""

    def test_serializes_all_fields_to_dict(self):
        d = asdict(_make_run_metrics())

        assert d["run_id"] == "run-001"
        assert d["provider_name"] == "gemini-flash"
        assert d["audio_size_bytes"] == 250_000
        assert d["relocation_degraded"] is False
        assert d["transcribe_duration_seconds"] == 3.3
        assert d["error_stage"] is None

    def test_error_case_serializes_with_error_fields(self):
        d = asdict(
            _make_run_metrics(
                status="failed",
                final_state="failed",
                error_stage="transcribe",
                error_kind="rate_limit",
                error_message="Rate limited by Gemini",
                transcript_chars=0,
            )
        )

        assert d["status"] == "failed"
        assert d["error_stage"] == "transcribe"
        assert d["error_kind"] == "rate_limit"
        assert d["audio_size_bytes"] == 250_000


class TestLogRunMetrics:
    """Tests for log_run_metrics() function."""

    def test_output_is_valid_json_with_envelope_fields(self, capsys):
        log_run_metrics(_make_run_metrics())

        parsed = json.loads(capsys.readouterr().out.strip())

        assert "timestamp" in parsed
        assert parsed["severity"] == "INFO"
        assert parsed["metric_type"] == "run_completion"

    def test_output_contains_all_fields(self, capsys):
        metrics = _make_run_metrics()
        log_run_metrics(metrics)

        parsed = json.loads(capsys.readouterr().out.strip())

        for key in asdict(metrics):
            assert key in parsed, f"Missing key: {key}"


class TestStageTimer:
    """Tests for StageTimer context manager."""

    def test_records_duration_under_stage_name(self):
        timings: dict[str, float] = {}
        with StageTimer("upload", timings) as timer:
            time.sleep(0.01)

        assert timer.duration_seconds > 0.0
        assert timings == {"upload": timer.duration_seconds}

    def test_failure_recorded_under_failed_key(self):
        timings: dict[str, float] = {}
        with pytest.raises(ValueError, match="boom"):
            with StageTimer("relocate", timings):
                time.sleep(0.01)
                raise ValueError("boom")

        assert "relocate" not in timings
        assert timings["_relocate_failed"] > 0.0
