"""Tests for the capture-pipeline command-line entry point."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from capture_pipeline.asr.interface import TranscriptionResult
from capture_pipeline.main import main
from capture_pipeline.pipeline import PipelineRun, PipelineState, ProcessingError, ProcessingResult
from capture_pipeline.utils.errors import StorageConfigError


def _completed_result() -> ProcessingResult:
    run = PipelineRun(
        run_id="run-1",
        source_uri="/cache/a.m4a",
        owner_id="user-1",
        state=PipelineState.COMPLETED,
        durable_uri="/saved/recording_1.m4a",
        result=TranscriptionResult("hello", 0.9, True, "gemini-flash"),
    )
    return ProcessingResult(status="completed", run=run)


def _failed_result() -> ProcessingResult:
    error = ProcessingError(
        stage="upload",
        kind="network",
        retryable=True,
        message="Failed to put object",
        exception_type="NetworkError",
    )
    run = PipelineRun(
        run_id="run-2",
        source_uri="/cache/a.m4a",
        owner_id="user-1",
        state=PipelineState.FAILED,
        error=error,
    )
    return ProcessingResult(status="failed", run=run, error=error)


@pytest.fixture
def cli_env():
    """Patch the components main() builds so no real I/O happens."""
    with (
        patch("capture_pipeline.main.configure_logging") as mock_logging,
        patch("capture_pipeline.main.RemoteObjectStore") as mock_store_cls,
        patch("capture_pipeline.main.FileRelocator") as mock_relocator_cls,
        patch("capture_pipeline.main.TranscriptionService") as mock_service_cls,
        patch("capture_pipeline.main.RecordingPipeline") as mock_pipeline_cls,
    ):
        mock_service_cls.return_value.cleanup = AsyncMock()
        mock_pipeline = MagicMock()
        mock_pipeline.process = AsyncMock(return_value=_completed_result())
        mock_pipeline_cls.return_value = mock_pipeline
        yield {
            "logging": mock_logging,
            "store_cls": mock_store_cls,
            "relocator_cls": mock_relocator_cls,
            "service_cls": mock_service_cls,
            "pipeline": mock_pipeline,
        }


class TestMain:
    """Tests for main()."""

    def test_completed_run_prints_summary_and_exits_zero(self, cli_env, capsys) -> None:
        exit_code = main(["/cache/a.m4a", "--owner", "user-1", "--name", "memory"])

        assert exit_code == 0
        summary = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert summary["status"] == "completed"
        assert summary["transcript"] == "hello"
        cli_env["pipeline"].process.assert_awaited_once_with(
            "/cache/a.m4a",
            "user-1",
            preferred_name="memory",
            options={"language": None},
        )
        cli_env["service_cls"].return_value.cleanup.assert_awaited_once()

    def test_failed_run_exits_one(self, cli_env, capsys) -> None:
        cli_env["pipeline"].process.return_value = _failed_result()

        exit_code = main(["/cache/a.m4a", "--owner", "user-1"])

        assert exit_code == 1
        summary = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert summary["error"]["stage"] == "upload"

    def test_provider_and_language_arguments(self, cli_env) -> None:
        main(["/a.caf", "--owner", "u", "--provider", "on-device", "--language", "zh-CN"])

        kwargs = cli_env["service_cls"].call_args.kwargs
        assert kwargs["provider_type"] == "on-device"
        assert kwargs["provider_options"]["gemini"]["object_store"] is (
            cli_env["store_cls"].return_value
        )
        assert cli_env["pipeline"].process.await_args.kwargs["options"] == {
            "language": "zh-CN"
        }

    def test_owner_and_provider_from_env(self, cli_env, monkeypatch) -> None:
        monkeypatch.setenv("OWNER_ID", "env-owner")
        monkeypatch.setenv("TRANSCRIPTION_PROVIDER", "on-device")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")

        main(["/a.caf"])

        assert cli_env["pipeline"].process.await_args.args[1] == "env-owner"
        assert cli_env["service_cls"].call_args.kwargs["provider_type"] == "on-device"
        cli_env["logging"].assert_called_once_with("DEBUG")

    def test_missing_owner_is_usage_error(self, cli_env, monkeypatch) -> None:
        monkeypatch.delenv("OWNER_ID", raising=False)

        with pytest.raises(SystemExit) as exc_info:
            main(["/a.caf"])

        assert exc_info.value.code == 2

    def test_storage_config_error_exits_one(self, cli_env, capsys) -> None:
        cli_env["store_cls"].side_effect = StorageConfigError(
            "STORAGE_ENDPOINT is required", setting="STORAGE_ENDPOINT"
        )

        exit_code = main(["/a.caf", "--owner", "u"])

        assert exit_code == 1
        summary = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert summary["error"]["kind"] == "configuration"
