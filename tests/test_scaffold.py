"""Tests for project scaffold: imports, logger, URIs and custom exceptions."""

import json
import logging
import sys
from pathlib import Path

import pytest

from capture_pipeline.observability.logger import (
    StructuredJsonFormatter,
    configure_logging,
)
from capture_pipeline.utils.errors import (
    NetworkError,
    ObjectExistsError,
    PermissionDeniedError,
    PipelineError,
    ProviderConfigError,
    RateLimitError,
    RetryExhaustedError,
    StorageConfigError,
    TransientIOError,
    UnsupportedSourceError,
)
from capture_pipeline.utils.uris import (
    extension_of,
    is_local_path,
    path_to_uri,
    uri_to_path,
)


class TestModuleImports:
    """Verify all package modules are importable."""

    def test_subpackage_imports(self) -> None:
        import capture_pipeline.asr
        import capture_pipeline.main
        import capture_pipeline.observability.logger
        import capture_pipeline.pipeline
        import capture_pipeline.service
        import capture_pipeline.storage.object_store
        import capture_pipeline.utils.retry

        assert capture_pipeline.asr is not None
        assert capture_pipeline.pipeline is not None


class TestCustomExceptions:
    """Verify custom exception hierarchy and failure surface."""

    def test_all_exceptions_inherit_from_pipeline_error(self) -> None:
        for cls in [
            TransientIOError,
            RetryExhaustedError,
            PermissionDeniedError,
            NetworkError,
            RateLimitError,
            UnsupportedSourceError,
            ObjectExistsError,
            ProviderConfigError,
            StorageConfigError,
        ]:
            assert issubclass(cls, PipelineError), (
                f"{cls.__name__} must inherit from PipelineError"
            )

    def test_pipeline_error_str_without_stage(self) -> None:
        assert str(PipelineError("something failed")) == "something failed"

    def test_pipeline_error_str_with_stage(self) -> None:
        error = PipelineError("something failed", stage="upload")
        assert str(error) == "[stage=upload] something failed"

    @pytest.mark.parametrize(
        ("error", "kind", "retryable"),
        [
            (TransientIOError("x"), "transient_io", True),
            (PermissionDeniedError("x"), "permission", False),
            (NetworkError("x"), "network", True),
            (RateLimitError("x"), "rate_limit", True),
            (UnsupportedSourceError("x"), "unsupported_source", False),
            (ObjectExistsError("x"), "object_exists", False),
            (ProviderConfigError("x"), "configuration", False),
        ],
    )
    def test_kind_and_retryable(self, error, kind, retryable) -> None:
        assert error.kind == kind
        assert error.retryable is retryable

    def test_to_dict(self) -> None:
        error = RateLimitError("slow down", stage="transcribe")
        assert error.to_dict() == {
            "stage": "transcribe",
            "kind": "rate_limit",
            "retryable": True,
            "message": "slow down",
        }
        assert error.status_code == 429

    def test_context_attributes(self) -> None:
        assert TransientIOError("x", path="/a.caf").path == "/a.caf"
        assert ObjectExistsError("x", key="u/1.caf").key == "u/1.caf"
        assert ProviderConfigError("x", provider="gemini").provider == "gemini"
        assert RetryExhaustedError("x", attempts=5).attempts == 5


class TestUris:
    """Tests for URI classification helpers."""

    def test_local_path_detection(self) -> None:
        assert is_local_path("/var/cache/a.caf")
        assert is_local_path("file:///var/cache/a.caf")
        assert not is_local_path("https://example.com/a.caf")
        assert not is_local_path("")

    def test_uri_to_path(self) -> None:
        assert uri_to_path("file:///tmp/a%20b.m4a") == Path("/tmp/a b.m4a")
        assert uri_to_path("/tmp/a.m4a") == Path("/tmp/a.m4a")

    def test_uri_to_path_rejects_remote(self) -> None:
        with pytest.raises(UnsupportedSourceError) as exc_info:
            uri_to_path("s3://bucket/a.m4a", stage="upload")
        assert exc_info.value.stage == "upload"

    def test_path_to_uri(self, tmp_path) -> None:
        assert path_to_uri(tmp_path / "a.caf").startswith("file://")

    def test_extension_of(self) -> None:
        assert extension_of("/tmp/a.M4A") == "m4a"
        assert extension_of("https://h/x/1.caf?sig=abc") == "caf"
        assert extension_of("/tmp/recording") == ""


@pytest.fixture
def json_logging(capsys: pytest.CaptureFixture[str]):
    """Clear JSON root handlers for one test and restore the root after.

    Tests call configure_logging() in their body so the handler binds to the
    call-phase stdout that capsys reads.
    """
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    # a JSON handler left by another test would still point at its stdout
    root.handlers[:] = [
        h for h in saved_handlers if not isinstance(h.formatter, StructuredJsonFormatter)
    ]
    yield capsys
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


class TestStructuredLogger:
    """Verify structured JSON logger output format."""

    def test_logger_output_is_valid_json(self, json_logging) -> None:
        configure_logging("INFO")
        logger = logging.getLogger("test.json_output")
        logger.info("test message")

        parsed = json.loads(json_logging.readouterr().out.strip())

        assert parsed["message"] == "test message"
        assert parsed["severity"] == "INFO"
        assert parsed["logger"] == "test.json_output"

    def test_logger_includes_pipeline_fields(self, json_logging) -> None:
        configure_logging("INFO")
        logger = logging.getLogger("test.extra")
        logger.info("uploading", extra={"run_id": "r-42", "stage": "upload"})

        parsed = json.loads(json_logging.readouterr().out.strip())
        assert parsed["run_id"] == "r-42"
        assert parsed["stage"] == "upload"

    def test_logger_timestamp_format(self, json_logging) -> None:
        configure_logging("INFO")
        logger = logging.getLogger("test.timestamp")
        logger.warning("check format")

        timestamp = json.loads(json_logging.readouterr().out.strip())["timestamp"]
        assert timestamp.endswith("Z")
        assert "T" in timestamp

    def test_exception_included(self) -> None:
        formatter = StructuredJsonFormatter()
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord(
                "t", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )
        parsed = json.loads(formatter.format(record))
        assert parsed["exception"] == "boom"
        assert parsed["severity"] == "ERROR"

    def test_configure_logging_is_idempotent(self) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            configure_logging("debug")
            configure_logging("debug")
            json_handlers = [
                h for h in root.handlers if isinstance(h.formatter, StructuredJsonFormatter)
            ]
            assert len(json_handlers) == 1
            assert root.level == logging.DEBUG
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
