"""Tests for capture_pipeline.storage.readers module."""

from unittest.mock import AsyncMock

from capture_pipeline.storage.readers import (
    fetch_file_uri,
    read_file_handle,
    read_first_available,
    read_memory_mapped,
)


class TestReadStrategies:
    """Each strategy reads a real file and returns None when it cannot."""

    async def test_fetch_file_uri_reads_bytes(self, tmp_path):
        path = tmp_path / "a.caf"
        path.write_bytes(b"caf-bytes")
        assert await fetch_file_uri(path.as_uri()) == b"caf-bytes"

    async def test_fetch_accepts_plain_path(self, tmp_path):
        path = tmp_path / "a.caf"
        path.write_bytes(b"caf-bytes")
        assert await fetch_file_uri(str(path)) == b"caf-bytes"

    async def test_memory_mapped_reads_bytes(self, tmp_path):
        path = tmp_path / "a.m4a"
        path.write_bytes(b"m4a-bytes")
        assert await read_memory_mapped(str(path)) == b"m4a-bytes"

    async def test_memory_mapped_empty_file_returns_none(self, tmp_path):
        path = tmp_path / "empty.m4a"
        path.write_bytes(b"")
        assert await read_memory_mapped(str(path)) is None

    async def test_file_handle_reads_bytes(self, tmp_path):
        path = tmp_path / "a.m4a"
        path.write_bytes(b"handle")
        assert await read_file_handle(path.as_uri()) == b"handle"

    async def test_missing_file_returns_none(self, tmp_path):
        missing = str(tmp_path / "missing.caf")
        assert await fetch_file_uri(missing) is None
        assert await read_memory_mapped(missing) is None
        assert await read_file_handle(missing) is None


class TestReadFirstAvailable:
    """Tests for read_first_available() ordering."""

    async def test_returns_first_non_empty(self):
        first = AsyncMock(return_value=None)
        second = AsyncMock(return_value=b"")
        third = AsyncMock(return_value=b"data")
        fourth = AsyncMock(return_value=b"never")

        result = await read_first_available("file:///x.caf", [first, second, third, fourth])

        assert result == b"data"
        first.assert_awaited_once_with("file:///x.caf")
        fourth.assert_not_awaited()

    async def test_all_empty_returns_none(self):
        strategies = [AsyncMock(return_value=None), AsyncMock(return_value=b"")]
        assert await read_first_available("/x.caf", strategies) is None
