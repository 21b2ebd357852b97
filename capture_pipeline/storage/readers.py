"""Byte-read strategies for recordings that may still be flushing.

Different source locations are readable by different primitives, so the
uploader tries an ordered list of strategies and keeps the first non-empty
buffer. Each strategy returns None instead of raising when it cannot read.
"""

from __future__ import annotations

import asyncio
import logging
import mmap
import urllib.request
from collections.abc import Awaitable, Callable, Sequence

from capture_pipeline.utils.uris import is_file_uri, path_to_uri, uri_to_path

logger = logging.getLogger(__name__)

ReadStrategy = Callable[[str], Awaitable[bytes | None]]


def _fetch(uri: str) -> bytes:
    url = uri if is_file_uri(uri) else path_to_uri(uri_to_path(uri))
    with urllib.request.urlopen(url) as response:
        return response.read()


def _read_mapped(uri: str) -> bytes:
    with open(uri_to_path(uri), "rb") as f:
        with mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ) as mapped:
            return mapped[:]


def _read_handle(uri: str) -> bytes:
    with open(uri_to_path(uri), "rb") as f:
        return f.read()


async def fetch_file_uri(uri: str) -> bytes | None:
    """Fetch the file:// URI the way a URL would be fetched."""
    try:
        return await asyncio.to_thread(_fetch, uri)
    except (OSError, ValueError) as exc:
        logger.debug("fetch_file_uri failed for %s: %s", uri, exc)
        return None


async def read_memory_mapped(uri: str) -> bytes | None:
    """Read the whole file through a read-only memory map."""
    try:
        return await asyncio.to_thread(_read_mapped, uri)
    except (OSError, ValueError) as exc:
        # mmap refuses empty files with ValueError
        logger.debug("read_memory_mapped failed for %s: %s", uri, exc)
        return None


async def read_file_handle(uri: str) -> bytes | None:
    """Read the file through a plain binary file handle."""
    try:
        return await asyncio.to_thread(_read_handle, uri)
    except (OSError, ValueError) as exc:
        logger.debug("read_file_handle failed for %s: %s", uri, exc)
        return None


DEFAULT_READ_STRATEGIES: tuple[ReadStrategy, ...] = (
    fetch_file_uri,
    read_memory_mapped,
    read_file_handle,
)


async def read_first_available(
    uri: str, strategies: Sequence[ReadStrategy] = DEFAULT_READ_STRATEGIES
) -> bytes | None:
    """Try each strategy in order and return the first non-empty buffer.

    Returns:
        The file contents, or None if every strategy came back empty.
    """
    for strategy in strategies:
        data = await strategy(uri)
        if data:
            logger.debug(
                "%s read %d bytes from %s",
                getattr(strategy, "__name__", "strategy"),
                len(data),
                uri,
            )
            return data
        logger.debug(
            "%s returned nothing, trying next",
            getattr(strategy, "__name__", "strategy"),
        )
    return None
