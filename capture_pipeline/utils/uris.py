"""Helpers for telling local, remote and unsupported audio URIs apart."""

from __future__ import annotations

import os
from pathlib import Path
from urllib.parse import urlparse
from urllib.request import url2pathname

from capture_pipeline.utils.errors import Stage, UnsupportedSourceError


def is_file_uri(uri: str) -> bool:
    return uri.startswith("file://")


def is_http_url(uri: str) -> bool:
    return uri.startswith(("http://", "https://"))


def is_local_path(uri: str) -> bool:
    """True for file:// URIs and scheme-less filesystem paths."""
    if is_file_uri(uri):
        return True
    return bool(uri) and "://" not in uri


def uri_to_path(uri: str, stage: Stage | None = None) -> Path:
    """Resolve a file:// URI or plain path to a filesystem Path.

    Raises:
        UnsupportedSourceError: If the URI is empty or not local.
    """
    if not uri:
        raise UnsupportedSourceError("No source URI provided", stage=stage, uri=uri)
    if is_file_uri(uri):
        return Path(url2pathname(urlparse(uri).path))
    if is_local_path(uri):
        return Path(uri)
    raise UnsupportedSourceError(
        f"Unsupported URI scheme: {uri[:30]}", stage=stage, uri=uri
    )


def path_to_uri(path: Path) -> str:
    return path.resolve().as_uri()


def extension_of(uri: str) -> str:
    """Return the lower-case extension of a path or URL, without the dot."""
    path = urlparse(uri).path if "://" in uri else uri
    _, ext = os.path.splitext(path)
    return ext.lstrip(".").lower()
