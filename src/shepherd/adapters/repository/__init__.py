"""Repository side adapters: document files, the file-backed source and snapshots."""

from __future__ import annotations

from .documents import CODECS, FileDocumentStore, format_for_path
from .snapshots import JsonSnapshotStore
from .source import RepoSource

__all__ = [
    "CODECS",
    "FileDocumentStore",
    "JsonSnapshotStore",
    "RepoSource",
    "format_for_path",
]
