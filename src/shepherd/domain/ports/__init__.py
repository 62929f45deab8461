"""Domain port definitions for adapters."""

from __future__ import annotations

from .history import GitHistory
from .snapshots import SnapshotStore
from .sources import DocumentLocator, SourceListing, StateSource

__all__ = [
    "DocumentLocator",
    "GitHistory",
    "SnapshotStore",
    "SourceListing",
    "StateSource",
]
