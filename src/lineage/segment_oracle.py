"""Segment existence oracle contracts.

This module defines how the lineage protocol asks which segments a table
has registered and which of them are placed and servable, plus an
in-process registry used for embedding and tests.
"""

from __future__ import annotations

import threading
from typing import Iterable, Protocol


class SegmentExistenceOracle(Protocol):
    """Read-only view of segment registration and placement."""

    def registered_segments(self, table_name: str) -> frozenset[str]:
        """Return every segment registered for the table."""

    def segment_is_available(self, table_name: str, segment_name: str) -> bool:
        """Return whether the segment is registered and placed for serving."""


class InMemorySegmentRegistry:
    """Thread-safe segment registry.

    Implements both the existence oracle and the deletion trigger, so
    deletions queued by the lineage manager unregister segments here.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._registered: dict[str, set[str]] = {}
        self._placed: dict[str, set[str]] = {}

    def add_segments(
        self,
        table_name: str,
        segment_names: Iterable[str],
        placed: bool = True,
    ) -> None:
        """Register segments, optionally without placing them yet."""
        with self._lock:
            registered = self._registered.setdefault(table_name, set())
            placed_segments = self._placed.setdefault(table_name, set())
            for segment_name in segment_names:
                registered.add(segment_name)
                if placed:
                    placed_segments.add(segment_name)

    def place_segment(self, table_name: str, segment_name: str) -> None:
        """Mark a registered segment as servable."""
        with self._lock:
            if segment_name not in self._registered.get(table_name, set()):
                raise KeyError(f"Segment '{segment_name}' is not registered for '{table_name}'.")
            self._placed.setdefault(table_name, set()).add(segment_name)

    def registered_segments(self, table_name: str) -> frozenset[str]:
        with self._lock:
            return frozenset(self._registered.get(table_name, set()))

    def segment_is_available(self, table_name: str, segment_name: str) -> bool:
        with self._lock:
            return segment_name in self._placed.get(table_name, set())

    def delete_segment(self, table_name: str, segment_name: str) -> None:
        with self._lock:
            self._registered.get(table_name, set()).discard(segment_name)
            self._placed.get(table_name, set()).discard(segment_name)
