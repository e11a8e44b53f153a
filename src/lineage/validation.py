"""Precondition checks for segment replacement requests.

Every check raises a validation error with the table and the offending
segments so the caller can fix the request.
"""

from __future__ import annotations

from typing import AbstractSet, Sequence

from core.errors import (
    DuplicateSegmentsTo,
    InvalidReplaceRequest,
    SegmentsFromNotAvailable,
    UnknownLineageEntry,
)
from core.types import LineageEntry, SegmentLineage


def validate_replace_request(
    table_name: str,
    segments_from: Sequence[str],
    segments_to: Sequence[str],
) -> None:
    """Check the shape of a replacement request before any lookup.

    Raises:
        InvalidReplaceRequest: If segments_to is empty, a list repeats a
            name, or a segment appears on both sides.
    """
    if not segments_to:
        raise InvalidReplaceRequest(
            f"Cannot replace segments of '{table_name}': segments_to is empty. "
            "Name at least one segment to produce."
        )
    for label, segments in (("segments_from", segments_from), ("segments_to", segments_to)):
        repeated = _repeated_names(segments)
        if repeated:
            raise InvalidReplaceRequest(
                f"Cannot replace segments of '{table_name}': {label} repeats {repeated}. "
                "List each segment once."
            )
    overlap = sorted(set(segments_from) & set(segments_to))
    if overlap:
        raise InvalidReplaceRequest(
            f"Cannot replace segments of '{table_name}': {overlap} appear in both "
            "segments_from and segments_to. Produce new segment names."
        )


def check_segments_to_unclaimed(
    table_name: str,
    lineage: SegmentLineage,
    segments_to: Sequence[str],
    registered: AbstractSet[str],
) -> None:
    """Reject targets that another replacement produces or the table has.

    Raises:
        DuplicateSegmentsTo: If a target is already claimed or registered.
    """
    requested = set(segments_to)
    for entry in lineage.entries_in_state("IN_PROGRESS", "COMPLETED"):
        claimed = sorted(requested.intersection(entry.segments_to))
        if claimed:
            raise DuplicateSegmentsTo(
                f"Segments {claimed} of '{table_name}' are already produced by lineage "
                f"entry '{entry.entry_id}' ({entry.state}). Choose new segment names."
            )
    existing = sorted(requested & registered)
    if existing:
        raise DuplicateSegmentsTo(
            f"Segments {existing} already exist in '{table_name}'. "
            "Choose segment names that are not registered."
        )


def check_segments_from_served(
    table_name: str,
    segments_from: Sequence[str],
    served: AbstractSet[str],
) -> None:
    """Require every source segment to be in the served view.

    Raises:
        SegmentsFromNotAvailable: If a source segment is not served.
    """
    missing = [segment for segment in segments_from if segment not in served]
    if missing:
        raise SegmentsFromNotAvailable(
            f"Segments {missing} are not served by '{table_name}'. "
            "Replace only segments the table currently serves."
        )


def lookup_entry(table_name: str, lineage: SegmentLineage, entry_id: str) -> LineageEntry:
    """Return the entry with the given id.

    Raises:
        UnknownLineageEntry: If the table has no such entry.
    """
    entry = lineage.get_entry(entry_id)
    if entry is None:
        raise UnknownLineageEntry(
            f"Lineage entry '{entry_id}' does not exist for '{table_name}'. "
            "Use the id returned by start_replace_segments."
        )
    return entry


def _repeated_names(segments: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    repeated: list[str] = []
    for segment in segments:
        if segment in seen and segment not in repeated:
            repeated.append(segment)
        seen.add(segment)
    return repeated
