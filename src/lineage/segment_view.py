"""Views derived from a table lineage.

Nothing here is persisted: the served segment set, replacement conflicts
and refresh generations are recomputed from the lineage on every call so
they cannot drift from the record.
"""

from __future__ import annotations

from typing import AbstractSet, Sequence

from core.types import LineageEntry, SegmentLineage


def compute_served_segments(
    registered: AbstractSet[str],
    lineage: SegmentLineage,
) -> frozenset[str]:
    """Return the segments queries should currently see.

    Sources of completed replacements are retired. Targets of replacements
    that are still running or were reverted stay hidden unless a completed
    replacement later produced a segment with the same name.

    Args:
        registered: Segments registered for the table.
        lineage: Table lineage.

    Returns:
        Served segment names.
    """
    retired: set[str] = set()
    published: set[str] = set()
    unpublished: set[str] = set()
    for entry in lineage.entries:
        if entry.state == "COMPLETED":
            retired.update(entry.segments_from)
            published.update(entry.segments_to)
        else:
            unpublished.update(entry.segments_to)
    return frozenset(registered - retired - (unpublished - published))


def sources_overlap(left: Sequence[str], right: Sequence[str]) -> bool:
    """Return whether two source lists claim the same segments.

    Two empty lists overlap, so repeated full refreshes are serialized.
    """
    if not left and not right:
        return True
    return not set(left).isdisjoint(right)


def find_conflicting_entries(
    lineage: SegmentLineage,
    segments_from: Sequence[str],
) -> tuple[LineageEntry, ...]:
    """Return in-progress entries competing for the same source segments."""
    return tuple(
        entry
        for entry in lineage.entries_in_state("IN_PROGRESS")
        if sources_overlap(entry.segments_from, segments_from)
    )


def find_orphaned_by_completion(
    lineage: SegmentLineage,
    completed: LineageEntry,
) -> tuple[LineageEntry, ...]:
    """Return in-progress entries whose sources a completion just retired.

    A completion with no sources consumes nothing, so it orphans nothing.
    """
    consumed = set(completed.segments_from)
    return tuple(
        entry
        for entry in lineage.entries_in_state("IN_PROGRESS")
        if entry.entry_id != completed.entry_id and not consumed.isdisjoint(entry.segments_from)
    )


def find_surplus_generations(
    lineage: SegmentLineage,
    registered: AbstractSet[str],
    max_live_generations: int,
) -> tuple[str, ...]:
    """Return registered refresh segments beyond the retention depth.

    Generations are walked newest first. Each completed entry contributes
    its targets, then its sources, so full loads with no sources still
    form a chain of generations. The newest generation is the served one.
    Together with the generation being uploaded, at most
    ``max_live_generations`` generations are kept on disk.

    Args:
        lineage: Table lineage before the new entry is appended.
        registered: Segments registered for the table.
        max_live_generations: Generations allowed to coexist on disk.

    Returns:
        Segment names of the oldest surplus generations, oldest last.
    """
    generations: list[tuple[str, ...]] = []
    claimed: set[str] = set()
    for entry in reversed(lineage.entries_in_state("COMPLETED")):
        for segments in (entry.segments_to, entry.segments_from):
            still_present = tuple(
                segment
                for segment in segments
                if segment in registered and segment not in claimed
            )
            if still_present:
                generations.append(still_present)
                claimed.update(still_present)
    # one slot belongs to the generation being uploaded
    retained = max(max_live_generations - 1, 1)
    surplus: list[str] = []
    for generation in generations[retained:]:
        surplus.extend(generation)
    return tuple(surplus)


def registered_subset(
    segments: Sequence[str],
    registered: AbstractSet[str],
) -> tuple[str, ...]:
    """Return the given segments that are still registered, in order."""
    return tuple(segment for segment in segments if segment in registered)
