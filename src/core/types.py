"""Shared typed models.

This module defines the immutable lineage entities and the entry state
machine used by the record store, the lineage manager and the SDK surface.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Iterable, Literal

from core.errors import InvalidStateTransition

LineageEntryState = Literal["IN_PROGRESS", "COMPLETED", "REVERTED"]
IngestionMode = Literal["APPEND", "REFRESH"]

ALLOWED_STATE_TRANSITIONS: dict[LineageEntryState, tuple[LineageEntryState, ...]] = {
    "IN_PROGRESS": ("COMPLETED", "REVERTED"),
    "COMPLETED": (),
    "REVERTED": (),
}


def validate_transition(
    entry_id: str,
    current: LineageEntryState,
    next_state: LineageEntryState,
) -> None:
    """Validate one entry transition against allowed state machine edges.

    Args:
        entry_id: Entry being transitioned, for the error message.
        current: Current entry state.
        next_state: Requested entry state.

    Raises:
        InvalidStateTransition: If the edge is not allowed.
    """
    allowed_states = ALLOWED_STATE_TRANSITIONS[current]
    if next_state not in allowed_states:
        raise InvalidStateTransition(
            f"Invalid lineage entry transition {current!r} -> {next_state!r} "
            f"for entry '{entry_id}'. Allowed: {', '.join(allowed_states) or 'none'}."
        )


@dataclass(frozen=True)
class LineageEntry:
    """One attempted segment replacement.

    Attributes:
        entry_id: Opaque immutable identifier.
        segments_from: Ordered segment names consumed by the replacement.
        segments_to: Ordered segment names produced by the replacement.
        state: Current lifecycle state.
        timestamp: UTC ISO-8601 time of the last state change.
    """

    entry_id: str
    segments_from: tuple[str, ...]
    segments_to: tuple[str, ...]
    state: LineageEntryState
    timestamp: str

    def with_state(self, next_state: LineageEntryState, timestamp: str) -> "LineageEntry":
        """Return a copy moved to another state after validating the edge."""
        validate_transition(self.entry_id, self.state, next_state)
        return replace(self, state=next_state, timestamp=timestamp)


@dataclass(frozen=True)
class SegmentLineage:
    """Insertion-ordered lineage entries for one table.

    The whole value is the unit of conditional writes. Entries are only ever
    appended or moved between states; their segment lists never change.

    Attributes:
        table_name: Table the lineage belongs to.
        entries: Entries in insertion order.
    """

    table_name: str
    entries: tuple[LineageEntry, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        entry_ids = [entry.entry_id for entry in self.entries]
        if len(entry_ids) != len(set(entry_ids)):
            raise ValueError(f"Duplicate lineage entry ids in lineage for '{self.table_name}'.")

    @property
    def entry_ids(self) -> tuple[str, ...]:
        return tuple(entry.entry_id for entry in self.entries)

    def get_entry(self, entry_id: str) -> LineageEntry | None:
        """Return an entry by id, or None when absent."""
        for entry in self.entries:
            if entry.entry_id == entry_id:
                return entry
        return None

    def entries_in_state(self, *states: LineageEntryState) -> tuple[LineageEntry, ...]:
        """Return entries whose state is one of the given states."""
        return tuple(entry for entry in self.entries if entry.state in states)

    def append(self, entry: LineageEntry) -> "SegmentLineage":
        """Return a lineage with one new entry at the end."""
        if self.get_entry(entry.entry_id) is not None:
            raise ValueError(
                f"Lineage entry '{entry.entry_id}' already exists for '{self.table_name}'."
            )
        return SegmentLineage(table_name=self.table_name, entries=self.entries + (entry,))

    def replace_entries(self, updated: Iterable[LineageEntry]) -> "SegmentLineage":
        """Return a lineage with existing entries swapped for updated copies.

        Only state and timestamp may differ from the stored entry.
        """
        updates = {entry.entry_id: entry for entry in updated}
        next_entries: list[LineageEntry] = []
        for entry in self.entries:
            candidate = updates.pop(entry.entry_id, entry)
            if (
                candidate.segments_from != entry.segments_from
                or candidate.segments_to != entry.segments_to
            ):
                raise ValueError(
                    f"Segment lists of lineage entry '{entry.entry_id}' are immutable."
                )
            next_entries.append(candidate)
        if updates:
            missing = ", ".join(sorted(updates))
            raise ValueError(f"Cannot replace unknown lineage entries: {missing}.")
        return SegmentLineage(table_name=self.table_name, entries=tuple(next_entries))


@dataclass(frozen=True)
class VersionedLineage:
    """Lineage read together with its record version.

    Attributes:
        lineage: Current table lineage, empty when no record exists.
        version: Record version, None when no record exists yet.
    """

    lineage: SegmentLineage
    version: int | None


@dataclass(frozen=True)
class TableSettings:
    """Per-table settings the lineage protocol depends on.

    Attributes:
        table_name: Table identifier.
        ingestion_mode: APPEND for incremental loads, REFRESH for full reloads.
    """

    table_name: str
    ingestion_mode: IngestionMode


@dataclass(frozen=True)
class DeletionRequest:
    """One queued segment deletion.

    Attributes:
        table_name: Table owning the segment.
        segment_name: Segment to delete.
        reason: Why the segment was superseded, for logs.
    """

    table_name: str
    segment_name: str
    reason: str
