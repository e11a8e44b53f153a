"""Unit tests for completing and reverting segment replacements."""

from __future__ import annotations

import pytest

from core.errors import (
    InvalidStateTransition,
    PartialUploadPreventsRevert,
    SegmentsToNotYetUploaded,
    UnknownLineageEntry,
)
from core.types import LineageEntry, SegmentLineage
from lineage.segment_oracle import InMemorySegmentRegistry
from tests.lineage_harness import build_harness

TABLE = "orders_OFFLINE"


def _in_progress(entry_id: str, segments_from: tuple, segments_to: tuple) -> LineageEntry:
    return LineageEntry(
        entry_id=entry_id,
        segments_from=segments_from,
        segments_to=segments_to,
        state="IN_PROGRESS",
        timestamp="2026-01-01T00:00:00+00:00",
    )


def test_end_marks_entry_completed_and_swaps_served_view() -> None:
    """Completion should serve targets and retire sources atomically."""
    harness = build_harness()
    harness.registry.add_segments(TABLE, ["s0", "s1", "s2"])
    entry_id = harness.manager.start_replace_segments(TABLE, ["s0", "s1"], ["m0"])
    harness.registry.add_segments(TABLE, ["m0"])

    assert harness.manager.served_segments(TABLE) == frozenset({"s0", "s1", "s2"})

    completed = harness.manager.end_replace_segments(TABLE, entry_id)

    assert completed.state == "COMPLETED"
    assert harness.manager.served_segments(TABLE) == frozenset({"m0", "s2"})


def test_end_queues_sources_for_deletion() -> None:
    """Replaced sources are handed to the deletion queue after commit."""
    harness = build_harness()
    harness.registry.add_segments(TABLE, ["s0", "s1"])
    entry_id = harness.manager.start_replace_segments(TABLE, ["s0", "s1"], ["m0"])
    harness.registry.add_segments(TABLE, ["m0"])

    harness.manager.end_replace_segments(TABLE, entry_id)

    assert harness.deleted_segments(TABLE) == ["s0", "s1"]
    assert harness.manager.served_segments(TABLE) == frozenset({"m0"})


def test_end_rejects_targets_not_available() -> None:
    """Completion needs every target to be servable."""
    harness = build_harness()
    harness.registry.add_segments(TABLE, ["s0"])
    entry_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0", "m1"])
    harness.registry.add_segments(TABLE, ["m0"])
    harness.registry.add_segments(TABLE, ["m1"], placed=False)

    with pytest.raises(SegmentsToNotYetUploaded) as error_info:
        harness.manager.end_replace_segments(TABLE, entry_id)

    assert error_info.value.segments == ("m1",)
    assert harness.manager.get_lineage(TABLE).get_entry(entry_id).state == "IN_PROGRESS"


def test_end_succeeds_after_missing_segment_is_placed() -> None:
    """A failed end can be retried once the upload finishes."""
    harness = build_harness()
    harness.registry.add_segments(TABLE, ["s0"])
    entry_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0"])
    harness.registry.add_segments(TABLE, ["m0"], placed=False)
    with pytest.raises(SegmentsToNotYetUploaded):
        harness.manager.end_replace_segments(TABLE, entry_id)

    harness.registry.place_segment(TABLE, "m0")

    assert harness.manager.end_replace_segments(TABLE, entry_id).state == "COMPLETED"


def test_end_twice_raises_invalid_transition() -> None:
    """A completed entry cannot be completed again."""
    harness = build_harness()
    harness.registry.add_segments(TABLE, ["s0"])
    entry_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0"])
    harness.registry.add_segments(TABLE, ["m0"])
    harness.manager.end_replace_segments(TABLE, entry_id)
    assert harness.deleted_segments(TABLE) == ["s0"]

    for _ in range(2):
        with pytest.raises(InvalidStateTransition):
            harness.manager.end_replace_segments(TABLE, entry_id)

    assert harness.deletion_queue.pending_count() == 0
    assert harness.manager.served_segments(TABLE) == frozenset({"m0"})


def test_end_unknown_entry_raises() -> None:
    """Unknown entry ids are rejected on tables with and without lineage."""
    harness = build_harness()
    harness.registry.add_segments(TABLE, ["s0"])

    with pytest.raises(UnknownLineageEntry):
        harness.manager.end_replace_segments(TABLE, "missing")

    harness.manager.start_replace_segments(TABLE, ["s0"], ["m0"])
    with pytest.raises(UnknownLineageEntry):
        harness.manager.end_replace_segments(TABLE, "missing")


def test_end_reverts_entries_orphaned_by_completion() -> None:
    """Entries whose sources were just retired are reverted in the same write."""
    harness = build_harness()
    harness.registry.add_segments(TABLE, ["s1", "s2", "s3", "m0", "o0"])
    harness.record_store.write_lineage_if_version(
        SegmentLineage(
            table_name=TABLE,
            entries=(
                _in_progress("winner", ("s1", "s2"), ("m0",)),
                _in_progress("orphan", ("s2", "s3"), ("o0",)),
            ),
        ),
        None,
    )

    completed = harness.manager.end_replace_segments(TABLE, "winner")
    lineage = harness.manager.get_lineage(TABLE)

    assert completed.state == "COMPLETED"
    assert lineage.get_entry("orphan").state == "REVERTED"
    assert lineage.entries_in_state("IN_PROGRESS") == ()
    assert harness.deleted_segments(TABLE) == ["s1", "s2", "o0"]
    assert harness.manager.served_segments(TABLE) == frozenset({"s3", "m0"})


def test_end_of_append_orphans_nothing() -> None:
    """Completing a load with no sources leaves other loads running."""
    harness = build_harness()
    harness.registry.add_segments(TABLE, ["s0"])
    refresh_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0"])
    append_id = harness.manager.start_replace_segments(TABLE, [], ["a0"])
    harness.registry.add_segments(TABLE, ["a0"])

    harness.manager.end_replace_segments(TABLE, append_id)

    lineage = harness.manager.get_lineage(TABLE)
    assert lineage.get_entry(refresh_id).state == "IN_PROGRESS"
    assert harness.manager.served_segments(TABLE) == frozenset({"s0", "a0"})


def test_revert_without_uploads_marks_entry_reverted() -> None:
    """Reverting before any upload leaves the served view unchanged."""
    harness = build_harness()
    harness.registry.add_segments(TABLE, ["s0"])
    entry_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0"])

    reverted = harness.manager.revert_replace_segments(TABLE, entry_id)

    assert reverted.state == "REVERTED"
    assert harness.manager.served_segments(TABLE) == frozenset({"s0"})
    assert harness.deleted_segments(TABLE) == []


def test_revert_with_uploaded_targets_requires_force() -> None:
    """Uploaded targets are only discarded when the caller asks for it."""
    harness = build_harness()
    harness.registry.add_segments(TABLE, ["s0"])
    entry_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0", "m1"])
    harness.registry.add_segments(TABLE, ["m0"])

    with pytest.raises(PartialUploadPreventsRevert) as error_info:
        harness.manager.revert_replace_segments(TABLE, entry_id)

    assert error_info.value.segments == ("m0",)
    assert harness.manager.get_lineage(TABLE).get_entry(entry_id).state == "IN_PROGRESS"


def test_force_revert_deletes_uploaded_targets() -> None:
    """Forced revert queues uploaded targets for deletion."""
    harness = build_harness()
    harness.registry.add_segments(TABLE, ["s0"])
    entry_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0", "m1"])
    harness.registry.add_segments(TABLE, ["m0"])

    harness.manager.revert_replace_segments(TABLE, entry_id, force_revert=True)

    assert harness.deleted_segments(TABLE) == ["m0"]
    assert harness.manager.served_segments(TABLE) == frozenset({"s0"})


def test_revert_completed_entry_raises_invalid_transition() -> None:
    """Completed replacements are final."""
    harness = build_harness()
    harness.registry.add_segments(TABLE, ["s0"])
    entry_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0"])
    harness.registry.add_segments(TABLE, ["m0"])
    harness.manager.end_replace_segments(TABLE, entry_id)

    with pytest.raises(InvalidStateTransition):
        harness.manager.revert_replace_segments(TABLE, entry_id, force_revert=True)

    assert harness.manager.get_lineage(TABLE).get_entry(entry_id).state == "COMPLETED"


def test_end_of_reverted_entry_raises_invalid_transition() -> None:
    """Reverted replacements cannot be completed."""
    harness = build_harness()
    harness.registry.add_segments(TABLE, ["s0"])
    entry_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0"])
    harness.manager.revert_replace_segments(TABLE, entry_id)
    harness.registry.add_segments(TABLE, ["m0"])

    with pytest.raises(InvalidStateTransition):
        harness.manager.end_replace_segments(TABLE, entry_id)


class _UnreachableRegistry(InMemorySegmentRegistry):
    """Registry whose full listing can be switched off."""

    def __init__(self) -> None:
        super().__init__()
        self.listing_available = True

    def registered_segments(self, table_name: str) -> frozenset[str]:
        if not self.listing_available:
            raise RuntimeError("segment listing unavailable")
        return super().registered_segments(table_name)


def test_end_does_not_commit_when_segment_listing_fails() -> None:
    """A failed registry lookup leaves the entry in progress."""
    registry = _UnreachableRegistry()
    harness = build_harness(registry=registry)
    registry.add_segments(TABLE, ["s0"])
    entry_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0"])
    registry.add_segments(TABLE, ["m0"])
    registry.listing_available = False

    with pytest.raises(RuntimeError):
        harness.manager.end_replace_segments(TABLE, entry_id)

    assert harness.manager.get_lineage(TABLE).get_entry(entry_id).state == "IN_PROGRESS"
    assert harness.deletion_queue.pending_count() == 0


def test_revert_does_not_commit_when_segment_listing_fails() -> None:
    """A failed registry lookup leaves the entry revertible."""
    registry = _UnreachableRegistry()
    harness = build_harness(registry=registry)
    registry.add_segments(TABLE, ["s0"])
    entry_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0"])
    registry.listing_available = False

    with pytest.raises(RuntimeError):
        harness.manager.revert_replace_segments(TABLE, entry_id)

    registry.listing_available = True
    assert harness.manager.revert_replace_segments(TABLE, entry_id).state == "REVERTED"
