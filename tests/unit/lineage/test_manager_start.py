"""Unit tests for starting segment replacements."""

from __future__ import annotations

import pytest

from core.errors import (
    ConflictingReplacementInProgress,
    DuplicateSegmentsTo,
    InvalidReplaceRequest,
    SegmentsFromNotAvailable,
)
from tests.lineage_harness import build_harness

TABLE = "events_OFFLINE"


def _harness_with_segments(*segments: str):
    harness = build_harness()
    harness.registry.add_segments(TABLE, segments)
    return harness


def test_start_appends_in_progress_entry() -> None:
    """Start should persist a new in-progress entry with both segment lists."""
    harness = _harness_with_segments("s0", "s1", "s2")

    entry_id = harness.manager.start_replace_segments(TABLE, ["s0", "s1"], ["m0"])
    entry = harness.manager.get_lineage(TABLE).get_entry(entry_id)

    assert entry is not None
    assert (entry.segments_from, entry.segments_to, entry.state) == (
        ("s0", "s1"),
        ("m0",),
        "IN_PROGRESS",
    )


def test_start_with_empty_sources_is_accepted() -> None:
    """Append loads name no source segments."""
    harness = _harness_with_segments()

    entry_id = harness.manager.start_replace_segments(TABLE, [], ["s5", "s6"])

    assert harness.manager.get_lineage(TABLE).entry_ids == (entry_id,)


def test_start_rejects_empty_targets() -> None:
    """A replacement must produce at least one segment."""
    harness = _harness_with_segments("s0")

    with pytest.raises(InvalidReplaceRequest):
        harness.manager.start_replace_segments(TABLE, ["s0"], [])

    assert harness.manager.get_lineage(TABLE).entries == ()


def test_start_rejects_target_that_is_also_a_source() -> None:
    """Targets must be disjoint from sources."""
    harness = _harness_with_segments("s1", "s2")

    with pytest.raises(InvalidReplaceRequest):
        harness.manager.start_replace_segments(TABLE, ["s1", "s2"], ["s2"])

    assert harness.manager.get_lineage(TABLE).entries == ()


def test_start_rejects_targets_already_registered() -> None:
    """Targets may not reuse names of registered segments."""
    harness = _harness_with_segments("s1", "s2", "s3", "s4")

    with pytest.raises(DuplicateSegmentsTo):
        harness.manager.start_replace_segments(TABLE, ["s1", "s2"], ["s3", "s4"])

    assert harness.manager.get_lineage(TABLE).entries == ()


def test_start_rejects_targets_claimed_by_in_progress_entry() -> None:
    """Two replacements may not produce the same segment."""
    harness = _harness_with_segments("s0", "s1")
    harness.manager.start_replace_segments(TABLE, ["s0"], ["m0"])

    with pytest.raises(DuplicateSegmentsTo):
        harness.manager.start_replace_segments(TABLE, ["s1"], ["m0"])

    assert len(harness.manager.get_lineage(TABLE).entries) == 1


def test_start_allows_targets_of_reverted_entry() -> None:
    """Names released by a reverted entry can be produced again."""
    harness = _harness_with_segments("s0")
    first_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0"])
    harness.manager.revert_replace_segments(TABLE, first_id)

    second_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0"])

    assert harness.manager.get_lineage(TABLE).entry_ids == (first_id, second_id)


def test_start_rejects_sources_not_served() -> None:
    """Sources must be in the served view; nothing is recorded on failure."""
    harness = _harness_with_segments("s0", "s1")

    with pytest.raises(SegmentsFromNotAvailable):
        harness.manager.start_replace_segments(TABLE, ["s1", "x"], ["m0"])

    assert harness.manager.get_lineage(TABLE).entries == ()


def test_start_rejects_sources_retired_by_completed_entry() -> None:
    """Sources consumed by a completed replacement are no longer served."""
    harness = _harness_with_segments("s0", "s1")
    entry_id = harness.manager.start_replace_segments(TABLE, ["s0", "s1"], ["m0"])
    harness.registry.add_segments(TABLE, ["m0"])
    harness.manager.end_replace_segments(TABLE, entry_id)

    with pytest.raises(SegmentsFromNotAvailable):
        harness.manager.start_replace_segments(TABLE, ["s0"], ["m1"])

    assert harness.manager.get_lineage(TABLE).get_entry(entry_id).state == "COMPLETED"


def test_start_conflicts_with_in_progress_overlapping_sources() -> None:
    """Overlapping sources of an in-flight replacement block a new start."""
    harness = _harness_with_segments("s1", "s2", "s3")
    harness.manager.start_replace_segments(TABLE, ["s1", "s2"], ["m0"])

    with pytest.raises(ConflictingReplacementInProgress):
        harness.manager.start_replace_segments(TABLE, ["s2", "s3"], ["m1"])

    assert len(harness.manager.get_lineage(TABLE).entries) == 1


def test_start_with_disjoint_sources_runs_in_parallel() -> None:
    """Replacements over different sources do not conflict."""
    harness = _harness_with_segments("s1", "s2")
    harness.manager.start_replace_segments(TABLE, ["s1"], ["m0"])

    harness.manager.start_replace_segments(TABLE, ["s2"], ["m1"])

    assert len(harness.manager.get_lineage(TABLE).entries_in_state("IN_PROGRESS")) == 2


def test_start_with_empty_sources_conflicts_with_empty_sources() -> None:
    """Repeated full loads with no sources are serialized."""
    harness = _harness_with_segments()
    harness.manager.start_replace_segments(TABLE, [], ["a0"])

    with pytest.raises(ConflictingReplacementInProgress):
        harness.manager.start_replace_segments(TABLE, [], ["b0"])

    assert len(harness.manager.get_lineage(TABLE).entries) == 1


def test_force_cleanup_reverts_conflicting_entry_and_deletes_uploads() -> None:
    """Force cleanup leaves the new entry as the only one in progress."""
    harness = _harness_with_segments("s1", "s2")
    old_id = harness.manager.start_replace_segments(TABLE, ["s1", "s2"], ["m2_0", "m2_1"])
    harness.registry.add_segments(TABLE, ["m2_0"])

    new_id = harness.manager.start_replace_segments(
        TABLE, ["s1", "s2"], ["m3_0", "m3_1"], force_cleanup=True
    )
    lineage = harness.manager.get_lineage(TABLE)

    assert lineage.get_entry(old_id).state == "REVERTED"
    assert lineage.entries_in_state("IN_PROGRESS") == (lineage.get_entry(new_id),)
    assert harness.deleted_segments(TABLE) == ["m2_0"]


def test_force_cleanup_keeps_reverted_entry_segment_lists() -> None:
    """Reverting by force changes only the state of the old entry."""
    harness = _harness_with_segments("s1")
    old_id = harness.manager.start_replace_segments(TABLE, ["s1"], ["m0"])

    harness.manager.start_replace_segments(TABLE, ["s1"], ["m1"], force_cleanup=True)
    old_entry = harness.manager.get_lineage(TABLE).get_entry(old_id)

    assert (old_entry.segments_from, old_entry.segments_to) == (("s1",), ("m0",))


def test_start_on_append_table_does_not_delete_old_generations() -> None:
    """Generation retention only applies to refresh tables."""
    harness = _harness_with_segments("s0", "s1")
    first_id = harness.manager.start_replace_segments(TABLE, ["s0"], ["m0"])
    harness.registry.add_segments(TABLE, ["m0"])
    harness.manager.end_replace_segments(TABLE, first_id)
    second_id = harness.manager.start_replace_segments(TABLE, ["m0"], ["m1"])
    harness.registry.add_segments(TABLE, ["m1"])
    harness.manager.end_replace_segments(TABLE, second_id)

    harness.manager.start_replace_segments(TABLE, ["s1"], ["m2"])

    assert harness.deletion_queue.pending_count() == 2
    assert harness.deleted_segments(TABLE) == ["s0", "m0"]
