"""Segment lineage manager.

This module implements the replacement protocol: start a replacement,
complete it once its segments are uploaded, or revert it. Every mutation
is a read-validate-write cycle against the versioned record store and is
retried from scratch when a concurrent writer wins. Segment deletions are
handed to the deletion queue only after the write commits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable
from uuid import uuid4

from cleanup.deletion_queue import SegmentDeletionQueue
from core.config import LineageConfig
from core.constants import REFRESH_INGESTION_MODE
from core.errors import (
    ConflictingReplacementInProgress,
    LineageVersionConflict,
    PartialUploadPreventsRevert,
    SegmentsToNotYetUploaded,
)
from core.logging_config import get_logger
from core.types import LineageEntry, SegmentLineage, validate_transition
from lineage.cas_retry import run_with_cas_retry
from lineage.segment_oracle import SegmentExistenceOracle
from lineage.segment_view import (
    compute_served_segments,
    find_conflicting_entries,
    find_orphaned_by_completion,
    find_surplus_generations,
    registered_subset,
)
from lineage.table_settings import StaticTableSettings, TableSettingsProvider
from lineage.validation import (
    check_segments_from_served,
    check_segments_to_unclaimed,
    lookup_entry,
    validate_replace_request,
)
from store.record_store import LineageRecordStore

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class _Deletion:
    segments: tuple[str, ...]
    reason: str


@dataclass(frozen=True)
class _CommittedUpdate:
    """Outcome of one committed lineage write."""

    entry: LineageEntry
    reverted_entry_ids: tuple[str, ...] = ()
    deletions: tuple[_Deletion, ...] = field(default_factory=tuple)


class LineageManager:
    """Coordinates segment replacements for every table.

    The manager holds no per-table state between calls, so any number of
    managers in different processes may share one record store.
    """

    def __init__(
        self,
        config: LineageConfig,
        record_store: LineageRecordStore,
        segment_oracle: SegmentExistenceOracle,
        deletion_queue: SegmentDeletionQueue,
        table_settings: TableSettingsProvider | None = None,
    ) -> None:
        """Create a lineage manager.

        Args:
            config: Runtime configuration.
            record_store: Versioned lineage record store.
            segment_oracle: Segment registration and placement lookups.
            deletion_queue: Outbox for superseded segment deletions.
            table_settings: Per-table ingestion modes; APPEND when omitted.
        """
        self._config = config
        self._store = record_store
        self._oracle = segment_oracle
        self._deletions = deletion_queue
        self._table_settings = table_settings or StaticTableSettings()

    def start_replace_segments(
        self,
        table_name: str,
        segments_from: Iterable[str],
        segments_to: Iterable[str],
        force_cleanup: bool = False,
    ) -> str:
        """Record a new in-progress replacement.

        Args:
            table_name: Table whose segments are replaced.
            segments_from: Served segments the replacement consumes; may be empty.
            segments_to: New segments the replacement produces.
            force_cleanup: Revert competing in-progress replacements instead of failing.

        Returns:
            Id of the new lineage entry.

        Raises:
            InvalidReplaceRequest: If the segment lists are malformed.
            DuplicateSegmentsTo: If a target segment is already claimed.
            SegmentsFromNotAvailable: If a source segment is not served.
            ConflictingReplacementInProgress: If sources are already being replaced.
            ConcurrentModificationExhausted: If concurrent writers keep winning.
        """
        source_segments = tuple(segments_from)
        target_segments = tuple(segments_to)
        validate_replace_request(table_name, source_segments, target_segments)
        entry_id = str(uuid4())
        is_refresh = (
            self._table_settings.settings_for(table_name).ingestion_mode
            == REFRESH_INGESTION_MODE
        )

        def _attempt() -> _CommittedUpdate:
            versioned = self._store.read_lineage(table_name)
            lineage = versioned.lineage
            registered = self._oracle.registered_segments(table_name)
            check_segments_to_unclaimed(table_name, lineage, target_segments, registered)
            served = compute_served_segments(registered, lineage)
            check_segments_from_served(table_name, source_segments, served)
            conflicts = find_conflicting_entries(lineage, source_segments)
            if conflicts and not force_cleanup:
                conflict_ids = [entry.entry_id for entry in conflicts]
                raise ConflictingReplacementInProgress(
                    f"Segments {list(source_segments)} of '{table_name}' are already being "
                    f"replaced by lineage entries {conflict_ids}. Finish or revert them, or "
                    "retry with force_cleanup."
                )
            timestamp = _utc_now_iso()
            reverted = tuple(entry.with_state("REVERTED", timestamp) for entry in conflicts)
            deletions = [
                _Deletion(
                    segments=registered_subset(entry.segments_to, registered),
                    reason=f"force_cleanup_reverted:{entry.entry_id}",
                )
                for entry in reverted
            ]
            if is_refresh:
                deletions.append(
                    _Deletion(
                        segments=find_surplus_generations(
                            lineage, registered, self._config.max_live_generations
                        ),
                        reason="refresh_generation_limit",
                    )
                )
            new_entry = LineageEntry(
                entry_id=entry_id,
                segments_from=source_segments,
                segments_to=target_segments,
                state="IN_PROGRESS",
                timestamp=timestamp,
            )
            next_lineage = lineage.replace_entries(reverted).append(new_entry)
            self._commit(next_lineage, versioned.version)
            return _CommittedUpdate(
                entry=new_entry,
                reverted_entry_ids=tuple(entry.entry_id for entry in reverted),
                deletions=tuple(deletions),
            )

        update = run_with_cas_retry(_attempt, self._config, table_name, "start_replace_segments")
        _LOGGER.info(
            "lineage_entry_started",
            table_name=table_name,
            entry_id=entry_id,
            segments_from=list(source_segments),
            segments_to=list(target_segments),
            force_cleanup=force_cleanup,
            reverted_entry_ids=list(update.reverted_entry_ids),
        )
        self._enqueue_deletions(table_name, update)
        return entry_id

    def end_replace_segments(self, table_name: str, entry_id: str) -> LineageEntry:
        """Complete an in-progress replacement once its targets are servable.

        Args:
            table_name: Table whose segments are replaced.
            entry_id: Entry returned by start_replace_segments.

        Returns:
            The completed lineage entry.

        Raises:
            UnknownLineageEntry: If the entry does not exist.
            InvalidStateTransition: If the entry is already completed or reverted.
            SegmentsToNotYetUploaded: If a target segment is not available yet.
            ConcurrentModificationExhausted: If concurrent writers keep winning.
        """

        def _attempt() -> _CommittedUpdate:
            versioned = self._store.read_lineage(table_name)
            lineage = versioned.lineage
            entry = lookup_entry(table_name, lineage, entry_id)
            validate_transition(entry_id, entry.state, "COMPLETED")
            missing = [
                segment
                for segment in entry.segments_to
                if not self._oracle.segment_is_available(table_name, segment)
            ]
            if missing:
                raise SegmentsToNotYetUploaded(
                    f"Segments {missing} of lineage entry '{entry_id}' in '{table_name}' are "
                    "not available yet. Finish uploading them and retry.",
                    segments=missing,
                )
            timestamp = _utc_now_iso()
            completed = entry.with_state("COMPLETED", timestamp)
            orphaned = tuple(
                orphan.with_state("REVERTED", timestamp)
                for orphan in find_orphaned_by_completion(lineage, completed)
            )
            next_lineage = lineage.replace_entries((completed,) + orphaned)
            registered = self._oracle.registered_segments(table_name)
            self._commit(next_lineage, versioned.version)
            deletions = [
                _Deletion(segments=completed.segments_from, reason=f"replaced_by:{entry_id}")
            ]
            deletions.extend(
                _Deletion(
                    segments=registered_subset(orphan.segments_to, registered),
                    reason=f"sources_replaced_by:{entry_id}",
                )
                for orphan in orphaned
            )
            return _CommittedUpdate(
                entry=completed,
                reverted_entry_ids=tuple(orphan.entry_id for orphan in orphaned),
                deletions=tuple(deletions),
            )

        update = run_with_cas_retry(_attempt, self._config, table_name, "end_replace_segments")
        _LOGGER.info(
            "lineage_entry_completed",
            table_name=table_name,
            entry_id=entry_id,
            segments_from=list(update.entry.segments_from),
            segments_to=list(update.entry.segments_to),
            reverted_entry_ids=list(update.reverted_entry_ids),
        )
        self._enqueue_deletions(table_name, update)
        return update.entry

    def revert_replace_segments(
        self,
        table_name: str,
        entry_id: str,
        force_revert: bool = False,
    ) -> LineageEntry:
        """Abandon an in-progress replacement.

        Args:
            table_name: Table whose segments were being replaced.
            entry_id: Entry returned by start_replace_segments.
            force_revert: Discard target segments that were already uploaded.

        Returns:
            The reverted lineage entry.

        Raises:
            UnknownLineageEntry: If the entry does not exist.
            InvalidStateTransition: If the entry is already completed or reverted.
            PartialUploadPreventsRevert: If targets are uploaded and force_revert is false.
            ConcurrentModificationExhausted: If concurrent writers keep winning.
        """

        def _attempt() -> _CommittedUpdate:
            versioned = self._store.read_lineage(table_name)
            lineage = versioned.lineage
            entry = lookup_entry(table_name, lineage, entry_id)
            validate_transition(entry_id, entry.state, "REVERTED")
            uploaded = [
                segment
                for segment in entry.segments_to
                if self._oracle.segment_is_available(table_name, segment)
            ]
            if uploaded and not force_revert:
                raise PartialUploadPreventsRevert(
                    f"Segments {uploaded} of lineage entry '{entry_id}' in '{table_name}' are "
                    "already uploaded. Retry with force_revert to discard them.",
                    segments=uploaded,
                )
            reverted = entry.with_state("REVERTED", _utc_now_iso())
            registered = self._oracle.registered_segments(table_name)
            self._commit(lineage.replace_entries((reverted,)), versioned.version)
            return _CommittedUpdate(
                entry=reverted,
                deletions=(
                    _Deletion(
                        segments=registered_subset(reverted.segments_to, registered),
                        reason=f"reverted:{entry_id}",
                    ),
                ),
            )

        update = run_with_cas_retry(_attempt, self._config, table_name, "revert_replace_segments")
        _LOGGER.info(
            "lineage_entry_reverted",
            table_name=table_name,
            entry_id=entry_id,
            force_revert=force_revert,
        )
        self._enqueue_deletions(table_name, update)
        return update.entry

    def get_lineage(self, table_name: str) -> SegmentLineage:
        """Return the table lineage, empty when the table has none."""
        return self._store.read_lineage(table_name).lineage

    def served_segments(self, table_name: str) -> frozenset[str]:
        """Return the segments queries should currently see for a table."""
        lineage = self._store.read_lineage(table_name).lineage
        return compute_served_segments(self._oracle.registered_segments(table_name), lineage)

    def find_stale_entries(
        self,
        table_name: str,
        older_than: timedelta,
    ) -> tuple[LineageEntry, ...]:
        """Return in-progress entries untouched for longer than older_than.

        Args:
            table_name: Table to inspect.
            older_than: Minimum age of an abandoned entry.

        Returns:
            Stale in-progress entries in insertion order.
        """
        cutoff = datetime.now(timezone.utc) - older_than
        lineage = self._store.read_lineage(table_name).lineage
        return tuple(
            entry
            for entry in lineage.entries_in_state("IN_PROGRESS")
            if datetime.fromisoformat(entry.timestamp) < cutoff
        )

    def drop_table_lineage(self, table_name: str) -> None:
        """Destroy the lineage record of a dropped table."""
        self._store.delete_lineage(table_name)
        _LOGGER.info("lineage_record_dropped", table_name=table_name)

    def _commit(self, lineage: SegmentLineage, expected_version: int | None) -> None:
        if not self._store.write_lineage_if_version(lineage, expected_version):
            raise LineageVersionConflict(
                f"Lineage of '{lineage.table_name}' changed since version {expected_version}."
            )

    def _enqueue_deletions(self, table_name: str, update: _CommittedUpdate) -> None:
        for deletion in update.deletions:
            if deletion.segments:
                self._deletions.enqueue(table_name, deletion.segments, deletion.reason)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
