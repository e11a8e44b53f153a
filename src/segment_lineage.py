"""Public SDK surface for segment lineage.

This module provides a stable import path for callers of the protocol.
It re-exports the manager, its collaborators and the typed models.
"""

from __future__ import annotations

from cleanup.deletion_queue import SegmentDeletionQueue, SegmentDeletionTrigger
from core.config import LineageConfig
from core.errors import (
    ConcurrentModificationExhausted,
    ConflictingReplacementInProgress,
    DuplicateSegmentsTo,
    InvalidReplaceRequest,
    InvalidStateTransition,
    LineageError,
    PartialUploadPreventsRevert,
    SegmentsFromNotAvailable,
    SegmentsToNotYetUploaded,
    UnknownLineageEntry,
)
from core.types import LineageEntry, SegmentLineage
from lineage.bootstrap import create_lineage_manager
from lineage.manager import LineageManager
from lineage.segment_oracle import InMemorySegmentRegistry, SegmentExistenceOracle
from lineage.table_settings import StaticTableSettings, load_table_settings
from store.record_store import (
    FileLineageRecordStore,
    InMemoryLineageRecordStore,
    LineageRecordStore,
)

__all__ = [
    "ConcurrentModificationExhausted",
    "ConflictingReplacementInProgress",
    "DuplicateSegmentsTo",
    "FileLineageRecordStore",
    "InMemoryLineageRecordStore",
    "InMemorySegmentRegistry",
    "InvalidReplaceRequest",
    "InvalidStateTransition",
    "LineageConfig",
    "LineageEntry",
    "LineageError",
    "LineageManager",
    "LineageRecordStore",
    "PartialUploadPreventsRevert",
    "SegmentDeletionQueue",
    "SegmentDeletionTrigger",
    "SegmentExistenceOracle",
    "SegmentLineage",
    "SegmentsFromNotAvailable",
    "SegmentsToNotYetUploaded",
    "StaticTableSettings",
    "UnknownLineageEntry",
    "create_lineage_manager",
    "load_table_settings",
]
