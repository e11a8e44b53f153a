"""Wiring helpers for a ready-to-use lineage manager."""

from __future__ import annotations

from cleanup.deletion_queue import SegmentDeletionQueue, SegmentDeletionTrigger
from core.config import LineageConfig
from lineage.manager import LineageManager
from lineage.segment_oracle import SegmentExistenceOracle
from lineage.table_settings import load_table_settings
from store.record_store import FileLineageRecordStore


def create_lineage_manager(
    segment_oracle: SegmentExistenceOracle,
    deletion_trigger: SegmentDeletionTrigger,
    config: LineageConfig | None = None,
) -> LineageManager:
    """Build a manager over the file record store with a background deletion worker.

    Args:
        segment_oracle: Segment registration and placement lookups.
        deletion_trigger: External segment deletion entry point.
        config: Optional runtime configuration; read from env when omitted.

    Returns:
        Configured lineage manager.

    Raises:
        LineageConfigError: If environment or table settings are invalid.
    """
    resolved_config = config or LineageConfig.from_env()
    return LineageManager(
        config=resolved_config,
        record_store=FileLineageRecordStore(resolved_config),
        segment_oracle=segment_oracle,
        deletion_queue=SegmentDeletionQueue(deletion_trigger),
        table_settings=load_table_settings(resolved_config.table_settings_path),
    )
