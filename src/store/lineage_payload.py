"""Lineage record serialization helpers.

This module isolates the JSON payload layout of a table lineage.
It keeps record stores focused on versioning and atomic writes.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, cast

from core.constants import LINEAGE_PAYLOAD_FORMAT_VERSION
from core.errors import LineageStoreError
from core.types import ALLOWED_STATE_TRANSITIONS, LineageEntry, LineageEntryState, SegmentLineage


def lineage_to_payload(lineage: SegmentLineage) -> dict[str, Any]:
    """Serialize a table lineage into a JSON-compatible dictionary.

    Args:
        lineage: Table lineage.

    Returns:
        Payload with entries in insertion order.
    """
    entries = []
    for entry in lineage.entries:
        entry_dict = asdict(entry)
        entry_dict["segments_from"] = list(entry.segments_from)
        entry_dict["segments_to"] = list(entry.segments_to)
        entries.append(entry_dict)
    return {
        "format_version": LINEAGE_PAYLOAD_FORMAT_VERSION,
        "table_name": lineage.table_name,
        "entries": entries,
    }


def lineage_from_payload(payload: object, source: str) -> SegmentLineage:
    """Deserialize a table lineage payload.

    Args:
        payload: Parsed JSON payload.
        source: Record location used in error messages.

    Returns:
        Typed table lineage.

    Raises:
        LineageStoreError: If the payload shape or values are invalid.
    """
    if not isinstance(payload, dict):
        raise LineageStoreError(
            f"Invalid lineage record at {source}: expected JSON object at top level."
        )
    format_version = payload.get("format_version")
    if format_version != LINEAGE_PAYLOAD_FORMAT_VERSION:
        raise LineageStoreError(
            f"Unsupported lineage record format {format_version!r} at {source}. "
            f"Expected format_version {LINEAGE_PAYLOAD_FORMAT_VERSION}."
        )
    raw_entries = payload.get("entries")
    if not isinstance(raw_entries, list):
        raise LineageStoreError(f"Invalid lineage record at {source}: entries must be a list.")
    try:
        return SegmentLineage(
            table_name=str(payload["table_name"]),
            entries=tuple(_entry_from_payload(item, source) for item in raw_entries),
        )
    except KeyError as error:
        raise LineageStoreError(
            f"Invalid lineage record at {source}: missing required field {error.args[0]!r}."
        ) from error
    except ValueError as error:
        raise LineageStoreError(f"Invalid lineage record at {source}: {error}") from error


def _entry_from_payload(payload: object, source: str) -> LineageEntry:
    if not isinstance(payload, dict):
        raise LineageStoreError(f"Invalid lineage entry at {source}: expected object entries.")
    return LineageEntry(
        entry_id=str(payload["entry_id"]),
        segments_from=_segment_names(payload["segments_from"], source),
        segments_to=_segment_names(payload["segments_to"], source),
        state=_parse_state(payload["state"], source),
        timestamp=str(payload["timestamp"]),
    )


def _segment_names(raw_value: object, source: str) -> tuple[str, ...]:
    if not isinstance(raw_value, list) or not all(isinstance(item, str) for item in raw_value):
        raise LineageStoreError(
            f"Invalid lineage entry at {source}: segment lists must contain strings."
        )
    return tuple(cast(list[str], raw_value))


def _parse_state(raw_state: object, source: str) -> LineageEntryState:
    if isinstance(raw_state, str) and raw_state in ALLOWED_STATE_TRANSITIONS:
        return cast(LineageEntryState, raw_state)
    allowed = ", ".join(ALLOWED_STATE_TRANSITIONS.keys())
    raise LineageStoreError(
        f"Invalid lineage entry state {raw_state!r} at {source}: expected one of {allowed}."
    )
