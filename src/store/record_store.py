"""Versioned lineage record stores.

This module persists one lineage record per table with a version counter.
Writers publish a new lineage only if the version they read is still current,
which gives the lineage manager compare-and-swap semantics.
"""

from __future__ import annotations

from contextlib import contextmanager
import json
import os
from pathlib import Path
import re
import tempfile
import threading
import time
from typing import Iterator, Protocol
from uuid import uuid4

from core.config import LineageConfig
from core.constants import (
    LINEAGE_DIR_NAME,
    LINEAGE_LOCK_SUFFIX,
    LINEAGE_RECORD_SUFFIX,
    STORE_LOCK_POLL_SECONDS,
)
from core.errors import LineageStoreError
from core.logging_config import get_logger
from core.types import SegmentLineage, VersionedLineage
from store.lineage_payload import lineage_from_payload, lineage_to_payload

_LOGGER = get_logger(__name__)
_TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]*$")


class LineageRecordStore(Protocol):
    """Versioned read/write access to per-table lineage records."""

    def read_lineage(self, table_name: str) -> VersionedLineage:
        """Read the lineage and its version; empty with version None if absent."""

    def write_lineage_if_version(
        self,
        lineage: SegmentLineage,
        expected_version: int | None,
    ) -> bool:
        """Write the lineage only if the stored version equals expected_version."""

    def delete_lineage(self, table_name: str) -> None:
        """Destroy the lineage record of a dropped table."""


class InMemoryLineageRecordStore:
    """Thread-safe in-process record store."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, tuple[SegmentLineage, int]] = {}

    def read_lineage(self, table_name: str) -> VersionedLineage:
        with self._lock:
            record = self._records.get(table_name)
        if record is None:
            return VersionedLineage(lineage=SegmentLineage(table_name=table_name), version=None)
        lineage, version = record
        return VersionedLineage(lineage=lineage, version=version)

    def write_lineage_if_version(
        self,
        lineage: SegmentLineage,
        expected_version: int | None,
    ) -> bool:
        with self._lock:
            record = self._records.get(lineage.table_name)
            current_version = record[1] if record is not None else None
            if current_version != expected_version:
                return False
            self._records[lineage.table_name] = (lineage, _next_version(expected_version))
        return True

    def delete_lineage(self, table_name: str) -> None:
        with self._lock:
            self._records.pop(table_name, None)


class FileLineageRecordStore:
    """Filesystem-backed record store shared by processes on one host.

    Each table has one JSON document holding the version and the lineage.
    Conditional writes hold an exclusive lock file only while comparing the
    version and renaming the new document into place.
    """

    def __init__(self, config: LineageConfig) -> None:
        """Initialize the record store from config.

        Args:
            config: Runtime configuration.
        """
        self._records_root = config.data_root / LINEAGE_DIR_NAME
        self._records_root.mkdir(parents=True, exist_ok=True)
        self._lock_timeout_seconds = config.store_lock_timeout_seconds

    def read_lineage(self, table_name: str) -> VersionedLineage:
        """Read the current lineage record for a table.

        Args:
            table_name: Table identifier.

        Returns:
            Lineage with version, or an empty lineage with version None.

        Raises:
            LineageStoreError: If the record is unreadable or corrupt.
        """
        record_path = self._record_path(table_name)
        record = _read_record_file(record_path)
        if record is None:
            return VersionedLineage(lineage=SegmentLineage(table_name=table_name), version=None)
        return record

    def write_lineage_if_version(
        self,
        lineage: SegmentLineage,
        expected_version: int | None,
    ) -> bool:
        """Conditionally replace the lineage record.

        Args:
            lineage: New lineage to publish.
            expected_version: Version the caller read, None for a new record.

        Returns:
            True when written, False when another writer changed the record.

        Raises:
            LineageStoreError: If the lock or the write fails.
        """
        record_path = self._record_path(lineage.table_name)
        with self._write_lock(record_path) as lock_token:
            current = _read_record_file(record_path)
            current_version = current.version if current is not None else None
            if current_version != expected_version:
                return False
            if _lock_owner(_lock_path(record_path)) != lock_token:
                _LOGGER.warning(
                    "store_lock_lost",
                    table_name=lineage.table_name,
                    expected_version=expected_version,
                )
                return False
            next_version = _next_version(expected_version)
            payload = {"version": next_version, "lineage": lineage_to_payload(lineage)}
            _atomic_write_json(record_path, payload)
        _LOGGER.debug(
            "lineage_record_written",
            table_name=lineage.table_name,
            version=next_version,
            entry_count=len(lineage.entries),
        )
        return True

    def delete_lineage(self, table_name: str) -> None:
        """Remove a table's lineage record if present.

        Args:
            table_name: Table identifier.
        """
        record_path = self._record_path(table_name)
        with self._write_lock(record_path):
            record_path.unlink(missing_ok=True)

    def _record_path(self, table_name: str) -> Path:
        """Return the record path for a validated table name.

        Raises:
            LineageStoreError: If the table name is not a safe file name.
        """
        if not _TABLE_NAME_PATTERN.match(table_name):
            raise LineageStoreError(
                f"Invalid table name {table_name!r} for file lineage store. "
                "Use letters, digits, '_', '.' or '-'."
            )
        return self._records_root / f"{table_name}{LINEAGE_RECORD_SUFFIX}"

    @contextmanager
    def _write_lock(self, record_path: Path) -> Iterator[str]:
        """Hold the per-table lock file for one compare-and-rename.

        The lock file holds an owner token. Callers compare it before
        publishing, and the lock is only removed by its owner.
        """
        lock_path = _lock_path(record_path)
        lock_token = uuid4().hex
        deadline = time.monotonic() + self._lock_timeout_seconds
        while True:
            try:
                fd = os.open(str(lock_path), os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                if _remove_if_stale(lock_path, self._lock_timeout_seconds):
                    continue
                if time.monotonic() >= deadline:
                    raise LineageStoreError(
                        f"Timed out after {self._lock_timeout_seconds}s waiting for lineage "
                        f"lock {lock_path}. Remove the lock file if no writer is running."
                    ) from None
                time.sleep(STORE_LOCK_POLL_SECONDS)
                continue
            try:
                os.write(fd, lock_token.encode("utf-8"))
            finally:
                os.close(fd)
            break
        try:
            yield lock_token
        finally:
            if _lock_owner(lock_path) == lock_token:
                lock_path.unlink(missing_ok=True)


def _lock_path(record_path: Path) -> Path:
    return record_path.with_suffix(LINEAGE_LOCK_SUFFIX)


def _lock_owner(lock_path: Path) -> str | None:
    """Return the owner token of a lock file, or None when it is absent."""
    try:
        return lock_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def _next_version(expected_version: int | None) -> int:
    return 0 if expected_version is None else expected_version + 1


def _read_record_file(record_path: Path) -> VersionedLineage | None:
    """Read one versioned record file.

    Args:
        record_path: Record JSON path.

    Returns:
        Parsed record, or None when the file does not exist.

    Raises:
        LineageStoreError: If the file is unreadable or invalid.
    """
    try:
        raw_text = record_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as error:
        raise LineageStoreError(
            f"Failed to read lineage record {record_path}: {error}. Check file permissions."
        ) from error
    try:
        payload = json.loads(raw_text)
    except json.JSONDecodeError as error:
        raise LineageStoreError(
            f"Failed to parse lineage record at {record_path}: {error.msg}. "
            "Restore the record from a backup."
        ) from error
    if not isinstance(payload, dict) or not isinstance(payload.get("version"), int):
        raise LineageStoreError(
            f"Invalid lineage record at {record_path}: expected object with integer version."
        )
    lineage = lineage_from_payload(payload.get("lineage"), str(record_path))
    return VersionedLineage(lineage=lineage, version=payload["version"])


def _atomic_write_json(record_path: Path, payload: object) -> None:
    """Write JSON to a temp file and rename it over the record."""
    fd, temp_name = tempfile.mkstemp(
        suffix=".tmp",
        prefix=record_path.stem + "_",
        dir=record_path.parent,
    )
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, indent=2) + "\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(temp_path, record_path)
    except OSError as error:
        temp_path.unlink(missing_ok=True)
        raise LineageStoreError(
            f"Failed to write lineage record {record_path}: {error}. "
            "Check disk space and permissions."
        ) from error


def _remove_if_stale(lock_path: Path, timeout_seconds: float) -> bool:
    """Break a lock file left behind by a crashed writer.

    The lock is renamed to a unique tombstone first, so only one breaker
    can take it. If the renamed file turns out to be a fresh lock taken
    after the age check, it is put back.

    Returns:
        True when a stale lock was removed.
    """
    try:
        age_seconds = time.time() - lock_path.stat().st_mtime
    except FileNotFoundError:
        return True
    if age_seconds <= timeout_seconds:
        return False
    tombstone_path = lock_path.with_name(f"{lock_path.name}.{uuid4().hex}.stale")
    try:
        os.rename(lock_path, tombstone_path)
    except FileNotFoundError:
        return True
    try:
        tombstone_age_seconds = time.time() - tombstone_path.stat().st_mtime
        if tombstone_age_seconds <= timeout_seconds:
            _restore_lock(tombstone_path, lock_path)
            return False
    finally:
        tombstone_path.unlink(missing_ok=True)
    _LOGGER.warning("stale_store_lock_removed", lock_path=str(lock_path), age_seconds=age_seconds)
    return True


def _restore_lock(tombstone_path: Path, lock_path: Path) -> None:
    """Put back a live lock that was renamed by mistake."""
    try:
        os.link(tombstone_path, lock_path)
    except FileExistsError:
        # the owner sees a foreign token and abandons its write
        _LOGGER.warning("store_lock_restore_skipped", lock_path=str(lock_path))
