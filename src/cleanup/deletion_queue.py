"""Fire-and-forget segment deletion queue.

This module hands superseded segments to an external deletion trigger
from a background worker. Producers never wait on deletions and never see
their failures; failures are logged and left to external garbage collection.
"""

from __future__ import annotations

import queue
import threading
from typing import Iterable, Protocol

from core.logging_config import get_logger
from core.types import DeletionRequest

_LOGGER = get_logger(__name__)
_STOP = None


class SegmentDeletionTrigger(Protocol):
    """Idempotent removal of a segment's metadata and files."""

    def delete_segment(self, table_name: str, segment_name: str) -> None:
        """Delete one segment; deleting a missing segment is a no-op."""


class SegmentDeletionQueue:
    """Outbox of segment deletions drained by one worker thread.

    With ``start_worker=False`` nothing runs in the background and callers
    process pending requests explicitly through ``drain``.
    """

    def __init__(self, trigger: SegmentDeletionTrigger, start_worker: bool = True) -> None:
        self._trigger = trigger
        self._pending: queue.Queue[DeletionRequest | None] = queue.Queue()
        self._worker: threading.Thread | None = None
        if start_worker:
            self.start()

    def start(self) -> None:
        """Start the background worker if it is not running."""
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(
            target=self._run_worker,
            name="segment-deletion-worker",
            daemon=True,
        )
        self._worker.start()

    def enqueue(self, table_name: str, segment_names: Iterable[str], reason: str) -> int:
        """Queue segments for deletion.

        Args:
            table_name: Table owning the segments.
            segment_names: Segments to delete; duplicates are queued once.
            reason: Why the segments were superseded.

        Returns:
            Number of queued requests.
        """
        unique_names = list(dict.fromkeys(segment_names))
        for segment_name in unique_names:
            self._pending.put(
                DeletionRequest(table_name=table_name, segment_name=segment_name, reason=reason)
            )
        if unique_names:
            _LOGGER.info(
                "segment_deletion_enqueued",
                table_name=table_name,
                segments=unique_names,
                reason=reason,
            )
        return len(unique_names)

    def pending_count(self) -> int:
        """Return the approximate number of unprocessed requests."""
        return self._pending.qsize()

    def drain(self) -> int:
        """Process every pending request on the calling thread.

        Returns:
            Number of processed requests.
        """
        processed = 0
        while True:
            try:
                request = self._pending.get_nowait()
            except queue.Empty:
                return processed
            try:
                if request is _STOP:
                    # the stop marker belongs to the worker
                    self._pending.put(_STOP)
                    return processed
                self._process(request)
                processed += 1
            finally:
                self._pending.task_done()

    def join(self) -> None:
        """Block until the worker has processed everything queued so far."""
        self._pending.join()

    def stop(self, timeout: float | None = None) -> None:
        """Stop the worker after it finishes already queued requests."""
        if self._worker is None:
            return
        self._pending.put(_STOP)
        self._worker.join(timeout)
        self._worker = None

    def _run_worker(self) -> None:
        while True:
            request = self._pending.get()
            try:
                if request is _STOP:
                    return
                self._process(request)
            finally:
                self._pending.task_done()

    def _process(self, request: DeletionRequest) -> None:
        try:
            self._trigger.delete_segment(request.table_name, request.segment_name)
        except Exception as error:
            _LOGGER.error(
                "segment_deletion_failed",
                table_name=request.table_name,
                segment_name=request.segment_name,
                reason=request.reason,
                error=str(error),
            )
            return
        _LOGGER.info(
            "segment_deleted",
            table_name=request.table_name,
            segment_name=request.segment_name,
            reason=request.reason,
        )
