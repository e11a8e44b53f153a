"""Segment lineage exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each failure category raises a specific error type so callers can tell
bad input, lost races and not-yet-met preconditions apart.
"""

from __future__ import annotations

from typing import Iterable


class LineageError(Exception):
    """Base exception for all segment lineage failures."""


class LineageConfigError(LineageError):
    """Raised for invalid runtime or table configuration."""


class LineageStoreError(LineageError):
    """Raised when a lineage record cannot be read or written."""


class LineageValidationError(LineageError):
    """Raised for requests that can never succeed as issued."""


class InvalidReplaceRequest(LineageValidationError):
    """Raised when segment lists are malformed before any lookup."""


class DuplicateSegmentsTo(LineageValidationError):
    """Raised when target segments are already produced or registered."""


class SegmentsFromNotAvailable(LineageValidationError):
    """Raised when source segments are not in the served view."""


class UnknownLineageEntry(LineageValidationError):
    """Raised when a lineage entry id does not exist for the table."""


class InvalidStateTransition(LineageValidationError):
    """Raised when an entry is asked to leave a terminal state."""


class LineageConflictError(LineageError):
    """Raised when another writer holds or changed the same lineage."""


class ConflictingReplacementInProgress(LineageConflictError):
    """Raised when an in-flight replacement already consumes the sources."""


class LineageVersionConflict(LineageConflictError):
    """Raised when a conditional write loses to a concurrent writer."""


class ConcurrentModificationExhausted(LineageConflictError):
    """Raised when conditional writes keep losing past the retry budget."""


class LineagePreconditionError(LineageError):
    """Raised for recoverable conditions the caller must resolve first.

    Attributes:
        segments: Segment names that caused the failure.
    """

    def __init__(self, message: str, segments: Iterable[str] = ()) -> None:
        super().__init__(message)
        self.segments = tuple(segments)


class SegmentsToNotYetUploaded(LineagePreconditionError):
    """Raised when completing before every target segment is available."""


class PartialUploadPreventsRevert(LineagePreconditionError):
    """Raised when reverting would discard uploaded target segments."""
