"""Retry loop for optimistic lineage updates.

An update reads the record, validates against it and writes conditionally.
A lost write raises LineageVersionConflict and the whole update reruns
against the fresh record, with exponential jittered backoff between tries.
"""

from __future__ import annotations

from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from core.config import LineageConfig
from core.errors import ConcurrentModificationExhausted, LineageVersionConflict
from core.logging_config import get_logger

_LOGGER = get_logger(__name__)
T = TypeVar("T")


def run_with_cas_retry(
    operation: Callable[[], T],
    config: LineageConfig,
    table_name: str,
    action: str,
) -> T:
    """Run a read-validate-write operation until its write lands.

    Args:
        operation: Callable that raises LineageVersionConflict on a lost write.
        config: Retry budget and backoff settings.
        table_name: Table being updated, for logs and errors.
        action: Operation name, for logs and errors.

    Returns:
        Result of the first attempt whose write succeeded.

    Raises:
        ConcurrentModificationExhausted: If every attempt lost its write.
        LineageError: Any non-conflict failure, raised on first occurrence.
    """

    def _log_retry(retry_state: RetryCallState) -> None:
        _LOGGER.info(
            "lineage_cas_conflict_retry",
            table_name=table_name,
            action=action,
            attempt=retry_state.attempt_number,
            max_attempts=config.cas_max_attempts,
        )

    try:
        for attempt in Retrying(
            stop=stop_after_attempt(config.cas_max_attempts),
            wait=wait_exponential_jitter(
                initial=config.cas_base_delay_seconds,
                max=config.cas_max_delay_seconds,
                jitter=config.cas_base_delay_seconds,
            ),
            retry=retry_if_exception_type(LineageVersionConflict),
            before_sleep=_log_retry,
            reraise=False,
        ):
            with attempt:
                return operation()
    except RetryError as error:
        raise ConcurrentModificationExhausted(
            f"Gave up on {action} for '{table_name}' after {config.cas_max_attempts} "
            "conflicting writes. Retry the call once concurrent writers settle."
        ) from error
    raise RuntimeError("Unexpected state in lineage retry loop")  # pragma: no cover
