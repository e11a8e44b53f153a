"""Runtime configuration model for segment lineage.

This module owns all environment variable parsing and validation.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path

from core.constants import (
    DEFAULT_CAS_BASE_DELAY_SECONDS,
    DEFAULT_CAS_MAX_ATTEMPTS,
    DEFAULT_CAS_MAX_DELAY_SECONDS,
    DEFAULT_DATA_ROOT,
    DEFAULT_MAX_LIVE_GENERATIONS,
    DEFAULT_STORE_LOCK_TIMEOUT_SECONDS,
    MIN_LIVE_GENERATIONS,
)
from core.errors import LineageConfigError


@dataclass(frozen=True)
class LineageConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory for file-backed lineage records.
        cas_max_attempts: Total conditional-write attempts per operation.
        cas_base_delay_seconds: First backoff delay after a lost write.
        cas_max_delay_seconds: Upper bound for backoff delays.
        max_live_generations: Data generations a refresh table may keep on disk.
        store_lock_timeout_seconds: Wait bound for the file store write lock.
        table_settings_path: Optional YAML file with per-table ingestion modes.
    """

    data_root: Path
    cas_max_attempts: int = DEFAULT_CAS_MAX_ATTEMPTS
    cas_base_delay_seconds: float = DEFAULT_CAS_BASE_DELAY_SECONDS
    cas_max_delay_seconds: float = DEFAULT_CAS_MAX_DELAY_SECONDS
    max_live_generations: int = DEFAULT_MAX_LIVE_GENERATIONS
    store_lock_timeout_seconds: float = DEFAULT_STORE_LOCK_TIMEOUT_SECONDS
    table_settings_path: Path | None = None

    def __post_init__(self) -> None:
        if self.cas_max_attempts < 1:
            raise LineageConfigError(
                f"Invalid cas_max_attempts {self.cas_max_attempts}: expected at least 1. "
                "Set LINEAGE_CAS_MAX_ATTEMPTS to a positive integer."
            )
        if self.cas_base_delay_seconds < 0:
            raise LineageConfigError(
                f"Invalid cas_base_delay_seconds {self.cas_base_delay_seconds}: "
                "expected a non-negative value."
            )
        if self.cas_max_delay_seconds < self.cas_base_delay_seconds:
            raise LineageConfigError(
                f"Invalid cas_max_delay_seconds {self.cas_max_delay_seconds}: "
                f"must not be below cas_base_delay_seconds {self.cas_base_delay_seconds}."
            )
        if self.max_live_generations < MIN_LIVE_GENERATIONS:
            raise LineageConfigError(
                f"Invalid max_live_generations {self.max_live_generations}: "
                f"expected at least {MIN_LIVE_GENERATIONS} (served plus uploading)."
            )
        if self.store_lock_timeout_seconds <= 0:
            raise LineageConfigError(
                f"Invalid store_lock_timeout_seconds {self.store_lock_timeout_seconds}: "
                "expected a positive value."
            )

    @classmethod
    def from_env(cls) -> "LineageConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            LineageConfigError: If environment values are invalid.
        """
        data_root_value = os.getenv("LINEAGE_DATA_ROOT", str(DEFAULT_DATA_ROOT))
        table_settings_value = os.getenv("LINEAGE_TABLE_CONFIG")
        return cls(
            data_root=Path(data_root_value).expanduser().resolve(),
            cas_max_attempts=_parse_int_env(
                "LINEAGE_CAS_MAX_ATTEMPTS", DEFAULT_CAS_MAX_ATTEMPTS
            ),
            cas_base_delay_seconds=_parse_float_env(
                "LINEAGE_CAS_BASE_DELAY_SECONDS", DEFAULT_CAS_BASE_DELAY_SECONDS
            ),
            cas_max_delay_seconds=_parse_float_env(
                "LINEAGE_CAS_MAX_DELAY_SECONDS", DEFAULT_CAS_MAX_DELAY_SECONDS
            ),
            max_live_generations=_parse_int_env(
                "LINEAGE_MAX_LIVE_GENERATIONS", DEFAULT_MAX_LIVE_GENERATIONS
            ),
            store_lock_timeout_seconds=_parse_float_env(
                "LINEAGE_STORE_LOCK_TIMEOUT_SECONDS", DEFAULT_STORE_LOCK_TIMEOUT_SECONDS
            ),
            table_settings_path=Path(table_settings_value).expanduser().resolve()
            if table_settings_value
            else None,
        )


def _parse_int_env(variable: str, default: int) -> int:
    """Parse an integer environment value.

    Args:
        variable: Environment variable name.
        default: Value used when the variable is unset.

    Returns:
        Parsed integer.

    Raises:
        LineageConfigError: If value cannot be parsed into int.
    """
    raw_value = os.getenv(variable)
    if raw_value is None:
        return default
    try:
        return int(raw_value)
    except ValueError as error:
        raise LineageConfigError(
            f"Invalid {variable} value: expected integer, got '{raw_value}'. "
            f"Set {variable} to a numeric value."
        ) from error


def _parse_float_env(variable: str, default: float) -> float:
    """Parse a float environment value.

    Args:
        variable: Environment variable name.
        default: Value used when the variable is unset.

    Returns:
        Parsed float.

    Raises:
        LineageConfigError: If value cannot be parsed into float.
    """
    raw_value = os.getenv(variable)
    if raw_value is None:
        return default
    try:
        return float(raw_value)
    except ValueError as error:
        raise LineageConfigError(
            f"Invalid {variable} value: expected number, got '{raw_value}'. "
            f"Set {variable} to a numeric value."
        ) from error
