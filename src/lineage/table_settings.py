"""Per-table settings used by the lineage protocol.

This module resolves each table's ingestion mode from a YAML file or an
in-memory mapping. Tables without settings use APPEND ingestion.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, Protocol, cast

import yaml

from core.constants import (
    DEFAULT_INGESTION_MODE,
    SUPPORTED_INGESTION_MODES,
    TABLE_SETTINGS_FORMAT_VERSION,
)
from core.errors import LineageConfigError
from core.types import IngestionMode, TableSettings


class TableSettingsProvider(Protocol):
    """Lookup of table settings by table name."""

    def settings_for(self, table_name: str) -> TableSettings:
        """Return settings for a table, falling back to defaults."""


class StaticTableSettings:
    """Table settings held in memory."""

    def __init__(self, ingestion_modes: Mapping[str, str] | None = None) -> None:
        self._modes: dict[str, IngestionMode] = {
            table_name: _parse_mode(mode, f"table '{table_name}'")
            for table_name, mode in (ingestion_modes or {}).items()
        }

    def settings_for(self, table_name: str) -> TableSettings:
        mode = self._modes.get(table_name, cast(IngestionMode, DEFAULT_INGESTION_MODE))
        return TableSettings(table_name=table_name, ingestion_mode=mode)


def load_table_settings(settings_path: Path | None) -> StaticTableSettings:
    """Load table settings from a YAML file.

    Args:
        settings_path: YAML file path, or None for defaults only.

    Returns:
        Table settings provider.

    Raises:
        LineageConfigError: If the file is missing or invalid.
    """
    if settings_path is None:
        return StaticTableSettings()
    payload = _load_yaml_payload(settings_path)
    root_mapping = _expect_mapping(payload, "table settings root")
    version = root_mapping.get("version")
    if version != TABLE_SETTINGS_FORMAT_VERSION:
        raise LineageConfigError(
            f"Unsupported table settings version {version!r} in {settings_path}. "
            f"Use version: {TABLE_SETTINGS_FORMAT_VERSION}."
        )
    tables = _expect_mapping(root_mapping.get("tables", {}), "tables")
    ingestion_modes: dict[str, str] = {}
    for table_name, table_payload in tables.items():
        table_mapping = _expect_mapping(table_payload, f"table '{table_name}'")
        raw_mode = table_mapping.get("ingestion_mode", DEFAULT_INGESTION_MODE)
        ingestion_modes[table_name] = _parse_mode(raw_mode, f"table '{table_name}'")
    return StaticTableSettings(ingestion_modes)


def _load_yaml_payload(settings_path: Path) -> object:
    if not settings_path.exists():
        raise LineageConfigError(
            f"Table settings file does not exist at {settings_path}. "
            "Unset LINEAGE_TABLE_CONFIG or provide a valid YAML file."
        )
    try:
        payload = cast(object, yaml.safe_load(settings_path.read_text(encoding="utf-8")))
    except OSError as error:
        raise LineageConfigError(
            f"Failed to read table settings at {settings_path}: {error}. "
            "Check file permissions and retry."
        ) from error
    except yaml.YAMLError as error:
        raise LineageConfigError(
            f"Failed to parse table settings at {settings_path}: {error}. Fix YAML syntax."
        ) from error
    if payload is None:
        raise LineageConfigError(
            f"Table settings at {settings_path} are empty. Define 'version' and 'tables'."
        )
    return payload


def _expect_mapping(value: object, context: str) -> Mapping[str, object]:
    if isinstance(value, Mapping):
        normalized_mapping = {}
        for key, payload in value.items():
            if not isinstance(key, str):
                raise LineageConfigError(
                    f"Invalid {context}: expected string keys, got {type(key).__name__}."
                )
            normalized_mapping[key] = payload
        return normalized_mapping
    raise LineageConfigError(
        f"Invalid {context}: expected object mapping, got {type(value).__name__}."
    )


def _parse_mode(raw_mode: object, context: str) -> IngestionMode:
    if isinstance(raw_mode, str) and raw_mode.upper() in SUPPORTED_INGESTION_MODES:
        return cast(IngestionMode, raw_mode.upper())
    allowed = ", ".join(SUPPORTED_INGESTION_MODES)
    raise LineageConfigError(
        f"Invalid ingestion_mode {raw_mode!r} for {context}: expected one of {allowed}."
    )
