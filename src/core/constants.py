"""Core constants used across segment lineage modules.

This module centralizes non-domain-specific constants.
Keeping values here avoids magic literals in business logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".lineage")
LINEAGE_DIR_NAME = "lineage"
LINEAGE_RECORD_SUFFIX = ".json"
LINEAGE_LOCK_SUFFIX = ".lock"
LINEAGE_PAYLOAD_FORMAT_VERSION = 1
TABLE_SETTINGS_FORMAT_VERSION = 1
DEFAULT_CAS_MAX_ATTEMPTS = 5
DEFAULT_CAS_BASE_DELAY_SECONDS = 0.05
DEFAULT_CAS_MAX_DELAY_SECONDS = 1.0
DEFAULT_MAX_LIVE_GENERATIONS = 2
MIN_LIVE_GENERATIONS = 2
DEFAULT_STORE_LOCK_TIMEOUT_SECONDS = 5.0
STORE_LOCK_POLL_SECONDS = 0.01
DEFAULT_INGESTION_MODE = "APPEND"
REFRESH_INGESTION_MODE = "REFRESH"
SUPPORTED_INGESTION_MODES = ("APPEND", "REFRESH")
