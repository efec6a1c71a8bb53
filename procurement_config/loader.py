"""
Configuration Loader (``procurement_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the typed module
configuration dataclasses aggregated by ``BackOfficeConfig``.  Runtime
callers go through ``procurement_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys in a module section  -> ``TypeError`` from the dataclass.
* Invalid values (negative rates, unknown enum values)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from procurement_config.schema import BackOfficeConfig
from procurement_kernel.db.types import validate_currency
from procurement_modules.incremental.config import IncrementalCostConfig
from procurement_modules.inventory.config import InventoryConfig
from procurement_modules.procurement.config import ProcurementConfig


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Postconditions:
        - Returns a ``dict`` (possibly empty if the YAML is empty).
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_back_office_config(data: dict[str, Any], source_path: str | None = None) -> BackOfficeConfig:
    """Build the typed configuration aggregate from a parsed YAML dict."""
    return BackOfficeConfig(
        config_id=str(data.get("config_id", "default")),
        version=int(data.get("version", 1)),
        reference_currency=validate_currency(data.get("reference_currency", "MXN")),
        procurement=ProcurementConfig.from_dict(data.get("procurement") or {}),
        inventory=InventoryConfig.from_dict(data.get("inventory") or {}),
        incremental_cost=IncrementalCostConfig.from_dict(data.get("incremental_cost") or {}),
        checksum=compute_checksum(data),
        source_path=source_path,
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
