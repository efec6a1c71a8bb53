"""
Configuration schema: the typed aggregate handed to services at runtime.
"""

from __future__ import annotations

from dataclasses import dataclass

from procurement_modules.incremental.config import IncrementalCostConfig
from procurement_modules.inventory.config import InventoryConfig
from procurement_modules.procurement.config import ProcurementConfig


@dataclass(frozen=True)
class BackOfficeConfig:
    """One loaded configuration file, split into per-module sections."""

    config_id: str
    version: int
    reference_currency: str
    procurement: ProcurementConfig
    inventory: InventoryConfig
    incremental_cost: IncrementalCostConfig
    checksum: str
    source_path: str | None = None
