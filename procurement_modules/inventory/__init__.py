"""
Inventory Module.

Two-pool (available / assigned) stock per material and location, project
assignments and an append-only movement ledger with exact reversals.
"""

from procurement_modules.inventory.config import InventoryConfig
from procurement_modules.inventory.models import (
    InventoryAssignment,
    InventoryRecord,
    Movement,
    MovementStatus,
    MovementType,
    StockMovementResult,
)

__all__ = [
    "InventoryAssignment",
    "InventoryConfig",
    "InventoryRecord",
    "Movement",
    "MovementStatus",
    "MovementType",
    "StockMovementResult",
]
