"""
Inventory Configuration Schema.
"""

from dataclasses import dataclass
from typing import Any, Self
from uuid import UUID

from procurement_kernel.logging_config import get_logger

logger = get_logger("modules.inventory.config")


@dataclass
class InventoryConfig:
    """
    Configuration schema for the inventory ledger.

    ``stock_project_id`` is the sentinel project meaning "general stock":
    receipts for it land in the available pool, receipts for any other
    project land in the assigned pool with an assignment.
    """

    stock_project_id: UUID | None = None
    quantity_decimal_places: int = 4

    # Reversals
    reversal_same_day_only: bool = True
    min_reversal_reason_length: int = 3

    def __post_init__(self):
        if self.min_reversal_reason_length < 1:
            raise ValueError("min_reversal_reason_length must be at least 1")
        logger.info(
            "inventory_config_initialized",
            extra={
                "stock_project_id": str(self.stock_project_id) if self.stock_project_id else None,
                "reversal_same_day_only": self.reversal_same_day_only,
                "min_reversal_reason_length": self.min_reversal_reason_length,
            },
        )

    def is_stock_project(self, project_id: UUID | None) -> bool:
        """Orders without a project, or for the sentinel project, feed general stock."""
        return project_id is None or project_id == self.stock_project_id

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        logger.info(
            "inventory_config_loading_from_dict",
            extra={"keys": sorted(data.keys())},
        )
        data = dict(data)
        if data.get("stock_project_id"):
            data["stock_project_id"] = UUID(str(data["stock_project_id"]))
        return cls(**data)
