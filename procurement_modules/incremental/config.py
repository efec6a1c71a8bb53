"""
Incremental Cost Configuration Schema.
"""

from dataclasses import dataclass
from typing import Any, Self

from procurement_kernel.logging_config import get_logger

logger = get_logger("modules.incremental.config")


@dataclass
class IncrementalCostConfig:
    """Rules for which purchase orders may carry incremental costs."""

    require_import_base_orders: bool = True
    number_prefix: str = "INC"

    def __post_init__(self):
        logger.info(
            "incremental_cost_config_initialized",
            extra={"require_import_base_orders": self.require_import_base_orders},
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(**data)
