"""
Incremental Cost Module.

Freight, customs duties and similar costs distributed over the material
lines of base purchase orders and capitalized into inventory valuation.
"""

from procurement_modules.incremental.config import IncrementalCostConfig
from procurement_modules.incremental.models import (
    CloseResult,
    CostType,
    DistributionItem,
    IncrementalCostApplication,
    IncrementalCostOrder,
    IncrementalCostStatus,
)

__all__ = [
    "CloseResult",
    "CostType",
    "DistributionItem",
    "IncrementalCostApplication",
    "IncrementalCostConfig",
    "IncrementalCostOrder",
    "IncrementalCostStatus",
]
