"""
Pure calculation engines: order totals, quote consolidation, incremental
cost distribution, liquidation and order diffing.

Engines never touch the database or the clock; services load state, call an
engine, and persist what it returns.
"""

from procurement_engines.consolidation import (
    DraftLine,
    PurchaseOrderDraft,
    QuoteConsolidationEngine,
    QuoteSelection,
)
from procurement_engines.distribution import (
    DistributionBaseLine,
    DistributionLine,
    DistributionResult,
    IncrementalCostDistributor,
    split_amount,
)
from procurement_engines.liquidation import Liquidation, PaymentStatus, compute_liquidation
from procurement_engines.order_diff import LineDiff, diff_fields, diff_lines
from procurement_engines.tax import (
    ImportExemptionScope,
    OrderTotals,
    OrderTotalsCalculator,
    PricedLine,
    TaxSettings,
)

__all__ = [
    "DistributionBaseLine",
    "DistributionLine",
    "DistributionResult",
    "DraftLine",
    "ImportExemptionScope",
    "IncrementalCostDistributor",
    "LineDiff",
    "Liquidation",
    "OrderTotals",
    "OrderTotalsCalculator",
    "PaymentStatus",
    "PricedLine",
    "PurchaseOrderDraft",
    "QuoteConsolidationEngine",
    "QuoteSelection",
    "TaxSettings",
    "compute_liquidation",
    "diff_fields",
    "diff_lines",
    "split_amount",
]
