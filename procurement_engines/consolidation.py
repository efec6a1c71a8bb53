"""
Module: procurement_engines.consolidation
Responsibility:
    Turn the selected quote options of a requisition into purchase order
    drafts: one draft per supplier, each internally consistent (single
    currency, one set of tax settings, totals computed by the order totals
    engine).

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The procurement service
    loads the selections under row locks, calls ``consolidate`` and
    persists the drafts.

Invariants enforced:
    - Exactly one draft per supplier present in the selection.
    - All lines of a draft share one currency.
    - Net price and forced total never appear on the same option.
    - A forced total (and its frozen snapshot) is carried verbatim; the
      group's tax and withholding are computed with the snapshot's rates.
    - Drafts are emitted in order of first appearance of each supplier,
      lines in input order, so replays are deterministic.

Failure modes:
    - InvalidQuoteGroupingError on mixed currencies, conflicting flags, or
      disagreeing forced totals within one supplier group.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from procurement_engines.tax import (
    ImportExemptionScope,
    OrderTotals,
    OrderTotalsCalculator,
    PricedLine,
    TaxSettings,
)
from procurement_engines.tracer import traced_engine
from procurement_kernel.db.types import TOTALS_DECIMAL_PLACES, to_decimal
from procurement_kernel.exceptions import InvalidQuoteGroupingError
from procurement_kernel.logging_config import get_logger

logger = get_logger("engines.consolidation")


@dataclass(frozen=True)
class QuoteSelection:
    """A selected quote option, flattened with its requisition line data."""

    option_id: UUID
    requisition_line_id: UUID
    supplier_id: UUID
    quantity: Decimal
    unit_price: Decimal
    currency: str
    material_id: UUID | None = None
    description: str = ""
    unit: str = "pza"
    is_net_price: bool = False
    is_import: bool = False
    is_immediate_delivery: bool = True
    is_total_forced: bool = False
    forced_total: Decimal | None = None
    calculation_snapshot: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", to_decimal(self.quantity))
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price))
        if self.forced_total is not None:
            object.__setattr__(self, "forced_total", to_decimal(self.forced_total))


@dataclass(frozen=True)
class DraftLine:
    option_id: UUID
    requisition_line_id: UUID
    material_id: UUID | None
    description: str
    unit: str
    quantity: Decimal
    unit_price: Decimal  # pre-tax base
    is_import: bool
    subtotal: Decimal


@dataclass(frozen=True)
class PurchaseOrderDraft:
    """One supplier's share of a consolidation."""

    supplier_id: UUID
    currency: str
    lines: tuple[DraftLine, ...]
    totals: OrderTotals
    has_immediate_delivery: bool = True
    option_ids: tuple[UUID, ...] = field(default_factory=tuple)

    @property
    def subtotal(self) -> Decimal:
        return self.totals.subtotal

    @property
    def tax(self) -> Decimal:
        return self.totals.tax

    @property
    def withholding(self) -> Decimal:
        return self.totals.withholding

    @property
    def total(self) -> Decimal:
        return self.totals.total

    @property
    def is_total_forced(self) -> bool:
        return self.totals.is_total_forced

    @property
    def calculation_snapshot(self) -> dict[str, Any]:
        return self.totals.settings.to_snapshot()


def check_price_flags(option_id: UUID, is_net_price: bool, is_total_forced: bool) -> None:
    """Net price and forced total are mutually exclusive on one option."""
    if is_net_price and is_total_forced:
        raise InvalidQuoteGroupingError(
            f"option:{option_id}",
            "net price and forced total cannot be combined on one option",
        )


class QuoteConsolidationEngine:
    """
    Groups selections by supplier and prices each group.

    The engine holds only configuration (default tax settings, totals
    precision, import exemption scope); every call is independent.
    """

    def __init__(
        self,
        default_settings: TaxSettings | None = None,
        decimal_places: int = TOTALS_DECIMAL_PLACES,
        exemption_scope: ImportExemptionScope = ImportExemptionScope.LINE,
    ):
        self._default_settings = default_settings or TaxSettings()
        self._calculator = OrderTotalsCalculator(decimal_places, exemption_scope)

    @traced_engine("quote_consolidation", "1.0", fingerprint_fields=("selections",))
    def consolidate(self, *, selections: Sequence[QuoteSelection]) -> tuple[PurchaseOrderDraft, ...]:
        """
        Partition selections by supplier and emit one draft per supplier.

        Returns an empty tuple for an empty selection.
        """
        groups: dict[UUID, list[QuoteSelection]] = {}
        for selection in selections:
            check_price_flags(selection.option_id, selection.is_net_price, selection.is_total_forced)
            groups.setdefault(selection.supplier_id, []).append(selection)

        drafts = tuple(
            self._build_draft(supplier_id, group) for supplier_id, group in groups.items()
        )

        logger.info(
            "quotes_consolidated",
            extra={
                "selection_count": len(selections),
                "draft_count": len(drafts),
                "suppliers": [str(d.supplier_id) for d in drafts],
            },
        )
        return drafts

    def _build_draft(self, supplier_id: UUID, group: list[QuoteSelection]) -> PurchaseOrderDraft:
        group_key = f"supplier:{supplier_id}"

        currencies = sorted({s.currency for s in group})
        if len(currencies) > 1:
            logger.warning(
                "consolidation_mixed_currency",
                extra={"supplier_id": str(supplier_id), "currencies": currencies},
            )
            raise InvalidQuoteGroupingError(
                group_key, f"mixed currencies in one order: {', '.join(currencies)}"
            )

        forced_total, settings = self._resolve_forced(group_key, group)

        totals = self._calculator.calculate(
            lines=[
                PricedLine(
                    line_ref=str(s.option_id),
                    quantity=s.quantity,
                    unit_price=s.unit_price,
                    is_net_price=s.is_net_price,
                    is_import=s.is_import,
                )
                for s in group
            ],
            settings=settings,
            forced_total=forced_total,
        )

        lines = tuple(
            DraftLine(
                option_id=s.option_id,
                requisition_line_id=s.requisition_line_id,
                material_id=s.material_id,
                description=s.description,
                unit=s.unit,
                quantity=s.quantity,
                unit_price=amounts.base_unit_price,
                is_import=s.is_import,
                subtotal=amounts.subtotal,
            )
            for s, amounts in zip(group, totals.lines)
        )

        return PurchaseOrderDraft(
            supplier_id=supplier_id,
            currency=currencies[0],
            lines=lines,
            totals=totals,
            has_immediate_delivery=all(s.is_immediate_delivery for s in group),
            option_ids=tuple(s.option_id for s in group),
        )

    def _resolve_forced(
        self, group_key: str, group: list[QuoteSelection]
    ) -> tuple[Decimal | None, TaxSettings]:
        forced = [s for s in group if s.is_total_forced]
        if not forced:
            return None, self._default_settings

        first = forced[0]
        if first.forced_total is None:
            raise InvalidQuoteGroupingError(
                group_key, f"option {first.option_id} is flagged as forced without a total"
            )
        for other in forced[1:]:
            if other.forced_total != first.forced_total or dict(other.calculation_snapshot or {}) != dict(
                first.calculation_snapshot or {}
            ):
                raise InvalidQuoteGroupingError(
                    group_key, "forced totals disagree within one supplier group"
                )

        settings = TaxSettings.from_snapshot(first.calculation_snapshot, self._default_settings)
        return first.forced_total, settings
