"""
Order Totals Engine - subtotal, tax, withholding and total for a purchase order.

Pure functions with no I/O.  Rates are caller-supplied configuration; this
engine does not know any tax regulation.

Rules:
    - Net-price lines (price already includes tax) are reduced to a pre-tax
      base ``price / (1 + tax_rate)`` when tax applies to that line.
    - Import lines are exempt from tax and withholding.  With
      ``ImportExemptionScope.LINE`` only the import lines are exempt; with
      ``ImportExemptionScope.ORDER`` a single import line exempts the whole
      order.
    - ``total = subtotal + tax - withholding`` unless a forced total is given,
      in which case it is used verbatim.

Usage:
    from procurement_engines.tax import OrderTotalsCalculator, PricedLine, TaxSettings

    calculator = OrderTotalsCalculator()
    totals = calculator.calculate(
        lines=[PricedLine("L1", Decimal("2"), Decimal("100"))],
        settings=TaxSettings(tax_rate=Decimal("0.16")),
    )
    totals.total  # Decimal("232.0000")
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

from procurement_engines.tracer import traced_engine
from procurement_kernel.db.types import TOTALS_DECIMAL_PLACES, ZERO, round_money, to_decimal
from procurement_kernel.logging_config import get_logger

logger = get_logger("engines.tax")

UNIT_PRICE_DECIMAL_PLACES = 6


class ImportExemptionScope(str, Enum):
    """How far an import flag reaches when exempting tax."""

    LINE = "line"
    ORDER = "order"


@dataclass(frozen=True)
class TaxSettings:
    """
    Rates and switches used for one calculation.

    Stored on quotes and orders as the frozen calculation snapshot so that a
    forced total keeps the exact settings it was agreed under.
    """

    tax_rate: Decimal = Decimal("0.16")
    withholding_rate: Decimal = Decimal("0")
    tax_enabled: bool = True
    withholding_enabled: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "tax_rate", to_decimal(self.tax_rate))
        object.__setattr__(self, "withholding_rate", to_decimal(self.withholding_rate))
        if self.tax_rate < ZERO:
            raise ValueError("Tax rate cannot be negative")
        if self.withholding_rate < ZERO:
            raise ValueError("Withholding rate cannot be negative")

    @property
    def applies_tax(self) -> bool:
        return self.tax_enabled and self.tax_rate > ZERO

    @property
    def applies_withholding(self) -> bool:
        return self.withholding_enabled and self.withholding_rate > ZERO

    def to_snapshot(self) -> dict[str, Any]:
        return {
            "tax_rate": str(self.tax_rate),
            "withholding_rate": str(self.withholding_rate),
            "tax_enabled": self.tax_enabled,
            "withholding_enabled": self.withholding_enabled,
        }

    @classmethod
    def from_snapshot(cls, snapshot: Mapping[str, Any] | None, default: TaxSettings | None = None) -> TaxSettings:
        """Rebuild settings from a stored snapshot; missing keys fall back to ``default``."""
        base = default or cls()
        if not snapshot:
            return base
        return cls(
            tax_rate=to_decimal(snapshot.get("tax_rate", base.tax_rate)),
            withholding_rate=to_decimal(snapshot.get("withholding_rate", base.withholding_rate)),
            tax_enabled=bool(snapshot.get("tax_enabled", base.tax_enabled)),
            withholding_enabled=bool(snapshot.get("withholding_enabled", base.withholding_enabled)),
        )


@dataclass(frozen=True)
class PricedLine:
    """One quantity at one unit price, as quoted or as edited."""

    line_ref: str
    quantity: Decimal
    unit_price: Decimal
    is_net_price: bool = False
    is_import: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", to_decimal(self.quantity))
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price))
        if self.quantity <= ZERO:
            raise ValueError(f"Line {self.line_ref}: quantity must be positive")
        if self.unit_price < ZERO:
            raise ValueError(f"Line {self.line_ref}: unit price cannot be negative")


@dataclass(frozen=True)
class LineAmounts:
    line_ref: str
    quantity: Decimal
    base_unit_price: Decimal
    subtotal: Decimal
    is_taxable: bool


@dataclass(frozen=True)
class OrderTotals:
    """Computed amounts for one order, rounded to the totals precision."""

    subtotal: Decimal
    taxable_base: Decimal
    tax: Decimal
    withholding: Decimal
    total: Decimal
    is_import: bool
    is_total_forced: bool
    settings: TaxSettings
    lines: tuple[LineAmounts, ...] = field(default_factory=tuple)

    @property
    def computed_total(self) -> Decimal:
        """What the total would be without a forced override."""
        return self.subtotal + self.tax - self.withholding


def base_unit_price(unit_price: Decimal, is_net_price: bool, settings: TaxSettings, taxable: bool) -> Decimal:
    """Pre-tax unit price; only net prices on taxable lines are reduced."""
    if not is_net_price or not taxable or not settings.applies_tax:
        return unit_price
    return round_money(unit_price / (Decimal("1") + settings.tax_rate), UNIT_PRICE_DECIMAL_PLACES)


class OrderTotalsCalculator:
    """
    Computes order totals.

    Contract:
        Same lines + same settings + same forced total always give the same
        OrderTotals.  No clock, no I/O.
    """

    def __init__(
        self,
        decimal_places: int = TOTALS_DECIMAL_PLACES,
        exemption_scope: ImportExemptionScope = ImportExemptionScope.LINE,
    ):
        self._places = decimal_places
        self._scope = exemption_scope

    @property
    def exemption_scope(self) -> ImportExemptionScope:
        return self._scope

    @traced_engine("order_totals", "1.0", fingerprint_fields=("lines", "settings", "forced_total"))
    def calculate(
        self,
        *,
        lines: Sequence[PricedLine],
        settings: TaxSettings,
        forced_total: Decimal | None = None,
    ) -> OrderTotals:
        """
        Compute subtotal, tax, withholding and total.

        Raises:
            ValueError: empty line set or negative forced total.
        """
        if not lines:
            raise ValueError("Cannot compute totals for an order without lines")
        if forced_total is not None:
            forced_total = to_decimal(forced_total)
            if forced_total < ZERO:
                raise ValueError("Forced total cannot be negative")

        any_import = any(line.is_import for line in lines)
        order_exempt = self._scope == ImportExemptionScope.ORDER and any_import

        amounts: list[LineAmounts] = []
        subtotal = ZERO
        taxable_base = ZERO
        for line in lines:
            taxable = not order_exempt and not line.is_import
            unit = base_unit_price(line.unit_price, line.is_net_price, settings, taxable)
            line_subtotal = line.quantity * unit
            subtotal += line_subtotal
            if taxable:
                taxable_base += line_subtotal
            amounts.append(
                LineAmounts(
                    line_ref=line.line_ref,
                    quantity=line.quantity,
                    base_unit_price=unit,
                    subtotal=round_money(line_subtotal, self._places),
                    is_taxable=taxable,
                )
            )

        subtotal = round_money(subtotal, self._places)
        taxable_base = round_money(taxable_base, self._places)
        tax = round_money(taxable_base * settings.tax_rate, self._places) if settings.applies_tax else ZERO
        withholding = (
            round_money(taxable_base * settings.withholding_rate, self._places)
            if settings.applies_withholding
            else ZERO
        )
        total = forced_total if forced_total is not None else subtotal + tax - withholding

        logger.debug(
            "order_totals_computed",
            extra={
                "line_count": len(lines),
                "subtotal": str(subtotal),
                "tax": str(tax),
                "withholding": str(withholding),
                "total": str(total),
                "is_import": any_import,
                "exemption_scope": self._scope.value,
                "is_total_forced": forced_total is not None,
            },
        )

        return OrderTotals(
            subtotal=subtotal,
            taxable_base=taxable_base,
            tax=tax,
            withholding=withholding,
            total=round_money(total, self._places),
            is_import=any_import,
            is_total_forced=forced_total is not None,
            settings=settings,
            lines=tuple(amounts),
        )
