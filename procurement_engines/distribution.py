"""
Module: procurement_engines.distribution
Responsibility:
    Distribute an incremental cost (freight, duties, insurance) over the
    material lines of one or more base purchase orders, proportionally to
    each line's cost normalized into the incremental cost's currency.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Preview calls it directly;
    close calls it again with the stored inputs and persists the result.

Invariants enforced:
    - Only lines with a material participate.
    - Every currency present must have a rate; the reference currency's rate
      is always 1 and parity is never assumed for any other currency.
    - Each increment is rounded to the reference currency's ISO 4217
      precision; the residual goes to the single largest-share line (first
      in input order on ties), so the increments sum to the input exactly.
    - Idempotent: identical inputs give identical output.

Failure modes:
    - MissingExchangeRateError for a present currency without a rate.
    - NoDistributionBaseError when eligible lines sum to zero.
    - ValueError on negative totals or non-positive rates.

Usage:
    distributor = IncrementalCostDistributor()
    result = distributor.distribute(
        base_lines=[...],
        exchange_rates={"USD": Decimal("17.20")},
        incremental_total=Money.of("900.00", "MXN"),
    )
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from procurement_engines.tracer import traced_engine
from procurement_kernel.db.types import ZERO, round_money, to_decimal, validate_currency
from procurement_kernel.domain.values import ExchangeRate, Money
from procurement_kernel.exceptions import MissingExchangeRateError, NoDistributionBaseError
from procurement_kernel.logging_config import get_logger

logger = get_logger("engines.distribution")

PERCENT_DECIMAL_PLACES = 4
BASE_COST_DECIMAL_PLACES = 4


@dataclass(frozen=True)
class DistributionBaseLine:
    """A purchase order line offered as distribution base."""

    order_id: UUID
    line_id: UUID
    material_id: UUID | None
    quantity: Decimal
    unit_price: Decimal
    currency: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", to_decimal(self.quantity))
        object.__setattr__(self, "unit_price", to_decimal(self.unit_price))
        object.__setattr__(self, "currency", validate_currency(self.currency))

    @property
    def base_cost(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class DistributionLine:
    """One line of a distribution preview or snapshot."""

    order_id: UUID
    line_id: UUID
    material_id: UUID
    base_cost: Decimal
    base_currency: str
    exchange_rate: Decimal
    normalized_cost: Decimal
    percentage: Decimal
    increment: Decimal
    currency: str
    absorbed_residual: bool = False


@dataclass(frozen=True)
class DistributionResult:
    lines: tuple[DistributionLine, ...]
    incremental_total: Money
    total_base: Decimal
    residual: Decimal
    excluded_line_ids: tuple[UUID, ...] = ()

    @property
    def distributed_total(self) -> Decimal:
        return sum((line.increment for line in self.lines), ZERO)

    def amount_by_order(self) -> dict[UUID, Decimal]:
        """Total increment per base order, in input order of first appearance."""
        totals: dict[UUID, Decimal] = {}
        for line in self.lines:
            totals[line.order_id] = totals.get(line.order_id, ZERO) + line.increment
        return totals


class IncrementalCostDistributor:
    """Proportional incremental cost distribution with exact residual handling."""

    @traced_engine(
        "incremental_distribution",
        "1.0",
        fingerprint_fields=("base_lines", "exchange_rates", "incremental_total"),
    )
    def distribute(
        self,
        *,
        base_lines: Sequence[DistributionBaseLine],
        exchange_rates: Mapping[str, Decimal],
        incremental_total: Money,
    ) -> DistributionResult:
        """
        Compute each eligible line's share of ``incremental_total``.

        Postconditions:
            - sum(line.increment) == incremental_total.amount exactly.
        """
        if incremental_total.is_negative:
            raise ValueError(f"Incremental total cannot be negative: {incremental_total}")

        reference = incremental_total.currency
        rates = self._normalize_rates(exchange_rates, reference)

        eligible = [line for line in base_lines if line.material_id is not None]
        excluded = tuple(line.line_id for line in base_lines if line.material_id is None)

        normalized: list[tuple[DistributionBaseLine, Decimal, Decimal]] = []
        for line in eligible:
            rate = rates.get(line.currency)
            if rate is None:
                logger.warning(
                    "distribution_missing_rate",
                    extra={"currency": line.currency, "reference_currency": reference},
                )
                raise MissingExchangeRateError(line.currency, reference)
            cost = rate.convert(Money(amount=line.base_cost, currency=line.currency)).amount
            normalized.append((line, rate.rate, cost))

        total_base = sum((cost for _, _, cost in normalized), ZERO)
        if total_base == ZERO:
            raise NoDistributionBaseError(len(eligible))

        places = incremental_total.decimal_places
        quantum = Decimal(10) ** -places
        total = incremental_total.amount

        increments: list[Decimal] = []
        shares: list[Decimal] = []
        for _, _, cost in normalized:
            share = cost / total_base
            shares.append(share)
            increments.append((total * share).quantize(quantum, rounding=ROUND_HALF_UP))

        residual = total - sum(increments, ZERO)
        largest = max(range(len(shares)), key=lambda i: (shares[i], -i))
        increments[largest] += residual

        lines = tuple(
            DistributionLine(
                order_id=line.order_id,
                line_id=line.line_id,
                material_id=line.material_id,
                base_cost=round_money(line.base_cost, BASE_COST_DECIMAL_PLACES),
                base_currency=line.currency,
                exchange_rate=rate,
                normalized_cost=round_money(cost, BASE_COST_DECIMAL_PLACES),
                percentage=round_money(shares[i] * Decimal("100"), PERCENT_DECIMAL_PLACES),
                increment=increments[i],
                currency=reference,
                absorbed_residual=(i == largest),
            )
            for i, (line, rate, cost) in enumerate(normalized)
        )

        logger.info(
            "incremental_cost_distributed",
            extra={
                "line_count": len(lines),
                "excluded_count": len(excluded),
                "incremental_total": str(total),
                "currency": reference,
                "total_base": str(total_base),
                "residual": str(residual),
            },
        )

        return DistributionResult(
            lines=lines,
            incremental_total=incremental_total,
            total_base=total_base,
            residual=residual,
            excluded_line_ids=excluded,
        )

    @staticmethod
    def _normalize_rates(exchange_rates: Mapping[str, Decimal], reference: str) -> dict[str, ExchangeRate]:
        rates = {
            rate.from_currency: rate
            for rate in (ExchangeRate(code, reference, to_decimal(value)) for code, value in exchange_rates.items())
        }
        rates[reference] = ExchangeRate.identity(reference)
        return rates


def split_amount(amount: Decimal, weights: Sequence[Decimal], places: int) -> list[Decimal]:
    """
    Split ``amount`` proportionally to ``weights`` at ``places`` decimals.

    The rounding residual goes to the largest weight (first on ties), so the
    parts sum to ``amount`` exactly.
    """
    total = sum(weights, ZERO)
    if total <= ZERO:
        raise ValueError(f"Cannot split over weights summing to {total}")
    quantum = Decimal(10) ** -places
    parts = [(amount * weight / total).quantize(quantum, rounding=ROUND_HALF_UP) for weight in weights]
    largest = max(range(len(weights)), key=lambda i: (weights[i], -i))
    parts[largest] += amount - sum(parts, ZERO)
    return parts
