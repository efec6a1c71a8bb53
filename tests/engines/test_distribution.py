"""
Tests for the Incremental Cost Distribution Engine.

Covers:
- Proportional distribution in a single currency
- Multi-currency normalization
- Residual assignment and exact sums
- Exclusion of lines without material
- Failure modes
- Splitting one line's increment over receipt locations
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from procurement_engines.distribution import DistributionBaseLine, IncrementalCostDistributor, split_amount
from procurement_kernel.domain.values import Money
from procurement_kernel.exceptions import MissingExchangeRateError, NoDistributionBaseError


def _line(quantity, unit_price, currency="MXN", order_id=None, material=True):
    return DistributionBaseLine(
        order_id=order_id or uuid4(),
        line_id=uuid4(),
        material_id=uuid4() if material else None,
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        currency=currency,
    )


class TestProportionalDistribution:
    def setup_method(self):
        self.distributor = IncrementalCostDistributor()

    def test_single_currency_proportional(self):
        lines = [_line("1", "100"), _line("2", "100"), _line("3", "100")]

        result = self.distributor.distribute(
            base_lines=lines,
            exchange_rates={},
            incremental_total=Money.of("900.00", "MXN"),
        )

        assert [d.increment for d in result.lines] == [
            Decimal("150.00"),
            Decimal("300.00"),
            Decimal("450.00"),
        ]
        assert result.residual == Decimal("0")
        assert result.total_base == Decimal("600")

    def test_percentages(self):
        lines = [_line("1", "25"), _line("3", "25")]

        result = self.distributor.distribute(
            base_lines=lines,
            exchange_rates={},
            incremental_total=Money.of("100.00", "MXN"),
        )

        assert [d.percentage for d in result.lines] == [Decimal("25"), Decimal("75")]

    def test_amount_by_order(self):
        order_a, order_b = uuid4(), uuid4()
        lines = [
            _line("1", "100", order_id=order_a),
            _line("1", "100", order_id=order_b),
            _line("2", "100", order_id=order_a),
        ]

        result = self.distributor.distribute(
            base_lines=lines,
            exchange_rates={},
            incremental_total=Money.of("400.00", "MXN"),
        )

        assert result.amount_by_order() == {order_a: Decimal("300.00"), order_b: Decimal("100.00")}


class TestMultiCurrency:
    def test_foreign_lines_normalized_with_rate(self):
        distributor = IncrementalCostDistributor()
        lines = [_line("1", "100", currency="USD"), _line("1", "1700", currency="MXN")]

        result = distributor.distribute(
            base_lines=lines,
            exchange_rates={"USD": Decimal("17")},
            incremental_total=Money.of("340.00", "MXN"),
        )

        usd_line, mxn_line = result.lines
        assert usd_line.exchange_rate == Decimal("17")
        assert usd_line.normalized_cost == Decimal("1700")
        assert mxn_line.exchange_rate == Decimal("1")
        assert usd_line.increment == Decimal("170.00")
        assert mxn_line.increment == Decimal("170.00")
        assert all(d.currency == "MXN" for d in result.lines)

    def test_missing_rate_raises(self):
        distributor = IncrementalCostDistributor()

        with pytest.raises(MissingExchangeRateError) as exc_info:
            distributor.distribute(
                base_lines=[_line("1", "100", currency="USD")],
                exchange_rates={},
                incremental_total=Money.of("10.00", "MXN"),
            )

        assert exc_info.value.currency == "USD"
        assert exc_info.value.reference_currency == "MXN"

    def test_reference_rate_forced_to_one(self):
        distributor = IncrementalCostDistributor()

        result = distributor.distribute(
            base_lines=[_line("1", "100")],
            exchange_rates={"MXN": Decimal("5")},
            incremental_total=Money.of("10.00", "MXN"),
        )

        assert result.lines[0].exchange_rate == Decimal("1")

    def test_non_positive_rate_rejected(self):
        with pytest.raises(ValueError, match="must be positive"):
            IncrementalCostDistributor().distribute(
                base_lines=[_line("1", "100", currency="USD")],
                exchange_rates={"USD": Decimal("0")},
                incremental_total=Money.of("10.00", "MXN"),
            )


class TestResidual:
    def test_residual_goes_to_largest_share(self):
        distributor = IncrementalCostDistributor()
        lines = [_line("1", "1"), _line("1", "1"), _line("1", "1")]

        result = distributor.distribute(
            base_lines=lines,
            exchange_rates={},
            incremental_total=Money.of("100.00", "MXN"),
        )

        # 33.33 x 3 = 99.99; ties resolve to the first line
        assert [d.increment for d in result.lines] == [
            Decimal("33.34"),
            Decimal("33.33"),
            Decimal("33.33"),
        ]
        assert result.residual == Decimal("0.01")
        assert result.lines[0].absorbed_residual is True
        assert result.distributed_total == Decimal("100.00")

    def test_zero_decimal_currency(self):
        distributor = IncrementalCostDistributor()
        lines = [_line("1", "1", currency="CLP"), _line("2", "1", currency="CLP")]

        result = distributor.distribute(
            base_lines=lines,
            exchange_rates={},
            incremental_total=Money.of("100", "CLP"),
        )

        assert [d.increment for d in result.lines] == [Decimal("33"), Decimal("67")]
        assert result.distributed_total == Decimal("100")

    @settings(max_examples=60, deadline=None)
    @given(
        costs=st.lists(
            st.tuples(
                st.integers(min_value=1, max_value=500),
                st.decimals(min_value="0.01", max_value="9999.99", places=2),
            ),
            min_size=1,
            max_size=8,
        ),
        total=st.decimals(min_value="0.00", max_value="999999.99", places=2),
    )
    def test_increments_always_sum_exactly(self, costs, total):
        lines = [_line(str(q), str(p)) for q, p in costs]

        result = IncrementalCostDistributor().distribute(
            base_lines=lines,
            exchange_rates={},
            incremental_total=Money.of(total, "MXN"),
        )

        assert result.distributed_total == total
        assert len(result.lines) == len(lines)


class TestEligibility:
    def test_lines_without_material_excluded(self):
        distributor = IncrementalCostDistributor()
        service_line = _line("1", "500", material=False)
        material_line = _line("1", "100")

        result = distributor.distribute(
            base_lines=[service_line, material_line],
            exchange_rates={},
            incremental_total=Money.of("50.00", "MXN"),
        )

        assert [d.line_id for d in result.lines] == [material_line.line_id]
        assert result.excluded_line_ids == (service_line.line_id,)
        assert result.lines[0].increment == Decimal("50.00")

    def test_no_eligible_base_raises(self):
        with pytest.raises(NoDistributionBaseError):
            IncrementalCostDistributor().distribute(
                base_lines=[_line("1", "100", material=False)],
                exchange_rates={},
                incremental_total=Money.of("50.00", "MXN"),
            )

    def test_zero_base_raises(self):
        with pytest.raises(NoDistributionBaseError):
            IncrementalCostDistributor().distribute(
                base_lines=[_line("1", "0")],
                exchange_rates={},
                incremental_total=Money.of("50.00", "MXN"),
            )

    def test_negative_total_rejected(self):
        with pytest.raises(ValueError, match="cannot be negative"):
            IncrementalCostDistributor().distribute(
                base_lines=[_line("1", "100")],
                exchange_rates={},
                incremental_total=Money.of("-1.00", "MXN"),
            )

    def test_idempotent(self):
        lines = [_line("3", "7.77"), _line("5", "1.01", currency="USD")]
        kwargs = {
            "base_lines": lines,
            "exchange_rates": {"USD": Decimal("17.2031")},
            "incremental_total": Money.of("123.45", "MXN"),
        }

        first = IncrementalCostDistributor().distribute(**kwargs)
        second = IncrementalCostDistributor().distribute(**kwargs)

        assert first == second


class TestSplitAmount:
    def test_proportional_to_received_quantity(self):
        assert split_amount(Decimal("200.00"), [Decimal("6"), Decimal("4")], 2) == [
            Decimal("120.00"), Decimal("80.00"),
        ]

    def test_residual_to_first_of_tied_parts(self):
        thirds = split_amount(Decimal("10.00"), [Decimal("1"), Decimal("1"), Decimal("1")], 2)
        assert thirds == [Decimal("3.34"), Decimal("3.33"), Decimal("3.33")]

    def test_single_location_takes_everything(self):
        assert split_amount(Decimal("20.00"), [Decimal("3")], 2) == [Decimal("20.00")]

    def test_zero_weights_rejected(self):
        with pytest.raises(ValueError):
            split_amount(Decimal("1.00"), [Decimal("0")], 2)

    @given(
        amount=st.decimals(min_value=Decimal("0"), max_value=Decimal("100000"), places=2),
        weights=st.lists(st.integers(min_value=1, max_value=1000), min_size=1, max_size=6),
    )
    @settings(max_examples=200, deadline=None)
    def test_parts_sum_exactly(self, amount, weights):
        parts = split_amount(amount, [Decimal(w) for w in weights], 2)

        assert sum(parts, Decimal("0")) == amount
