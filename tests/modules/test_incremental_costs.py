"""
Tests for IncrementalCostService.

Base orders are import orders (the default rule), so their lines carry no
tax: 10 x 100.00 plus 5 x 20.00 gives a 1100.00 MXN base.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from procurement_kernel.exceptions import (
    AlreadyClosedError,
    IncrementalCostNotFoundError,
    InvalidBaseOrderError,
    InvalidTransitionError,
    MissingExchangeRateError,
    PurchaseOrderNotFoundError,
)
from procurement_modules.incremental.config import IncrementalCostConfig
from procurement_modules.incremental.models import CostType, IncrementalCostStatus
from procurement_modules.incremental.service import IncrementalCostService
from procurement_modules.inventory.models import MovementType
from procurement_modules.procurement.models import ReceiptLineInput


@pytest.fixture
def import_order(make_requisition, quote_and_select, procurement_service, supplier_id, test_actor_id):
    requisition = make_requisition("10", "5")
    quote_and_select(requisition.lines[0], supplier_id, "100", is_import=True)
    quote_and_select(requisition.lines[1], supplier_id, "20", is_import=True)
    (order,) = procurement_service.consolidate_quotes(requisition.id, test_actor_id).orders
    return order


@pytest.fixture
def usd_import_order(make_requisition, quote_and_select, procurement_service, test_actor_id):
    requisition = make_requisition("4")
    quote_and_select(requisition.lines[0], uuid4(), "25", currency="USD", is_import=True)
    (order,) = procurement_service.consolidate_quotes(requisition.id, test_actor_id).orders
    return order


@pytest.fixture
def received_location(import_order, advance_order, procurement_service, test_actor_id):
    """Receive the first line of ``import_order`` only."""
    order = advance_order(import_order, "in_process")
    location = uuid4()
    procurement_service.receive_purchase_order(
        order.id, [ReceiptLineInput(order.lines[0].id, Decimal("10"), location)], test_actor_id,
    )
    return location


class TestCreate:
    def test_numbered_draft_with_applications(self, import_order, incremental_service, test_actor_id):
        cost = incremental_service.create_incremental_cost(
            CostType.FREIGHT, Decimal("220.00"), "MXN", [import_order.id, import_order.id], test_actor_id,
            description="Laredo crossing",
        )

        assert cost.number == "INC-0001"
        assert cost.status == IncrementalCostStatus.DRAFT
        assert cost.cost_type == CostType.FREIGHT
        assert cost.base_order_ids == (import_order.id,)
        assert cost.applications[0].assigned_amount is None
        assert cost.exchange_rates == {"MXN": Decimal("1")}

    def test_rates_snapshotted_with_reference(self, import_order, incremental_service, test_actor_id):
        cost = incremental_service.create_incremental_cost(
            CostType.CUSTOMS_DUTY, Decimal("100"), "mxn", [import_order.id], test_actor_id,
            exchange_rates={"usd": Decimal("17.20")},
        )

        assert cost.currency == "MXN"
        assert cost.exchange_rates == {"USD": Decimal("17.20"), "MXN": Decimal("1")}

    def test_total_must_be_positive(self, import_order, incremental_service, test_actor_id):
        with pytest.raises(ValueError, match="positive"):
            incremental_service.create_incremental_cost(
                CostType.FREIGHT, Decimal("0"), "MXN", [import_order.id], test_actor_id,
            )

    def test_total_must_fit_currency_precision(self, import_order, incremental_service, test_actor_id):
        with pytest.raises(ValueError, match="more decimals"):
            incremental_service.create_incremental_cost(
                CostType.FREIGHT, Decimal("10.005"), "MXN", [import_order.id], test_actor_id,
            )

    def test_needs_base_orders(self, incremental_service, test_actor_id):
        with pytest.raises(ValueError, match="at least one base"):
            incremental_service.create_incremental_cost(CostType.FREIGHT, Decimal("1"), "MXN", [], test_actor_id)

    def test_non_positive_rate_rejected(self, import_order, incremental_service, test_actor_id):
        with pytest.raises(ValueError, match="must be positive"):
            incremental_service.create_incremental_cost(
                CostType.FREIGHT, Decimal("1"), "MXN", [import_order.id], test_actor_id,
                exchange_rates={"USD": Decimal("0")},
            )

    def test_unknown_base_order(self, incremental_service, test_actor_id):
        with pytest.raises(PurchaseOrderNotFoundError):
            incremental_service.create_incremental_cost(CostType.FREIGHT, Decimal("1"), "MXN", [uuid4()], test_actor_id)

    def test_cancelled_base_order_rejected(self, import_order, procurement_service, incremental_service, test_actor_id):
        procurement_service.cancel_purchase_order(import_order.id, test_actor_id)

        with pytest.raises(InvalidBaseOrderError, match="cancelled"):
            incremental_service.create_incremental_cost(
                CostType.FREIGHT, Decimal("1"), "MXN", [import_order.id], test_actor_id,
            )

    def test_domestic_base_order_rejected(self, draft_order, incremental_service, test_actor_id):
        with pytest.raises(InvalidBaseOrderError, match="not an import order"):
            incremental_service.create_incremental_cost(
                CostType.FREIGHT, Decimal("1"), "MXN", [draft_order.id], test_actor_id,
            )

    def test_domestic_base_allowed_when_configured(
        self, session, deterministic_clock, draft_order, test_actor_id,
    ):
        service = IncrementalCostService(
            session, clock=deterministic_clock,
            config=IncrementalCostConfig(require_import_base_orders=False),
        )

        cost = service.create_incremental_cost(CostType.HANDLING, Decimal("50"), "MXN", [draft_order.id], test_actor_id)

        assert cost.base_order_ids == (draft_order.id,)


class TestPreview:
    def test_proportional_to_line_value(self, import_order, incremental_service):
        result = incremental_service.preview_distribution([import_order.id], {}, Decimal("220.00"), "MXN")

        assert [line.increment for line in result.lines] == [Decimal("200.00"), Decimal("20.00")]
        assert result.distributed_total == Decimal("220.00")
        assert result.amount_by_order() == {import_order.id: Decimal("220.00")}

    def test_mixed_currency_bases_use_rates(self, import_order, usd_import_order, incremental_service):
        # 1100 MXN and 100 USD at 17.00 -> 1100 and 1700
        result = incremental_service.preview_distribution(
            [import_order.id, usd_import_order.id], {"USD": Decimal("17")}, Decimal("2800.00"), "MXN",
        )

        assert result.total_base == Decimal("2800")
        assert result.amount_by_order() == {
            import_order.id: Decimal("1100.00"),
            usd_import_order.id: Decimal("1700.00"),
        }

    def test_missing_rate(self, import_order, usd_import_order, incremental_service):
        with pytest.raises(MissingExchangeRateError):
            incremental_service.preview_distribution(
                [import_order.id, usd_import_order.id], {}, Decimal("100"), "MXN",
            )


class TestLifecycle:
    def _create(self, service, order, actor_id, total="220.00", currency="MXN", rates=None):
        return service.create_incremental_cost(
            CostType.FREIGHT, Decimal(total), currency, [order.id], actor_id, exchange_rates=rates,
        )

    def test_close_requires_approval(self, import_order, incremental_service, test_actor_id):
        cost = self._create(incremental_service, import_order, test_actor_id)

        with pytest.raises(InvalidTransitionError):
            incremental_service.close_incremental_cost(cost.id, test_actor_id)

    def test_cancel(self, import_order, incremental_service, test_actor_id):
        cost = self._create(incremental_service, import_order, test_actor_id)

        cancelled = incremental_service.cancel_incremental_cost(cost.id, test_actor_id)

        assert cancelled.status == IncrementalCostStatus.CANCELLED
        with pytest.raises(InvalidTransitionError):
            incremental_service.approve_incremental_cost(cost.id, test_actor_id)

    def test_close_posts_valuation_for_received_lines(
        self, import_order, received_location, incremental_service, inventory_service, test_actor_id,
    ):
        cost = self._create(incremental_service, import_order, test_actor_id)
        incremental_service.approve_incremental_cost(cost.id, test_actor_id)

        result = incremental_service.close_incremental_cost(cost.id, test_actor_id)

        assert result.order.status == IncrementalCostStatus.CLOSED
        assert result.order.closed_at is not None
        assert result.order.applications[0].assigned_amount == Decimal("220.00")
        received_line, pending_line = import_order.lines
        assert result.unposted_lines == (pending_line.id,)
        assert len(result.movement_ids) == 1

        record = inventory_service.get_record(received_line.material_id, received_location)
        assert record.valuation_adjustment == Decimal("200.00")
        assert record.available == Decimal("10")
        (movement,) = inventory_service.list_movements(document_id=cost.id)
        assert movement.movement_type == MovementType.VALUATION_ADJUSTMENT
        assert movement.value_amount == Decimal("200.00")

        first, second = result.order.items
        assert first.movement_id == movement.id
        assert first.location_id == received_location
        assert second.movement_id is None
        assert second.increment == Decimal("20.00")

    def test_line_received_at_two_locations_splits_by_quantity(
        self, import_order, advance_order, procurement_service, incremental_service, inventory_service,
        test_actor_id,
    ):
        order = advance_order(import_order, "in_process")
        line = order.lines[0]
        dock, yard = uuid4(), uuid4()
        procurement_service.receive_purchase_order(
            order.id, [ReceiptLineInput(line.id, Decimal("6"), dock)], test_actor_id,
        )
        procurement_service.receive_purchase_order(
            order.id, [ReceiptLineInput(line.id, Decimal("4"), yard)], test_actor_id,
        )
        cost = self._create(incremental_service, import_order, test_actor_id)
        incremental_service.approve_incremental_cost(cost.id, test_actor_id)

        result = incremental_service.close_incremental_cost(cost.id, test_actor_id)

        assert inventory_service.get_record(line.material_id, dock).valuation_adjustment == Decimal("120.00")
        assert inventory_service.get_record(line.material_id, yard).valuation_adjustment == Decimal("80.00")
        assert len(result.movement_ids) == 2
        increments = {item.location_id: item.increment for item in result.order.items}
        assert increments == {dock: Decimal("120.00"), yard: Decimal("80.00"), None: Decimal("20.00")}
        assert sum(item.increment for item in result.order.items) == Decimal("220.00")

    def test_reversed_receipt_not_valued(
        self, import_order, advance_order, procurement_service, incremental_service, inventory_service,
        test_actor_id,
    ):
        order = advance_order(import_order, "in_process")
        line = order.lines[0]
        dock, yard = uuid4(), uuid4()
        procurement_service.receive_purchase_order(
            order.id, [ReceiptLineInput(line.id, Decimal("6"), dock)], test_actor_id,
        )
        wrong = procurement_service.receive_purchase_order(
            order.id, [ReceiptLineInput(line.id, Decimal("4"), yard)], test_actor_id,
        )
        inventory_service.reverse_movement(wrong.movement_ids[0], "received at the wrong yard", test_actor_id)
        cost = self._create(incremental_service, import_order, test_actor_id)
        incremental_service.approve_incremental_cost(cost.id, test_actor_id)

        incremental_service.close_incremental_cost(cost.id, test_actor_id)

        assert inventory_service.get_record(line.material_id, dock).valuation_adjustment == Decimal("200.00")
        assert inventory_service.get_record(line.material_id, yard).valuation_adjustment == Decimal("0")

    def test_foreign_cost_converted_to_record_currency(
        self, import_order, received_location, incremental_service, inventory_service, test_actor_id,
    ):
        # 1 MXN = 0.05 USD: shares are 10.00 and 1.00 USD; 10.00 USD is 200.00 MXN
        cost = self._create(
            incremental_service, import_order, test_actor_id,
            total="11.00", currency="USD", rates={"MXN": Decimal("0.05")},
        )
        incremental_service.approve_incremental_cost(cost.id, test_actor_id)

        result = incremental_service.close_incremental_cost(cost.id, test_actor_id)

        assert [line.increment for line in result.distribution.lines] == [Decimal("10.00"), Decimal("1.00")]
        record = inventory_service.get_record(import_order.lines[0].material_id, received_location)
        assert record.currency == "MXN"
        assert record.valuation_adjustment == Decimal("200.00")

    def test_closed_is_final(self, import_order, incremental_service, test_actor_id):
        cost = self._create(incremental_service, import_order, test_actor_id)
        incremental_service.approve_incremental_cost(cost.id, test_actor_id)
        incremental_service.close_incremental_cost(cost.id, test_actor_id)

        with pytest.raises(AlreadyClosedError):
            incremental_service.close_incremental_cost(cost.id, test_actor_id)
        with pytest.raises(AlreadyClosedError):
            incremental_service.cancel_incremental_cost(cost.id, test_actor_id)

    def test_close_with_missing_rate_rolls_back(
        self, import_order, usd_import_order, incremental_service, test_actor_id,
    ):
        cost = incremental_service.create_incremental_cost(
            CostType.FREIGHT, Decimal("100"), "MXN", [import_order.id, usd_import_order.id], test_actor_id,
        )
        incremental_service.approve_incremental_cost(cost.id, test_actor_id)

        with pytest.raises(MissingExchangeRateError):
            incremental_service.close_incremental_cost(cost.id, test_actor_id)

        assert incremental_service.get_incremental_cost(cost.id).status == IncrementalCostStatus.APPROVED

    def test_unknown_cost(self, incremental_service):
        with pytest.raises(IncrementalCostNotFoundError):
            incremental_service.get_incremental_cost(uuid4())
