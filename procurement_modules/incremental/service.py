"""
Incremental Cost Module Service (``procurement_modules.incremental.service``).

Responsibility
--------------
Registers incremental cost orders against base purchase orders, previews
their distribution, and on close persists the distribution snapshot and
posts valuation adjustments to the inventory records the base lines were
received into.

Architecture position
---------------------
**Modules layer**.  Distribution math is ``IncrementalCostDistributor``
(pure engine); valuation postings go through ``InventoryService`` with
``auto_commit=False`` so a close is one transaction.

Invariants enforced
-------------------
* Exchange rates are frozen on the order at creation; the order's own
  currency is always rate 1.
* Close happens once.  The distribution items and each application's
  ``assigned_amount`` are written in the same transaction as the valuation
  movements.
* One valuation movement per affected (material, location).

Failure modes
-------------
* ``IncrementalCostNotFoundError`` / ``PurchaseOrderNotFoundError``.
* ``InvalidBaseOrderError`` -- cancelled base order, or a non-import base
  order while ``require_import_base_orders`` is set.
* ``AlreadyClosedError`` -- any mutation of a closed order.
* ``InvalidTransitionError`` -- e.g. closing a draft.
* ``MissingExchangeRateError`` / ``NoDistributionBaseError`` from the engine.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from procurement_engines.distribution import (
    DistributionBaseLine,
    DistributionLine,
    DistributionResult,
    IncrementalCostDistributor,
    split_amount,
)
from procurement_kernel.db.types import (
    ZERO,
    currency_decimal_places,
    round_money,
    to_decimal,
    validate_currency,
)
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.values import ExchangeRate, Money
from procurement_kernel.exceptions import (
    AlreadyClosedError,
    IncrementalCostNotFoundError,
    InvalidBaseOrderError,
    MissingExchangeRateError,
    PurchaseOrderNotFoundError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.services.sequence_service import SequenceService, format_document_number
from procurement_modules._service_helpers import lock_by_id, transaction_boundary
from procurement_modules.incremental.config import IncrementalCostConfig
from procurement_modules.incremental.models import (
    CloseResult,
    CostType,
    IncrementalCostOrder,
    IncrementalCostStatus,
)
from procurement_modules.incremental.orm import (
    IncrementalCostApplicationModel,
    IncrementalCostDistributionItemModel,
    IncrementalCostOrderModel,
)
from procurement_modules.inventory.config import InventoryConfig
from procurement_modules.inventory.service import InventoryService
from procurement_modules.procurement.models import PurchaseOrderStatus
from procurement_modules.procurement.orm import PurchaseOrderModel
from procurement_modules.procurement.service import DOCUMENT_TYPE as PURCHASE_ORDER_DOCUMENT_TYPE
from procurement_modules.procurement.workflows import INCREMENTAL_COST_WORKFLOW, resolve_transition

logger = get_logger("modules.incremental.service")

DOCUMENT_TYPE = "incremental_cost"


class IncrementalCostService:
    """
    Incremental cost orders: create, preview, approve, cancel, close.

    Guarantees
    ----------
    * Each mutating method commits on success and rolls back on any
      exception.
    * ``preview_distribution`` writes nothing.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: IncrementalCostConfig | None = None,
        inventory_config: InventoryConfig | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or IncrementalCostConfig.with_defaults()
        self._sequences = SequenceService(session)
        self._distributor = IncrementalCostDistributor()
        self._inventory = InventoryService(
            session, clock=self._clock, config=inventory_config, auto_commit=False,
        )

    # =========================================================================
    # Create / preview
    # =========================================================================

    def create_incremental_cost(
        self,
        cost_type: CostType,
        total_amount: Decimal,
        currency: str,
        base_order_ids: Sequence[UUID],
        actor_id: UUID,
        exchange_rates: Mapping[str, Decimal] | None = None,
        supplier_id: UUID | None = None,
        description: str | None = None,
    ) -> IncrementalCostOrder:
        """
        Register an incremental cost over ``base_order_ids``.

        ``exchange_rates`` maps each foreign currency to its value in
        ``currency`` (``{"USD": Decimal("17.20")}`` for an MXN cost).
        """
        currency = validate_currency(currency)
        total = to_decimal(total_amount)
        if total <= ZERO:
            raise ValueError(f"Incremental cost total must be positive, got {total}")
        if round_money(total, currency_decimal_places(currency)) != total:
            raise ValueError(f"{total} has more decimals than {currency} allows")
        order_ids = list(dict.fromkeys(base_order_ids))
        if not order_ids:
            raise ValueError("An incremental cost needs at least one base purchase order")
        rates = self._rate_snapshot(exchange_rates or {}, currency)

        with transaction_boundary(self._session, "incremental.create_incremental_cost"):
            self._load_base_orders(order_ids, lock=True)
            value = self._sequences.next_value(SequenceService.INCREMENTAL_COST)
            model = IncrementalCostOrderModel(
                id=uuid4(),
                number=format_document_number(self._config.number_prefix, value),
                cost_type=cost_type.value,
                supplier_id=supplier_id,
                description=description,
                total_amount=total,
                currency=currency,
                exchange_rates=rates,
                status=IncrementalCostStatus.DRAFT.value,
                created_by_id=actor_id,
            )
            self._session.add(model)
            for position, order_id in enumerate(order_ids, start=1):
                model.applications.append(
                    IncrementalCostApplicationModel(
                        id=uuid4(),
                        purchase_order_id=order_id,
                        position=position,
                        created_by_id=actor_id,
                    )
                )
            self._session.flush()

        logger.info(
            "incremental_cost_created",
            extra={
                "incremental_cost_id": str(model.id),
                "number": model.number,
                "cost_type": cost_type.value,
                "total_amount": str(total),
                "currency": currency,
                "base_order_count": len(order_ids),
            },
        )
        return model.to_dto()

    def preview_distribution(
        self,
        base_order_ids: Sequence[UUID],
        exchange_rates: Mapping[str, Decimal],
        incremental_total: Decimal,
        incremental_currency: str,
    ) -> DistributionResult:
        """Compute the distribution without persisting anything."""
        orders = self._load_base_orders(list(dict.fromkeys(base_order_ids)), lock=False)
        return self._distributor.distribute(
            base_lines=self._base_lines(orders),
            exchange_rates=exchange_rates,
            incremental_total=Money.of(incremental_total, incremental_currency),
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def approve_incremental_cost(self, order_id: UUID, actor_id: UUID) -> IncrementalCostOrder:
        return self._transition(order_id, "approve", actor_id)

    def cancel_incremental_cost(self, order_id: UUID, actor_id: UUID) -> IncrementalCostOrder:
        return self._transition(order_id, "cancel", actor_id)

    def _transition(self, order_id: UUID, action: str, actor_id: UUID) -> IncrementalCostOrder:
        with transaction_boundary(self._session, f"incremental.{action}_incremental_cost"):
            model = self._lock(order_id)
            from_status = model.status
            transition = resolve_transition(INCREMENTAL_COST_WORKFLOW, model.id, model.status, action)
            model.status = transition.to_state
            model.updated_by_id = actor_id

        logger.info(
            "incremental_cost_status_changed",
            extra={
                "incremental_cost_id": str(order_id),
                "action": action,
                "from_status": from_status,
                "to_status": model.status,
            },
        )
        return model.to_dto()

    def close_incremental_cost(self, order_id: UUID, actor_id: UUID) -> CloseResult:
        """
        Distribute the cost, persist the snapshot and post valuation.

        Each line's share is split over the locations its active receipts
        landed in, proportionally to the quantity received at each, and
        posted converted to the record's currency with the frozen rates.
        Lines never received are reported in ``unposted_lines``.
        """
        with transaction_boundary(self._session, "incremental.close_incremental_cost"):
            model = self._lock(order_id)
            transition = resolve_transition(INCREMENTAL_COST_WORKFLOW, model.id, model.status, "close")

            orders = self._load_base_orders(
                [app.purchase_order_id for app in model.applications], lock=True,
            )
            rates = model.rate_snapshot()
            distribution = self._distributor.distribute(
                base_lines=self._base_lines(orders),
                exchange_rates=rates,
                incremental_total=Money.of(model.total_amount, model.currency),
            )

            received = self._inventory.received_quantities(
                PURCHASE_ORDER_DOCUMENT_TYPE, [order.id for order in orders],
            )
            places = currency_decimal_places(model.currency)
            parts: list[tuple[DistributionLine, UUID | None, Decimal]] = []
            unposted: list[UUID] = []
            for line in distribution.lines:
                by_location = received.get(line.line_id)
                if not by_location:
                    unposted.append(line.line_id)
                    parts.append((line, None, line.increment))
                    continue
                amounts = split_amount(line.increment, list(by_location.values()), places)
                parts.extend(
                    (line, location_id, amount) for location_id, amount in zip(by_location, amounts)
                )

            postings: dict[tuple[UUID, UUID], Decimal] = {}
            for line, location_id, amount in parts:
                if location_id is not None:
                    key = (line.material_id, location_id)
                    postings[key] = postings.get(key, ZERO) + amount

            movements: dict[tuple[UUID, UUID], UUID] = {}
            for (material_id, location_id), amount in postings.items():
                movements[(material_id, location_id)] = self._post_valuation(
                    model, material_id, location_id, amount, rates, actor_id,
                )

            for position, (line, location_id, amount) in enumerate(parts, start=1):
                model.items.append(
                    IncrementalCostDistributionItemModel(
                        id=uuid4(),
                        position=position,
                        purchase_order_id=line.order_id,
                        purchase_order_line_id=line.line_id,
                        material_id=line.material_id,
                        location_id=location_id,
                        base_cost=line.base_cost,
                        base_currency=line.base_currency,
                        exchange_rate=line.exchange_rate,
                        normalized_cost=line.normalized_cost,
                        percentage=line.percentage,
                        increment=amount,
                        currency=line.currency,
                        movement_id=movements.get((line.material_id, location_id)),
                        created_by_id=actor_id,
                    )
                )

            by_order = distribution.amount_by_order()
            for application in model.applications:
                application.assigned_amount = by_order.get(application.purchase_order_id, ZERO)
                application.updated_by_id = actor_id

            model.status = transition.to_state
            model.closed_at = self._clock.now()
            model.updated_by_id = actor_id
            self._session.flush()

        logger.info(
            "incremental_cost_closed",
            extra={
                "incremental_cost_id": str(order_id),
                "number": model.number,
                "distributed_total": str(distribution.distributed_total),
                "movement_count": len(movements),
                "unposted_count": len(unposted),
            },
        )
        if unposted:
            logger.warning(
                "incremental_cost_lines_not_received",
                extra={"incremental_cost_id": str(order_id), "line_ids": [str(i) for i in unposted]},
            )
        return CloseResult(
            order=model.to_dto(),
            distribution=distribution,
            movement_ids=tuple(movements.values()),
            unposted_lines=tuple(unposted),
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_incremental_cost(self, order_id: UUID) -> IncrementalCostOrder:
        model = self._session.get(IncrementalCostOrderModel, order_id)
        if model is None:
            raise IncrementalCostNotFoundError(order_id)
        return model.to_dto()

    # =========================================================================
    # Internals
    # =========================================================================

    def _lock(self, order_id: UUID) -> IncrementalCostOrderModel:
        model = lock_by_id(self._session, IncrementalCostOrderModel, order_id)
        if model is None:
            raise IncrementalCostNotFoundError(order_id)
        if model.status == IncrementalCostStatus.CLOSED.value:
            raise AlreadyClosedError(order_id)
        return model

    def _load_base_orders(self, order_ids: Sequence[UUID], lock: bool) -> list[PurchaseOrderModel]:
        orders = []
        for order_id in order_ids:
            if lock:
                order = lock_by_id(self._session, PurchaseOrderModel, order_id)
            else:
                order = self._session.get(PurchaseOrderModel, order_id)
            if order is None:
                raise PurchaseOrderNotFoundError(order_id)
            if order.status == PurchaseOrderStatus.CANCELLED.value:
                raise InvalidBaseOrderError(order_id, "order is cancelled")
            if self._config.require_import_base_orders and not order.is_import:
                raise InvalidBaseOrderError(order_id, "not an import order")
            orders.append(order)
        return orders

    @staticmethod
    def _base_lines(orders: Sequence[PurchaseOrderModel]) -> list[DistributionBaseLine]:
        return [
            DistributionBaseLine(
                order_id=order.id,
                line_id=line.id,
                material_id=line.material_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                currency=order.currency,
            )
            for order in orders
            for line in order.lines
        ]

    @staticmethod
    def _rate_snapshot(exchange_rates: Mapping[str, Decimal], reference: str) -> dict[str, str]:
        snapshot: dict[str, str] = {}
        for code, value in exchange_rates.items():
            rate = ExchangeRate(code, reference, to_decimal(value))
            snapshot[rate.from_currency] = str(rate.rate)
        snapshot[reference] = "1"
        return snapshot

    def _post_valuation(
        self,
        model: IncrementalCostOrderModel,
        material_id: UUID,
        location_id: UUID,
        amount: Decimal,
        rates: Mapping[str, Decimal],
        actor_id: UUID,
    ) -> UUID:
        record = self._inventory.get_record(material_id, location_id)
        currency = record.currency if record is not None and record.currency else model.currency
        if currency != model.currency:
            rate = rates.get(currency)
            if rate is None:
                raise MissingExchangeRateError(currency, model.currency)
            amount = round_money(amount / rate, currency_decimal_places(currency))
        result = self._inventory.post_valuation_adjustment(
            material_id,
            location_id,
            amount,
            currency,
            actor_id,
            document_type=DOCUMENT_TYPE,
            document_id=model.id,
        )
        return result.movement.id
