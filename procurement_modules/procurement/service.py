"""
Procurement Module Service (``procurement_modules.procurement.service``).

Responsibility
--------------
Orchestrates the purchasing flow -- requisitions, supplier quote options,
consolidation of selected quotes into purchase orders, direct orders from
catalog lines, the purchase order lifecycle (submit, authorize, reject,
hold, cancel, close), full-replacement edits and reception into inventory
-- by delegating pure computation to ``procurement_engines`` and stock
movements to ``InventoryService``.

Architecture position
---------------------
**Modules layer** -- thin ERP glue.  ``ProcurementService`` is the sole
public entry point for purchase order operations.  It composes stateless
engines (``QuoteConsolidationEngine``, ``OrderTotalsCalculator``,
``diff_lines``), the kernel ``SequenceService`` and ``InventoryService``.

Invariants enforced
-------------------
* Each public method owns the transaction boundary (``commit`` on success,
  ``rollback`` on exception).  ``InventoryService`` runs with
  ``auto_commit=False`` so stock movements and order changes share one
  transaction.
* Requisitions, requisition lines, quote options and purchase orders are
  locked (``SELECT ... FOR UPDATE``) before they are read for a decision.
* 0 <= quantity_processed <= required_quantity on every requisition line.
* Status changes go through ``PURCHASE_ORDER_WORKFLOW``; every change
  appends a history row.
* Authorization side effects run after commit and never raise.

Failure modes
-------------
* Domain errors (``InvalidTransitionError``, ``OverAllocationError``,
  ``NotEditableError`` ...)  -> session rolled back, error re-raised.
* Store failures  -> ``TransactionError`` subclasses.
* Side-effect failures  -> warnings on ``AuthorizationResult``.

Usage::

    service = ProcurementService(session, clock=clock)
    requisition = service.create_requisition(
        "MNT", [RequisitionLineInput(Decimal("100"), material_id=m1)], actor_id,
    )
    option = service.register_quote_option(QuoteOptionInput(...), actor_id)
    service.select_quote_option(option.id, actor_id)
    result = service.consolidate_quotes(requisition.id, actor_id)
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_engines.consolidation import (
    PurchaseOrderDraft,
    QuoteConsolidationEngine,
    QuoteSelection,
    check_price_flags,
)
from procurement_engines.order_diff import LineDiff, diff_fields, diff_lines
from procurement_engines.tax import (
    ImportExemptionScope,
    OrderTotalsCalculator,
    PricedLine,
    TaxSettings,
    base_unit_price,
)
from procurement_kernel.db.types import ZERO, to_decimal, validate_currency
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import (
    EmptyOrderError,
    InvalidQuoteGroupingError,
    InvalidTransitionError,
    NotEditableError,
    OverAllocationError,
    OverReceiptError,
    PurchaseOrderLineNotFoundError,
    PurchaseOrderNotFoundError,
    PurchaseOrderNotLiquidatedError,
    QuoteOptionLockedError,
    QuoteOptionNotFoundError,
    RequisitionNotFoundError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.services.sequence_service import SequenceService, format_document_number
from procurement_modules._service_helpers import lock_by_id, transaction_boundary
from procurement_modules.inventory.config import InventoryConfig
from procurement_modules.inventory.service import InventoryService
from procurement_modules.payments.service import reconcile_order_payments
from procurement_modules.procurement.config import ProcurementConfig
from procurement_modules.procurement.history import append_history, list_history
from procurement_modules.procurement.models import (
    EDITABLE_STATUSES,
    RECEIVABLE_STATUSES,
    AuthorizationResult,
    ConsolidationResult,
    DirectOrderLineInput,
    HistoryEventType,
    PaymentMethod,
    PurchaseOrder,
    PurchaseOrderHeaderInput,
    PurchaseOrderHistoryEntry,
    PurchaseOrderLineInput,
    PurchaseOrderStatus,
    QuoteOption,
    QuoteOptionInput,
    ReceiptLineInput,
    ReceiptResult,
    Requisition,
    RequisitionLineInput,
    RequisitionStatus,
)
from procurement_modules.procurement.orm import (
    PurchaseOrderLineModel,
    PurchaseOrderModel,
    QuoteOptionModel,
    RequisitionLineModel,
    RequisitionModel,
)
from procurement_modules.procurement.side_effects import AuthorizationSideEffects, LoggingSideEffects
from procurement_modules.procurement.workflows import (
    PURCHASE_ORDER_WORKFLOW,
    Transition,
    resolve_transition,
)

logger = get_logger("modules.procurement.service")

# Line fields whose change counts as a modification in an edit
LINE_FIELDS = ("material_id", "description", "unit", "quantity", "unit_price", "is_import")
HEADER_FIELDS = ("comments", "is_urgent", "payment_method", "credit_days")

DOCUMENT_TYPE = "purchase_order"


def format_order_number(value: int, prefix: str = "OC", width: int = 4) -> str:
    """Display number of a purchase order, e.g. ``format_order_number(19) == "OC-0019"``."""
    return format_document_number(prefix, value, width)


class ProcurementService:
    """
    Orchestrates requisitions, quotes and purchase orders.

    Contract
    --------
    * Mutating methods return frozen DTOs built after the change.
    * ``authorize_purchase_order`` returns ``AuthorizationResult``; callers
      inspect ``result.warnings`` for side effects that failed after commit.

    Guarantees
    ----------
    * Session is committed on success; rolled back on any exception.
    * Clock is injectable for deterministic testing.

    Non-goals
    ---------
    * Does NOT render documents or deliver notifications; those go through
      the ``AuthorizationSideEffects`` port.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: ProcurementConfig | None = None,
        inventory_config: InventoryConfig | None = None,
        side_effects: AuthorizationSideEffects | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or ProcurementConfig.with_defaults()
        self._side_effects = side_effects or LoggingSideEffects()
        self._sequences = SequenceService(session)

        # Stateless engines
        self._totals = OrderTotalsCalculator(
            self._config.totals_decimal_places, self._config.import_exemption_scope,
        )
        self._consolidation = QuoteConsolidationEngine(
            self._config.tax_settings,
            self._config.totals_decimal_places,
            self._config.import_exemption_scope,
        )

        # Inventory (auto_commit=False -- we own the boundary)
        self._inventory = InventoryService(
            session, clock=self._clock, config=inventory_config, auto_commit=False,
        )

    # =========================================================================
    # Requisitions and quotes
    # =========================================================================

    def create_requisition(
        self,
        department_code: str,
        lines: Sequence[RequisitionLineInput],
        actor_id: UUID,
        project_id: UUID | None = None,
        site_id: UUID | None = None,
    ) -> Requisition:
        """Create a requisition numbered within its department (``MNT-0001``)."""
        department = (department_code or "").strip().upper()
        if not department:
            raise ValueError("A requisition needs a department code")
        if not lines:
            raise ValueError("A requisition needs at least one line")
        quantities = [to_decimal(line.required_quantity) for line in lines]
        if any(q <= ZERO for q in quantities):
            raise ValueError("Required quantities must be positive")

        with transaction_boundary(self._session, "procurement.create_requisition"):
            value = self._sequences.next_value(SequenceService.requisition_scope(department))
            requisition = RequisitionModel(
                id=uuid4(),
                number=format_document_number(department, value),
                department_code=department,
                project_id=project_id,
                site_id=site_id,
                status=RequisitionStatus.QUOTING.value,
                created_by_id=actor_id,
            )
            self._session.add(requisition)
            for number, (line, quantity) in enumerate(zip(lines, quantities), start=1):
                requisition.lines.append(
                    RequisitionLineModel(
                        id=uuid4(),
                        line_number=number,
                        material_id=line.material_id,
                        description=line.description,
                        unit=line.unit,
                        required_quantity=quantity,
                        quantity_processed=ZERO,
                        created_by_id=actor_id,
                    )
                )
            self._session.flush()

        logger.info(
            "requisition_created",
            extra={
                "requisition_id": str(requisition.id),
                "number": requisition.number,
                "line_count": len(lines),
            },
        )
        return requisition.to_dto()

    def get_requisition(self, requisition_id: UUID) -> Requisition:
        requisition = self._session.get(RequisitionModel, requisition_id)
        if requisition is None:
            raise RequisitionNotFoundError(requisition_id)
        return requisition.to_dto()

    def register_quote_option(self, option: QuoteOptionInput, actor_id: UUID) -> QuoteOption:
        """
        Record a supplier quote for a requisition line.

        The current tax settings are frozen into the option's calculation
        snapshot, so a forced total keeps the rates it was agreed under.
        """
        option_id = uuid4()
        check_price_flags(option_id, option.is_net_price, option.is_total_forced)
        if option.is_total_forced and option.forced_total is None:
            raise InvalidQuoteGroupingError(f"option:{option_id}", "forced total flag without a total")
        if not option.is_total_forced and option.forced_total is not None:
            raise InvalidQuoteGroupingError(f"option:{option_id}", "forced total given without the forced flag")
        currency = validate_currency(option.currency)
        unit_price = to_decimal(option.unit_price)
        quantity = to_decimal(option.quoted_quantity)
        if unit_price < ZERO:
            raise ValueError("Unit price cannot be negative")
        if quantity <= ZERO:
            raise ValueError("Quoted quantity must be positive")
        forced_total = to_decimal(option.forced_total) if option.forced_total is not None else None
        if forced_total is not None and forced_total < ZERO:
            raise ValueError("Forced total cannot be negative")

        with transaction_boundary(self._session, "procurement.register_quote_option"):
            line = self._session.get(RequisitionLineModel, option.requisition_line_id)
            if line is None:
                raise RequisitionNotFoundError(option.requisition_line_id)
            requisition = line.requisition
            if requisition.status != RequisitionStatus.QUOTING.value:
                raise InvalidTransitionError(requisition.id, requisition.status, "register_quote_option")

            model = QuoteOptionModel(
                id=option_id,
                requisition_line_id=line.id,
                supplier_id=option.supplier_id,
                unit_price=unit_price,
                quoted_quantity=quantity,
                currency=currency,
                is_net_price=option.is_net_price,
                is_import=option.is_import,
                is_immediate_delivery=option.is_immediate_delivery,
                selected=False,
                is_total_forced=option.is_total_forced,
                forced_total=forced_total,
                calculation_snapshot=self._config.tax_settings.to_snapshot(),
                created_by_id=actor_id,
            )
            self._session.add(model)
            self._session.flush()

        logger.info(
            "quote_option_registered",
            extra={
                "option_id": str(option_id),
                "requisition_line_id": str(line.id),
                "supplier_id": str(option.supplier_id),
                "is_import": option.is_import,
                "is_total_forced": option.is_total_forced,
            },
        )
        return model.to_dto()

    def select_quote_option(self, option_id: UUID, actor_id: UUID) -> QuoteOption:
        """Select an option; any other unconsumed option on the line is deselected."""
        with transaction_boundary(self._session, "procurement.select_quote_option"):
            option = lock_by_id(self._session, QuoteOptionModel, option_id)
            if option is None:
                raise QuoteOptionNotFoundError(option_id)
            if option.purchase_order_id is not None:
                raise QuoteOptionLockedError(option_id, option.purchase_order_id)

            siblings = self._session.execute(
                select(QuoteOptionModel)
                .where(
                    QuoteOptionModel.requisition_line_id == option.requisition_line_id,
                    QuoteOptionModel.id != option.id,
                    QuoteOptionModel.purchase_order_id.is_(None),
                )
                .with_for_update()
            ).scalars().all()
            for sibling in siblings:
                if sibling.selected:
                    sibling.selected = False
                    sibling.updated_by_id = actor_id
            option.selected = True
            option.updated_by_id = actor_id

        logger.info(
            "quote_option_selected",
            extra={"option_id": str(option_id), "requisition_line_id": str(option.requisition_line_id)},
        )
        return option.to_dto()

    # =========================================================================
    # Consolidation
    # =========================================================================

    def consolidate_quotes(
        self,
        requisition_id: UUID,
        actor_id: UUID,
        supplier_id: UUID | None = None,
    ) -> ConsolidationResult:
        """
        Turn the selected, unconsumed quote options of a requisition into one
        draft purchase order per supplier.

        Engine: QuoteConsolidationEngine (grouping, net-price reduction,
        import exemption, forced totals).

        Raises:
            RequisitionNotFoundError, InvalidTransitionError (requisition not
            quoting), InvalidQuoteGroupingError, OverAllocationError.
        """
        with transaction_boundary(self._session, "procurement.consolidate_quotes"):
            requisition = lock_by_id(self._session, RequisitionModel, requisition_id)
            if requisition is None:
                raise RequisitionNotFoundError(requisition_id)
            if requisition.status != RequisitionStatus.QUOTING.value:
                raise InvalidTransitionError(requisition_id, requisition.status, "consolidate")

            lines = self._lock_requisition_lines(requisition_id)
            lines_by_id = {line.id: line for line in lines}

            stmt = select(QuoteOptionModel).where(
                QuoteOptionModel.requisition_line_id.in_(list(lines_by_id)),
                QuoteOptionModel.selected.is_(True),
                QuoteOptionModel.purchase_order_id.is_(None),
            )
            if supplier_id is not None:
                stmt = stmt.where(QuoteOptionModel.supplier_id == supplier_id)
            options = sorted(
                self._session.execute(stmt.with_for_update()).scalars().all(),
                key=lambda o: (lines_by_id[o.requisition_line_id].line_number, str(o.id)),
            )
            if not options:
                raise InvalidQuoteGroupingError(
                    f"requisition:{requisition_id}", "no selected quote options pending consolidation",
                )

            consumed = self._check_allocation(options, lines_by_id)

            drafts = self._consolidation.consolidate(
                selections=[self._to_selection(o, lines_by_id[o.requisition_line_id]) for o in options],
            )
            options_by_id = {o.id: o for o in options}
            orders = [
                self._persist_draft(requisition, draft, options_by_id, actor_id) for draft in drafts
            ]

            for line_id, quantity in consumed.items():
                line = lines_by_id[line_id]
                line.quantity_processed += quantity
                line.updated_by_id = actor_id
            self._sync_requisition_status(requisition, lines, actor_id)

        logger.info(
            "quotes_consolidated_into_orders",
            extra={
                "requisition_id": str(requisition_id),
                "order_numbers": [o.number for o in orders],
                "requisition_status": requisition.status,
            },
        )
        return ConsolidationResult(
            requisition_id=requisition_id,
            requisition_status=RequisitionStatus(requisition.status),
            orders=tuple(order.to_dto() for order in orders),
        )

    def _check_allocation(
        self,
        options: Sequence[QuoteOptionModel],
        lines_by_id: dict[UUID, RequisitionLineModel],
    ) -> dict[UUID, Decimal]:
        consumed: dict[UUID, Decimal] = {}
        for option in options:
            line = lines_by_id[option.requisition_line_id]
            processed = line.quantity_processed + consumed.get(line.id, ZERO)
            if processed + option.quoted_quantity > line.required_quantity:
                logger.warning(
                    "consolidation_over_allocation",
                    extra={
                        "requisition_line_id": str(line.id),
                        "required_quantity": str(line.required_quantity),
                        "processed_quantity": str(processed),
                        "requested_quantity": str(option.quoted_quantity),
                    },
                )
                raise OverAllocationError(
                    line.id, line.required_quantity, processed, option.quoted_quantity,
                )
            consumed[line.id] = consumed.get(line.id, ZERO) + option.quoted_quantity
        return consumed

    @staticmethod
    def _to_selection(option: QuoteOptionModel, line: RequisitionLineModel) -> QuoteSelection:
        return QuoteSelection(
            option_id=option.id,
            requisition_line_id=line.id,
            supplier_id=option.supplier_id,
            quantity=option.quoted_quantity,
            unit_price=option.unit_price,
            currency=option.currency,
            material_id=line.material_id,
            description=line.description,
            unit=line.unit,
            is_net_price=option.is_net_price,
            is_import=option.is_import,
            is_immediate_delivery=option.is_immediate_delivery,
            is_total_forced=option.is_total_forced,
            forced_total=option.forced_total,
            calculation_snapshot=option.calculation_snapshot,
        )

    def _persist_draft(
        self,
        requisition: RequisitionModel,
        draft: PurchaseOrderDraft,
        options_by_id: dict[UUID, QuoteOptionModel],
        actor_id: UUID,
    ) -> PurchaseOrderModel:
        order = PurchaseOrderModel(
            id=uuid4(),
            number=self._next_order_number(),
            supplier_id=draft.supplier_id,
            requisition_id=requisition.id,
            project_id=requisition.project_id,
            site_id=requisition.site_id,
            currency=draft.currency,
            status=PurchaseOrderStatus.DRAFT.value,
            subtotal=draft.subtotal,
            tax=draft.tax,
            withholding=draft.withholding,
            total=draft.total,
            is_import=draft.totals.is_import,
            is_total_forced=draft.is_total_forced,
            calculation_snapshot=draft.calculation_snapshot,
            has_immediate_delivery=draft.has_immediate_delivery,
            amount_paid=ZERO,
            pending_settlement=False,
            payment_status="pending",
            created_by_id=actor_id,
        )
        self._session.add(order)
        for number, line in enumerate(draft.lines, start=1):
            order.lines.append(
                PurchaseOrderLineModel(
                    id=uuid4(),
                    line_number=number,
                    material_id=line.material_id,
                    description=line.description,
                    unit=line.unit,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    is_import=line.is_import,
                    quote_option_id=line.option_id,
                    requisition_line_id=line.requisition_line_id,
                    quantity_received=ZERO,
                    created_by_id=actor_id,
                )
            )
            option = options_by_id[line.option_id]
            option.purchase_order_id = order.id
            option.updated_by_id = actor_id
        self._session.flush()

        append_history(
            self._session, order, HistoryEventType.CREATED, actor_id, self._clock.now(),
            to_status=order.status,
            details={
                "requisition_id": requisition.id,
                "option_ids": list(draft.option_ids),
                "subtotal": draft.subtotal,
                "tax": draft.tax,
                "withholding": draft.withholding,
                "total": draft.total,
                "is_total_forced": draft.is_total_forced,
            },
        )
        logger.info(
            "purchase_order_created",
            extra={
                "order_id": str(order.id),
                "order_number": order.number,
                "supplier_id": str(order.supplier_id),
                "total": str(order.total),
                "currency": order.currency,
            },
        )
        return order

    def _next_order_number(self) -> str:
        value = self._sequences.next_value(SequenceService.PURCHASE_ORDER)
        return format_order_number(
            value, self._config.order_number_prefix, self._config.order_number_width,
        )

    # =========================================================================
    # Direct purchase orders
    # =========================================================================

    def create_direct_purchase_order(
        self,
        supplier_id: UUID,
        currency: str,
        lines: Sequence[DirectOrderLineInput],
        actor_id: UUID,
        project_id: UUID | None = None,
        site_id: UUID | None = None,
        header: PurchaseOrderHeaderInput | None = None,
        tax_settings: TaxSettings | None = None,
        forced_total: Decimal | None = None,
    ) -> PurchaseOrder:
        """
        Create an order straight from catalog materials, without requisition
        or quotes.  The order lands in ``pending_authorization``.

        Pricing is the same as for consolidated orders: net prices are
        reduced to their pre-tax base, import lines follow the configured
        exemption scope, and ``forced_total`` overrides the computed total
        under ``tax_settings`` (the configured settings by default).

        Raises:
            InvalidQuoteGroupingError: net-price lines with a forced total.
            ValueError: no lines, non-positive quantity, negative price.
        """
        if not lines:
            raise ValueError("A direct purchase order needs at least one line")
        currency = validate_currency(currency)
        if forced_total is not None and any(line.is_net_price for line in lines):
            raise InvalidQuoteGroupingError(
                f"supplier:{supplier_id}", "net price lines cannot be combined with a forced total",
            )
        header = header or PurchaseOrderHeaderInput()
        settings = tax_settings or self._config.tax_settings

        totals = self._totals.calculate(
            lines=[
                PricedLine(
                    str(number), line.quantity, line.unit_price,
                    is_net_price=line.is_net_price, is_import=line.is_import,
                )
                for number, line in enumerate(lines, start=1)
            ],
            settings=settings,
            forced_total=forced_total,
        )

        with transaction_boundary(self._session, "procurement.create_direct_purchase_order"):
            order = PurchaseOrderModel(
                id=uuid4(),
                number=self._next_order_number(),
                supplier_id=supplier_id,
                requisition_id=None,
                project_id=project_id,
                site_id=site_id,
                currency=currency,
                status=PurchaseOrderStatus.PENDING_AUTHORIZATION.value,
                subtotal=totals.subtotal,
                tax=totals.tax,
                withholding=totals.withholding,
                total=totals.total,
                is_import=totals.is_import,
                is_total_forced=totals.is_total_forced,
                calculation_snapshot=totals.settings.to_snapshot(),
                has_immediate_delivery=True,
                payment_method=header.payment_method.value if header.payment_method else None,
                credit_days=header.credit_days,
                is_urgent=header.is_urgent,
                comments=header.comments,
                amount_paid=ZERO,
                pending_settlement=False,
                payment_status="pending",
                created_by_id=actor_id,
            )
            self._session.add(order)
            for number, (line, amounts) in enumerate(zip(lines, totals.lines), start=1):
                order.lines.append(
                    PurchaseOrderLineModel(
                        id=uuid4(),
                        line_number=number,
                        material_id=line.material_id,
                        description=line.description,
                        unit=line.unit,
                        quantity=amounts.quantity,
                        unit_price=amounts.base_unit_price,
                        is_import=line.is_import,
                        quantity_received=ZERO,
                        created_by_id=actor_id,
                    )
                )
            self._session.flush()

            append_history(
                self._session, order, HistoryEventType.CREATED, actor_id, self._clock.now(),
                to_status=order.status,
                details={
                    "origin": "direct",
                    "subtotal": totals.subtotal,
                    "tax": totals.tax,
                    "withholding": totals.withholding,
                    "total": totals.total,
                    "is_total_forced": totals.is_total_forced,
                },
            )

        logger.info(
            "direct_purchase_order_created",
            extra={
                "order_id": str(order.id),
                "order_number": order.number,
                "supplier_id": str(supplier_id),
                "line_count": len(order.lines),
                "total": str(order.total),
                "currency": currency,
            },
        )
        return order.to_dto()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def submit_for_authorization(self, order_id: UUID, actor_id: UUID) -> PurchaseOrder:
        with transaction_boundary(self._session, "procurement.submit_for_authorization"):
            order = self._lock_order(order_id)
            transition = self._resolve(order, "submit")
            if not order.lines:
                raise EmptyOrderError(order_id)
            self._apply_transition(order, transition, actor_id)
        return order.to_dto()

    def authorize_purchase_order(
        self,
        order_id: UUID,
        actor_id: UUID,
        payment_method: PaymentMethod | None = None,
        credit_days: int | None = None,
    ) -> AuthorizationResult:
        """
        Approve a purchase order pending authorization.

        Idempotent-once: a second call finds the order approved and raises
        ``InvalidTransitionError`` without refiring side effects.  For credit
        terms the due date is ``today + credit_days`` (argument, then the
        order's own terms, then the configured default).
        """
        with transaction_boundary(self._session, "procurement.authorize_purchase_order"):
            order = self._lock_order(order_id)
            transition = self._resolve(order, "authorize")

            method = payment_method or (
                PaymentMethod(order.payment_method) if order.payment_method else None
            )
            order.payment_method = method.value if method else None
            if method == PaymentMethod.CREDIT:
                days = credit_days if credit_days is not None else order.credit_days
                if days is None:
                    days = self._config.default_credit_days
                if days < 0:
                    raise ValueError(f"credit_days cannot be negative: {days}")
                order.credit_days = days
                order.credit_due_date = self._clock.today() + timedelta(days=days)
            else:
                order.credit_due_date = None
            order.authorized_at = self._clock.now()
            order.authorized_by = actor_id

            self._apply_transition(
                order, transition, actor_id,
                details={
                    "payment_method": order.payment_method,
                    "credit_due_date": order.credit_due_date,
                },
            )
            reconcile_order_payments(self._session, order, self._config)

        dto = order.to_dto()
        warnings = self._run_side_effects(dto)
        return AuthorizationResult(order=dto, warnings=tuple(warnings))

    def _run_side_effects(self, order: PurchaseOrder) -> list[str]:
        """Post-commit work; failures become warnings."""
        warnings: list[str] = []
        effects = (
            ("emit_document", lambda: self._side_effects.emit_document(order)),
            ("notify", lambda: self._side_effects.notify(order, "purchase_order_authorized")),
        )
        for name, effect in effects:
            try:
                effect()
            except Exception as exc:
                logger.warning(
                    "authorization_side_effect_failed",
                    extra={"order_id": str(order.id), "side_effect": name, "error": str(exc)},
                )
                warnings.append(f"{name} failed: {exc}")
        return warnings

    def reject_purchase_order(self, order_id: UUID, actor_id: UUID, reason: str | None = None) -> PurchaseOrder:
        with transaction_boundary(self._session, "procurement.reject_purchase_order"):
            order = self._lock_order(order_id)
            transition = self._resolve(order, "reject")
            self._apply_transition(order, transition, actor_id, details={"reason": reason})
        return order.to_dto()

    def revise_purchase_order(self, order_id: UUID, actor_id: UUID) -> PurchaseOrder:
        """Send a rejected order back to draft for editing."""
        with transaction_boundary(self._session, "procurement.revise_purchase_order"):
            order = self._lock_order(order_id)
            transition = self._resolve(order, "revise")
            self._apply_transition(order, transition, actor_id)
        return order.to_dto()

    def start_processing(self, order_id: UUID, actor_id: UUID) -> PurchaseOrder:
        with transaction_boundary(self._session, "procurement.start_processing"):
            order = self._lock_order(order_id)
            transition = self._resolve(order, "start_processing")
            self._apply_transition(order, transition, actor_id)
        return order.to_dto()

    def hold_purchase_order(self, order_id: UUID, actor_id: UUID, reason: str | None = None) -> PurchaseOrder:
        with transaction_boundary(self._session, "procurement.hold_purchase_order"):
            order = self._lock_order(order_id)
            transition = self._resolve(order, "hold")
            order.held_from_status = order.status
            self._apply_transition(order, transition, actor_id, details={"reason": reason})
        return order.to_dto()

    def resume_purchase_order(self, order_id: UUID, actor_id: UUID) -> PurchaseOrder:
        """Return a held order to the state it was held from."""
        with transaction_boundary(self._session, "procurement.resume_purchase_order"):
            order = self._lock_order(order_id)
            transition = self._resolve(order, "resume", to_state=order.held_from_status)
            order.held_from_status = None
            self._apply_transition(order, transition, actor_id)
        return order.to_dto()

    def cancel_purchase_order(self, order_id: UUID, actor_id: UUID, reason: str | None = None) -> PurchaseOrder:
        """
        Cancel an order.  Quantities consumed from requisition lines are
        released and the consumed quote options unlinked, so the requisition
        can be consolidated again.
        """
        with transaction_boundary(self._session, "procurement.cancel_purchase_order"):
            order = self._lock_order(order_id)
            transition = self._resolve(order, "cancel")

            released: dict[str, str] = {}
            for line in order.lines:
                if line.requisition_line_id is not None:
                    self._adjust_processed(line.requisition_line_id, -line.quantity, actor_id)
                    released[str(line.requisition_line_id)] = str(line.quantity)
            self._unlink_options(order, actor_id)
            order.held_from_status = None
            self._apply_transition(
                order, transition, actor_id,
                details={"reason": reason, "released_quantities": released},
            )
            if order.requisition_id is not None:
                self._sync_requisition_status_by_id(order.requisition_id, actor_id)
        return order.to_dto()

    def close_purchase_order(self, order_id: UUID, actor_id: UUID) -> PurchaseOrder:
        """Close a delivered order; its active payments must cover the total."""
        with transaction_boundary(self._session, "procurement.close_purchase_order"):
            order = self._lock_order(order_id)
            transition = self._resolve(order, "close")
            liquidation = reconcile_order_payments(self._session, order, self._config)
            if liquidation.amount_paid < order.total:
                raise PurchaseOrderNotLiquidatedError(order_id, order.total, liquidation.amount_paid)
            self._apply_transition(order, transition, actor_id)
        return order.to_dto()

    # =========================================================================
    # Edit
    # =========================================================================

    def edit_purchase_order(
        self,
        order_id: UUID,
        header: PurchaseOrderHeaderInput,
        lines: Sequence[PurchaseOrderLineInput],
        actor_id: UUID,
    ) -> PurchaseOrder:
        """
        Replace an order's header and full line set.

        Lines are matched by id: a known id modifies that line, a stored line
        missing from ``lines`` is removed, a line without id is inserted.
        Totals are recomputed under the order's frozen tax snapshot; a forced
        total stays as it is.

        Raises:
            NotEditableError, PurchaseOrderLineNotFoundError, EmptyOrderError,
            OverAllocationError, InvalidQuoteGroupingError.
        """
        seen_ids = [line.id for line in lines if line.id is not None]
        if len(seen_ids) != len(set(seen_ids)):
            raise ValueError("Each stored line may appear only once in an edit")

        with transaction_boundary(self._session, "procurement.edit_purchase_order"):
            order = self._lock_order(order_id)
            if PurchaseOrderStatus(order.status) not in EDITABLE_STATUSES:
                raise NotEditableError(order_id, order.status)

            settings = TaxSettings.from_snapshot(order.calculation_snapshot, self._config.tax_settings)
            stored = {line.id: line for line in order.lines}
            incoming = self._incoming_lines(order, lines, settings)

            diff = diff_lines(
                {line_id: self._line_fields(line) for line_id, line in stored.items()},
                incoming,
                LINE_FIELDS,
            )
            if diff.unknown_ids:
                raise PurchaseOrderLineNotFoundError(order_id, diff.unknown_ids[0])
            if diff.surviving_count == 0:
                raise EmptyOrderError(order_id)

            totals_before = self._totals_fields(order)
            self._apply_line_diff(order, diff, stored, actor_id)

            totals = self._totals.calculate(
                lines=[
                    PricedLine(str(line.id), line.quantity, line.unit_price, is_import=line.is_import)
                    for line in order.lines
                ],
                settings=settings,
                forced_total=order.total if order.is_total_forced else None,
            )
            order.subtotal = totals.subtotal
            order.tax = totals.tax
            order.withholding = totals.withholding
            order.total = totals.total
            order.is_import = totals.is_import

            header_changes = diff_fields(
                self._header_fields(order),
                {
                    "comments": header.comments,
                    "is_urgent": header.is_urgent,
                    "payment_method": header.payment_method.value if header.payment_method else None,
                    "credit_days": header.credit_days,
                },
                HEADER_FIELDS,
            )
            for name, change in header_changes.items():
                setattr(order, name, change.after)
            order.updated_by_id = actor_id
            reconcile_order_payments(self._session, order, self._config)

            append_history(
                self._session, order, HistoryEventType.EDITED, actor_id, self._clock.now(),
                from_status=order.status, to_status=order.status,
                details={
                    "header": {name: change.as_dict() for name, change in header_changes.items()},
                    "lines": diff.as_dict(),
                    "totals": {"before": totals_before, "after": self._totals_fields(order)},
                },
            )

        logger.info(
            "purchase_order_edited",
            extra={
                "order_id": str(order_id),
                "inserted": len(diff.inserted),
                "modified": len(diff.modified),
                "removed": len(diff.removed),
                "total": str(order.total),
            },
        )
        return order.to_dto()

    def _incoming_lines(
        self,
        order: PurchaseOrderModel,
        lines: Sequence[PurchaseOrderLineInput],
        settings: TaxSettings,
    ) -> list[dict[str, Any]]:
        order_exempt = (
            self._config.import_exemption_scope == ImportExemptionScope.ORDER
            and any(line.is_import for line in lines)
        )
        incoming = []
        for line in lines:
            if line.is_net_price and order.is_total_forced:
                raise InvalidQuoteGroupingError(
                    f"order:{order.id}", "net price lines cannot be added to an order with a forced total",
                )
            quantity = to_decimal(line.quantity)
            unit_price = to_decimal(line.unit_price)
            if quantity <= ZERO:
                raise ValueError(f"Line quantity must be positive, got {quantity}")
            if unit_price < ZERO:
                raise ValueError(f"Line unit price cannot be negative, got {unit_price}")
            taxable = not order_exempt and not line.is_import
            incoming.append({
                "id": line.id,
                "material_id": line.material_id,
                "description": line.description,
                "unit": line.unit,
                "quantity": quantity,
                "unit_price": base_unit_price(unit_price, line.is_net_price, settings, taxable),
                "is_import": line.is_import,
            })
        return incoming

    def _apply_line_diff(
        self,
        order: PurchaseOrderModel,
        diff: LineDiff,
        stored: dict[UUID, PurchaseOrderLineModel],
        actor_id: UUID,
    ) -> None:
        for line_id in diff.removed:
            line = stored[line_id]
            if line.requisition_line_id is not None:
                self._adjust_processed(line.requisition_line_id, -line.quantity, actor_id)
            if line.quote_option_id is not None:
                option = lock_by_id(self._session, QuoteOptionModel, line.quote_option_id)
                option.purchase_order_id = None
                option.updated_by_id = actor_id
            order.lines.remove(line)

        for modification in diff.modified:
            line = stored[modification.line_id]
            quantity_change = modification.changes.get("quantity")
            if quantity_change is not None and line.requisition_line_id is not None:
                self._adjust_processed(
                    line.requisition_line_id, quantity_change.after - quantity_change.before, actor_id,
                )
            for name, change in modification.changes.items():
                setattr(line, name, change.after)
            line.updated_by_id = actor_id

        next_number = max((line.line_number for line in stored.values()), default=0)
        for data in diff.inserted:
            next_number += 1
            order.lines.append(
                PurchaseOrderLineModel(
                    id=uuid4(),
                    line_number=next_number,
                    material_id=data["material_id"],
                    description=data["description"],
                    unit=data["unit"],
                    quantity=data["quantity"],
                    unit_price=data["unit_price"],
                    is_import=data["is_import"],
                    quantity_received=ZERO,
                    created_by_id=actor_id,
                )
            )
        self._session.flush()

        if order.requisition_id is not None and (diff.removed or diff.modified):
            self._sync_requisition_status_by_id(order.requisition_id, actor_id)

    @staticmethod
    def _line_fields(line: PurchaseOrderLineModel) -> dict[str, Any]:
        return {name: getattr(line, name) for name in LINE_FIELDS}

    @staticmethod
    def _header_fields(order: PurchaseOrderModel) -> dict[str, Any]:
        return {name: getattr(order, name) for name in HEADER_FIELDS}

    @staticmethod
    def _totals_fields(order: PurchaseOrderModel) -> dict[str, str]:
        return {
            "subtotal": str(order.subtotal),
            "tax": str(order.tax),
            "withholding": str(order.withholding),
            "total": str(order.total),
        }

    # =========================================================================
    # Reception
    # =========================================================================

    def receive_purchase_order(
        self,
        order_id: UUID,
        receipts: Sequence[ReceiptLineInput],
        actor_id: UUID,
    ) -> ReceiptResult:
        """
        Register received quantities and post them to inventory.

        Material lines post a receipt movement at the given location (to the
        order's project when it has one); lines without a material only
        count as received.  The order moves to ``partially_delivered`` or
        ``delivered``.
        """
        if not receipts:
            raise ValueError("A reception needs at least one line")

        with transaction_boundary(self._session, "procurement.receive_purchase_order"):
            order = self._lock_order(order_id)
            if PurchaseOrderStatus(order.status) not in RECEIVABLE_STATUSES:
                raise InvalidTransitionError(order_id, order.status, "receive")

            lines = {line.id: line for line in order.lines}
            movement_ids: list[UUID] = []
            received: list[dict[str, Any]] = []
            for receipt in receipts:
                line = lines.get(receipt.line_id)
                if line is None:
                    raise PurchaseOrderLineNotFoundError(order_id, receipt.line_id)
                quantity = to_decimal(receipt.quantity)
                if quantity <= ZERO:
                    raise ValueError(f"Received quantity must be positive, got {quantity}")
                if line.quantity_received + quantity > line.quantity:
                    raise OverReceiptError(line.id, line.quantity, line.quantity_received, quantity)

                line.quantity_received += quantity
                line.received_location_id = receipt.location_id
                line.updated_by_id = actor_id
                if line.material_id is not None:
                    result = self._inventory.receive_stock(
                        line.material_id,
                        receipt.location_id,
                        quantity,
                        actor_id,
                        project_id=order.project_id,
                        site_id=order.site_id,
                        unit_cost=line.unit_price,
                        currency=order.currency,
                        document_type=DOCUMENT_TYPE,
                        document_id=order.id,
                        document_line_id=line.id,
                    )
                    movement_ids.append(result.movement.id)
                received.append({
                    "line_id": line.id,
                    "quantity": quantity,
                    "location_id": receipt.location_id,
                })

            fully_received = all(line.quantity_received >= line.quantity for line in order.lines)
            target = PurchaseOrderStatus.DELIVERED if fully_received else PurchaseOrderStatus.PARTIALLY_DELIVERED
            transition = self._resolve(order, "receive", to_state=target.value)
            self._apply_transition(
                order, transition, actor_id,
                event_type=HistoryEventType.RECEIVED,
                details={"lines": received, "movement_ids": movement_ids},
            )

        return ReceiptResult(order=order.to_dto(), movement_ids=tuple(movement_ids))

    # =========================================================================
    # Queries
    # =========================================================================

    def get_purchase_order(self, order_id: UUID) -> PurchaseOrder:
        order = self._session.get(PurchaseOrderModel, order_id)
        if order is None:
            raise PurchaseOrderNotFoundError(order_id)
        return order.to_dto()

    def get_history(self, order_id: UUID) -> tuple[PurchaseOrderHistoryEntry, ...]:
        return tuple(entry.to_dto() for entry in list_history(self._session, order_id))

    # =========================================================================
    # Internals
    # =========================================================================

    def _lock_order(self, order_id: UUID) -> PurchaseOrderModel:
        order = lock_by_id(self._session, PurchaseOrderModel, order_id)
        if order is None:
            raise PurchaseOrderNotFoundError(order_id)
        return order

    @staticmethod
    def _resolve(order: PurchaseOrderModel, action: str, to_state: str | None = None) -> Transition:
        return resolve_transition(PURCHASE_ORDER_WORKFLOW, order.id, order.status, action, to_state)

    def _apply_transition(
        self,
        order: PurchaseOrderModel,
        transition: Transition,
        actor_id: UUID,
        event_type: HistoryEventType = HistoryEventType.STATUS_CHANGED,
        details: dict[str, Any] | None = None,
    ) -> None:
        from_status = order.status
        order.status = transition.to_state
        order.updated_by_id = actor_id
        append_history(
            self._session, order, event_type, actor_id, self._clock.now(),
            from_status=from_status, to_status=transition.to_state,
            details={"action": transition.action, **(details or {})},
        )
        logger.info(
            "purchase_order_status_changed",
            extra={
                "order_id": str(order.id),
                "order_number": order.number,
                "action": transition.action,
                "from_status": from_status,
                "to_status": transition.to_state,
            },
        )

    def _lock_requisition_lines(self, requisition_id: UUID) -> list[RequisitionLineModel]:
        return list(
            self._session.execute(
                select(RequisitionLineModel)
                .where(RequisitionLineModel.requisition_id == requisition_id)
                .order_by(RequisitionLineModel.line_number)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _adjust_processed(self, requisition_line_id: UUID, delta: Decimal, actor_id: UUID) -> None:
        """Move a requisition line's processed quantity, keeping 0 <= processed <= required."""
        line = lock_by_id(self._session, RequisitionLineModel, requisition_line_id)
        if line is None:
            raise RequisitionNotFoundError(requisition_line_id)
        updated = line.quantity_processed + delta
        if updated > line.required_quantity:
            raise OverAllocationError(line.id, line.required_quantity, line.quantity_processed, delta)
        line.quantity_processed = max(updated, ZERO)
        line.updated_by_id = actor_id

    def _unlink_options(self, order: PurchaseOrderModel, actor_id: UUID) -> None:
        options = self._session.execute(
            select(QuoteOptionModel)
            .where(QuoteOptionModel.purchase_order_id == order.id)
            .with_for_update()
        ).scalars().all()
        for option in options:
            option.purchase_order_id = None
            option.updated_by_id = actor_id

    def _sync_requisition_status_by_id(self, requisition_id: UUID, actor_id: UUID) -> None:
        requisition = lock_by_id(self._session, RequisitionModel, requisition_id)
        if requisition is None:
            return
        self._sync_requisition_status(requisition, self._lock_requisition_lines(requisition_id), actor_id)

    @staticmethod
    def _sync_requisition_status(
        requisition: RequisitionModel,
        lines: Sequence[RequisitionLineModel],
        actor_id: UUID,
    ) -> None:
        """quoting <-> awaiting_delivery follows whether every line is fully processed."""
        if requisition.status == RequisitionStatus.CANCELLED.value:
            return
        fully_processed = all(line.quantity_processed >= line.required_quantity for line in lines)
        status = (
            RequisitionStatus.AWAITING_DELIVERY if fully_processed else RequisitionStatus.QUOTING
        ).value
        if requisition.status != status:
            logger.info(
                "requisition_status_changed",
                extra={
                    "requisition_id": str(requisition.id),
                    "from_status": requisition.status,
                    "to_status": status,
                },
            )
            requisition.status = status
            requisition.updated_by_id = actor_id
