"""
Inventory Module Service (``procurement_modules.inventory.service``).

Responsibility
--------------
Two-pool inventory ledger: every stock change is one atomic operation that
locks the (material, location) record, moves quantity between the
``available`` and ``assigned`` pools (and the project assignments beneath
``assigned``), and appends exactly one movement with before/after
quantities.

Architecture position
---------------------
**Modules layer**.  Called directly by callers for manual operations, and
with ``auto_commit=False`` by ``ProcurementService`` (reception) and
``IncrementalCostService`` (valuation adjustments), which then own the
transaction.

Invariants enforced
-------------------
* ``available >= 0`` and ``assigned >= 0`` after every operation.
* ``assigned`` equals the sum of the record's assignment quantities.
* Assignment rows are unique per (record, project, site) and deleted when
  they reach zero.
* A movement is reversed at most once, by a movement that applies its exact
  inverse; reversals and valuation adjustments are not reversible.

Failure modes
-------------
* ``InsufficientStockError`` -- pool or assignment too small.
* ``AssignmentNotFoundError`` -- no assignment for (project, site).
* ``MissingJustificationError`` -- adjustment or reversal without a reason.
* ``WouldGoNegativeError`` / ``AlreadyReversedError`` /
  ``MovementNotReversibleError`` / ``ReversalWindowClosedError`` -- reversal.
* ``ValueError`` -- non-positive quantities, zero adjustment deltas.

Usage::

    service = InventoryService(session, clock=clock)
    service.receive_stock(material_id, location_id, Decimal("10"), actor_id)
    result = service.commit_stock(
        material_id, location_id, Decimal("4"), project_id, actor_id, site_id=site_id,
    )
    service.reverse_movement(result.movement.id, "wrong project", actor_id)
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import and_, func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from procurement_kernel.db.types import ZERO, round_money, to_decimal, validate_currency
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.exceptions import (
    AlreadyReversedError,
    AssignmentNotFoundError,
    InsufficientStockError,
    InvalidAssignmentTransferError,
    MissingJustificationError,
    MovementNotFoundError,
    MovementNotReversibleError,
    ReversalWindowClosedError,
    WouldGoNegativeError,
)
from procurement_kernel.logging_config import get_logger
from procurement_modules._service_helpers import lock_by_id, transaction_boundary
from procurement_modules.inventory.config import InventoryConfig
from procurement_modules.inventory.models import (
    NON_REVERSIBLE_TYPES,
    InventoryAssignment,
    InventoryRecord,
    Movement,
    MovementStatus,
    MovementType,
    StockMovementResult,
)
from procurement_modules.inventory.orm import (
    InventoryAssignmentModel,
    InventoryMovementModel,
    InventoryRecordModel,
)

logger = get_logger("modules.inventory.service")

# (project_id, site_id, signed quantity) applied to an assignment
AssignmentEffect = tuple[UUID, UUID | None, Decimal]


class InventoryService:
    """
    Atomic operations on the two-pool inventory ledger.

    Contract
    --------
    * Every mutating method returns ``StockMovementResult`` (the record after
      the operation and the movement appended for it).
    * Quantities are positive magnitudes; the movement type gives direction.

    Guarantees
    ----------
    * With ``auto_commit=True`` (default) each method commits on success and
      rolls back on any exception.
    * The record row is locked (``SELECT ... FOR UPDATE``) before any read
      that feeds a check.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: InventoryConfig | None = None,
        auto_commit: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or InventoryConfig.with_defaults()
        self._auto_commit = auto_commit

    # =========================================================================
    # Inbound / outbound
    # =========================================================================

    def receive_stock(
        self,
        material_id: UUID,
        location_id: UUID,
        quantity: Decimal,
        actor_id: UUID,
        project_id: UUID | None = None,
        site_id: UUID | None = None,
        unit_cost: Decimal | None = None,
        currency: str | None = None,
        document_type: str | None = None,
        document_id: UUID | None = None,
        document_line_id: UUID | None = None,
    ) -> StockMovementResult:
        """
        Receive stock.  General-stock receipts land in ``available``; receipts
        for any other project land in ``assigned`` with an assignment.

        The record's ``unit_cost``/``currency`` become the last entry price.
        """
        quantity = self._positive(quantity, "receive_stock")
        with transaction_boundary(self._session, "inventory.receive_stock", self._auto_commit):
            record = self._lock_record(material_id, location_id, actor_id)
            before = (record.available, record.assigned)

            if self._config.is_stock_project(project_id):
                record.available += quantity
                effects: list[AssignmentEffect] = []
            else:
                record.assigned += quantity
                effects = [(project_id, site_id, quantity)]
                self._apply_assignment_effects(record, actor_id, effects)

            if unit_cost is not None:
                record.unit_cost = to_decimal(unit_cost)
                record.currency = validate_currency(currency) if currency else record.currency

            movement = self._append_movement(
                record, MovementType.RECEIPT, quantity, before, actor_id,
                project_id=project_id, site_id=site_id,
                value_amount=(quantity * record.unit_cost) if unit_cost is not None else None,
                value_currency=record.currency if unit_cost is not None else None,
                document_type=document_type, document_id=document_id,
                document_line_id=document_line_id,
            )

        logger.info(
            "inventory_stock_received",
            extra={
                "material_id": str(material_id),
                "location_id": str(location_id),
                "quantity": str(quantity),
                "pool": "assigned" if effects else "available",
                "movement_id": str(movement.id),
            },
        )
        return self._result(record, movement)

    def issue_stock(
        self,
        material_id: UUID,
        location_id: UUID,
        quantity: Decimal,
        actor_id: UUID,
        project_id: UUID | None = None,
        site_id: UUID | None = None,
        document_type: str | None = None,
        document_id: UUID | None = None,
    ) -> StockMovementResult:
        """Consume stock from ``available``, or from a project's assignment."""
        quantity = self._positive(quantity, "issue_stock")
        with transaction_boundary(self._session, "inventory.issue_stock", self._auto_commit):
            record = self._require_record(material_id, location_id, quantity)
            before = (record.available, record.assigned)

            if self._config.is_stock_project(project_id):
                self._check_available(record, quantity)
                record.available -= quantity
            else:
                self._check_assignment(record, project_id, site_id, quantity)
                record.assigned -= quantity
                self._apply_assignment_effects(record, actor_id, [(project_id, site_id, -quantity)])

            movement = self._append_movement(
                record, MovementType.ISSUE, quantity, before, actor_id,
                project_id=project_id, site_id=site_id,
                document_type=document_type, document_id=document_id,
            )

        logger.info(
            "inventory_stock_issued",
            extra={
                "material_id": str(material_id),
                "location_id": str(location_id),
                "quantity": str(quantity),
                "movement_id": str(movement.id),
            },
        )
        return self._result(record, movement)

    # =========================================================================
    # Assignments
    # =========================================================================

    def commit_stock(
        self,
        material_id: UUID,
        location_id: UUID,
        quantity: Decimal,
        project_id: UUID,
        actor_id: UUID,
        site_id: UUID | None = None,
        document_type: str | None = None,
        document_id: UUID | None = None,
    ) -> StockMovementResult:
        """Move ``quantity`` from ``available`` to an assignment for (project, site)."""
        quantity = self._positive(quantity, "commit_stock")
        if self._config.is_stock_project(project_id):
            raise InvalidAssignmentTransferError(
                f"{material_id}@{location_id}", "cannot commit stock to the general stock project",
            )
        with transaction_boundary(self._session, "inventory.commit_stock", self._auto_commit):
            record = self._require_record(material_id, location_id, quantity)
            self._check_available(record, quantity)
            before = (record.available, record.assigned)

            record.available -= quantity
            record.assigned += quantity
            self._apply_assignment_effects(record, actor_id, [(project_id, site_id, quantity)])

            movement = self._append_movement(
                record, MovementType.ASSIGN, quantity, before, actor_id,
                project_id=project_id, site_id=site_id,
                document_type=document_type, document_id=document_id,
            )

        logger.info(
            "inventory_stock_committed",
            extra={
                "material_id": str(material_id),
                "location_id": str(location_id),
                "project_id": str(project_id),
                "quantity": str(quantity),
                "movement_id": str(movement.id),
            },
        )
        return self._result(record, movement)

    def release_stock(
        self,
        material_id: UUID,
        location_id: UUID,
        quantity: Decimal,
        project_id: UUID,
        actor_id: UUID,
        site_id: UUID | None = None,
        document_type: str | None = None,
        document_id: UUID | None = None,
    ) -> StockMovementResult:
        """
        Return ``quantity`` of a (project, site) assignment to ``available``.

        A release that empties an assignment made by a single commit records
        that commit in ``offsets_movement_id``.
        """
        quantity = self._positive(quantity, "release_stock")
        with transaction_boundary(self._session, "inventory.release_stock", self._auto_commit):
            record = self._require_record(material_id, location_id, quantity, pool="assigned")
            self._check_assignment(record, project_id, site_id, quantity)
            offsets = self._offset_commit(record, project_id, site_id, quantity)
            before = (record.available, record.assigned)

            record.assigned -= quantity
            record.available += quantity
            self._apply_assignment_effects(record, actor_id, [(project_id, site_id, -quantity)])

            movement = self._append_movement(
                record, MovementType.RELEASE, quantity, before, actor_id,
                project_id=project_id, site_id=site_id,
                document_type=document_type, document_id=document_id,
                offsets_movement_id=offsets,
            )

        logger.info(
            "inventory_stock_released",
            extra={
                "material_id": str(material_id),
                "location_id": str(location_id),
                "project_id": str(project_id),
                "quantity": str(quantity),
                "movement_id": str(movement.id),
                "offsets_movement_id": str(offsets) if offsets else None,
            },
        )
        return self._result(record, movement)

    def transfer_assignment(
        self,
        material_id: UUID,
        location_id: UUID,
        from_project_id: UUID,
        to_project_id: UUID,
        actor_id: UUID,
        quantity: Decimal | None = None,
        from_site_id: UUID | None = None,
        to_site_id: UUID | None = None,
        reason: str | None = None,
    ) -> StockMovementResult:
        """
        Move all (``quantity=None``) or part of an assignment to another
        (project, site).  Pool totals are unchanged.
        """
        if (from_project_id, from_site_id) == (to_project_id, to_site_id):
            raise InvalidAssignmentTransferError(
                f"{from_project_id}/{from_site_id}", "source and target are the same",
            )
        if self._config.is_stock_project(to_project_id):
            raise InvalidAssignmentTransferError(
                f"{from_project_id}/{from_site_id}",
                "target is the general stock project; release the stock instead",
            )
        with transaction_boundary(self._session, "inventory.transfer_assignment", self._auto_commit):
            record = self._require_record(material_id, location_id, quantity or ZERO, pool="assigned")
            source = self._find_assignment(record.id, from_project_id, from_site_id)
            if source is None:
                raise AssignmentNotFoundError(f"{material_id}@{location_id}:{from_project_id}/{from_site_id}")
            moved = source.quantity if quantity is None else self._positive(quantity, "transfer_assignment")
            self._check_assignment(record, from_project_id, from_site_id, moved)
            before = (record.available, record.assigned)

            self._apply_assignment_effects(
                record,
                actor_id,
                [(from_project_id, from_site_id, -moved), (to_project_id, to_site_id, moved)],
            )

            movement = self._append_movement(
                record, MovementType.TRANSFER_ASSIGNMENT, moved, before, actor_id,
                project_id=from_project_id, site_id=from_site_id,
                target_project_id=to_project_id, target_site_id=to_site_id,
                reason=reason,
            )

        logger.info(
            "inventory_assignment_transferred",
            extra={
                "material_id": str(material_id),
                "location_id": str(location_id),
                "from_project_id": str(from_project_id),
                "to_project_id": str(to_project_id),
                "quantity": str(moved),
                "movement_id": str(movement.id),
            },
        )
        return self._result(record, movement)

    # =========================================================================
    # Adjustments
    # =========================================================================

    def adjust_stock(
        self,
        material_id: UUID,
        location_id: UUID,
        delta: Decimal,
        reason: str,
        actor_id: UUID,
        unit_cost: Decimal | None = None,
        currency: str | None = None,
    ) -> StockMovementResult:
        """
        Manual correction of ``available`` by a signed, non-zero ``delta``.

        ``unit_cost``/``currency`` may be set only on an empty record with a
        positive delta (initial load).
        """
        delta = to_decimal(delta)
        if delta == ZERO:
            raise ValueError("Adjustment delta must be non-zero")
        if not reason or not reason.strip():
            raise MissingJustificationError("adjust_stock")

        with transaction_boundary(self._session, "inventory.adjust_stock", self._auto_commit):
            record = self._lock_record(material_id, location_id, actor_id)
            if unit_cost is not None or currency is not None:
                if record.total != ZERO or delta < ZERO:
                    raise ValueError(
                        "Unit cost and currency can only be set on an empty record with a positive delta"
                    )
            if delta < ZERO:
                self._check_available(record, -delta)
            before = (record.available, record.assigned)

            record.available += delta
            if unit_cost is not None:
                record.unit_cost = to_decimal(unit_cost)
            if currency is not None:
                record.currency = validate_currency(currency)

            movement = self._append_movement(
                record,
                MovementType.ADJUSTMENT_IN if delta > ZERO else MovementType.ADJUSTMENT_OUT,
                abs(delta), before, actor_id,
                reason=reason.strip(),
            )

        logger.info(
            "inventory_stock_adjusted",
            extra={
                "material_id": str(material_id),
                "location_id": str(location_id),
                "delta": str(delta),
                "movement_id": str(movement.id),
            },
        )
        return self._result(record, movement)

    def post_valuation_adjustment(
        self,
        material_id: UUID,
        location_id: UUID,
        amount: Decimal,
        currency: str,
        actor_id: UUID,
        document_type: str | None = None,
        document_id: UUID | None = None,
    ) -> StockMovementResult:
        """Add capitalized cost to a record without touching quantities."""
        amount = to_decimal(amount)
        currency = validate_currency(currency)
        with transaction_boundary(self._session, "inventory.post_valuation_adjustment", self._auto_commit):
            record = self._lock_record(material_id, location_id, actor_id)
            if record.currency is not None and record.currency != currency:
                raise ValueError(
                    f"Valuation adjustment in {currency} for a record kept in {record.currency}"
                )
            before = (record.available, record.assigned)
            record.valuation_adjustment += amount
            if record.currency is None:
                record.currency = currency

            movement = self._append_movement(
                record, MovementType.VALUATION_ADJUSTMENT, ZERO, before, actor_id,
                value_amount=amount, value_currency=currency,
                document_type=document_type, document_id=document_id,
            )

        logger.info(
            "inventory_valuation_adjusted",
            extra={
                "material_id": str(material_id),
                "location_id": str(location_id),
                "amount": str(amount),
                "currency": currency,
                "movement_id": str(movement.id),
            },
        )
        return self._result(record, movement)

    # =========================================================================
    # Reversal
    # =========================================================================

    def reverse_movement(self, movement_id: UUID, reason: str, actor_id: UUID) -> StockMovementResult:
        """
        Apply the exact inverse of a movement and mark it reversed.

        Raises:
            MovementNotFoundError, MovementNotReversibleError,
            AlreadyReversedError, MissingJustificationError,
            ReversalWindowClosedError, WouldGoNegativeError.
        """
        min_length = self._config.min_reversal_reason_length
        if not reason or len(reason.strip()) < min_length:
            raise MissingJustificationError("reverse_movement", min_length)

        with transaction_boundary(self._session, "inventory.reverse_movement", self._auto_commit):
            original = lock_by_id(self._session, InventoryMovementModel, movement_id)
            if original is None:
                raise MovementNotFoundError(movement_id)
            movement_type = MovementType(original.movement_type)
            if movement_type in NON_REVERSIBLE_TYPES:
                raise MovementNotReversibleError(movement_id, movement_type.value)
            if original.status == MovementStatus.REVERSED.value:
                reversal_id = self._session.execute(
                    select(InventoryMovementModel.id).where(
                        InventoryMovementModel.reversal_of_id == movement_id
                    )
                ).scalar_one_or_none()
                raise AlreadyReversedError(movement_id, reversal_id)
            today = self._clock.today()
            if self._config.reversal_same_day_only and original.movement_date != today:
                raise ReversalWindowClosedError(
                    movement_id, original.movement_date.isoformat(), today.isoformat(),
                )

            record = lock_by_id(self._session, InventoryRecordModel, original.record_id)
            available_delta = original.available_before - original.available_after
            assigned_delta = original.assigned_before - original.assigned_after
            effects = [
                (project_id, site_id, -quantity)
                for project_id, site_id, quantity in self._assignment_effects(original)
            ]

            self._check_reversal(original, record, available_delta, assigned_delta, effects)
            before = (record.available, record.assigned)

            record.available += available_delta
            record.assigned += assigned_delta
            self._apply_assignment_effects(record, actor_id, effects)
            original.status = MovementStatus.REVERSED.value
            original.updated_by_id = actor_id

            reversal = self._append_movement(
                record, MovementType.REVERSAL, original.quantity, before, actor_id,
                project_id=original.project_id, site_id=original.site_id,
                target_project_id=original.target_project_id, target_site_id=original.target_site_id,
                value_amount=original.value_amount, value_currency=original.value_currency,
                document_type=original.document_type, document_id=original.document_id,
                document_line_id=original.document_line_id,
                reason=reason.strip(), reversal_of_id=original.id,
            )

        logger.info(
            "inventory_movement_reversed",
            extra={
                "movement_id": str(movement_id),
                "movement_type": movement_type.value,
                "reversal_id": str(reversal.id),
            },
        )
        return self._result(record, reversal)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_record(self, material_id: UUID, location_id: UUID) -> InventoryRecord | None:
        model = self._find_record(material_id, location_id)
        return model.to_dto() if model else None

    def list_assignments(self, material_id: UUID, location_id: UUID) -> tuple[InventoryAssignment, ...]:
        record = self._find_record(material_id, location_id)
        if record is None:
            return ()
        rows = self._session.execute(
            select(InventoryAssignmentModel)
            .where(InventoryAssignmentModel.record_id == record.id)
            .order_by(InventoryAssignmentModel.created_at, InventoryAssignmentModel.id)
        ).scalars()
        return tuple(row.to_dto() for row in rows)

    def list_movements(
        self,
        material_id: UUID | None = None,
        location_id: UUID | None = None,
        document_id: UUID | None = None,
    ) -> tuple[Movement, ...]:
        """Movements matching every given filter, in ledger order."""
        stmt = select(InventoryMovementModel)
        if material_id is not None:
            stmt = stmt.where(InventoryMovementModel.material_id == material_id)
        if location_id is not None:
            stmt = stmt.where(InventoryMovementModel.location_id == location_id)
        if document_id is not None:
            stmt = stmt.where(InventoryMovementModel.document_id == document_id)
        stmt = stmt.order_by(
            InventoryMovementModel.occurred_at,
            InventoryMovementModel.record_id,
            InventoryMovementModel.sequence,
        )
        return tuple(row.to_dto() for row in self._session.execute(stmt).scalars())

    def received_quantities(
        self,
        document_type: str,
        document_ids: Sequence[UUID],
    ) -> dict[UUID, dict[UUID, Decimal]]:
        """
        Active receipt quantity per document line, then per location.

        Reversed receipts are left out; locations keep ledger order.
        """
        if not document_ids:
            return {}
        rows = self._session.execute(
            select(
                InventoryMovementModel.document_line_id,
                InventoryMovementModel.location_id,
                InventoryMovementModel.quantity,
            )
            .where(
                InventoryMovementModel.movement_type == MovementType.RECEIPT.value,
                InventoryMovementModel.status == MovementStatus.ACTIVE.value,
                InventoryMovementModel.document_type == document_type,
                InventoryMovementModel.document_id.in_(list(document_ids)),
                InventoryMovementModel.document_line_id.is_not(None),
            )
            .order_by(
                InventoryMovementModel.occurred_at,
                InventoryMovementModel.record_id,
                InventoryMovementModel.sequence,
            )
        )
        received: dict[UUID, dict[UUID, Decimal]] = {}
        for line_id, location_id, quantity in rows:
            by_location = received.setdefault(line_id, {})
            by_location[location_id] = by_location.get(location_id, ZERO) + quantity
        return received

    # =========================================================================
    # Internals
    # =========================================================================

    @staticmethod
    def _positive(quantity: Decimal, operation: str) -> Decimal:
        quantity = to_decimal(quantity)
        if quantity <= ZERO:
            raise ValueError(f"{operation}: quantity must be positive, got {quantity}")
        return quantity

    def _find_record(self, material_id: UUID, location_id: UUID) -> InventoryRecordModel | None:
        return self._session.execute(
            select(InventoryRecordModel).where(
                InventoryRecordModel.material_id == material_id,
                InventoryRecordModel.location_id == location_id,
            )
        ).scalar_one_or_none()

    def _select_record_for_update(self, material_id: UUID, location_id: UUID) -> InventoryRecordModel | None:
        return self._session.execute(
            select(InventoryRecordModel)
            .where(
                InventoryRecordModel.material_id == material_id,
                InventoryRecordModel.location_id == location_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _lock_record(self, material_id: UUID, location_id: UUID, actor_id: UUID) -> InventoryRecordModel:
        """Lock the record, creating an empty one on first use."""
        record = self._select_record_for_update(material_id, location_id)
        if record is not None:
            return record

        dialect = self._session.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        self._session.execute(
            insert(InventoryRecordModel)
            .values(
                id=uuid4(),
                material_id=material_id,
                location_id=location_id,
                available=ZERO,
                assigned=ZERO,
                valuation_adjustment=ZERO,
                created_by_id=actor_id,
            )
            .on_conflict_do_nothing(index_elements=["material_id", "location_id"])
        )
        logger.debug(
            "inventory_record_created",
            extra={"material_id": str(material_id), "location_id": str(location_id)},
        )
        return self._select_record_for_update(material_id, location_id)

    def _require_record(
        self,
        material_id: UUID,
        location_id: UUID,
        requested: Decimal,
        pool: str = "available",
    ) -> InventoryRecordModel:
        record = self._select_record_for_update(material_id, location_id)
        if record is None:
            raise InsufficientStockError(material_id, location_id, ZERO, requested, pool)
        return record

    def _check_available(self, record: InventoryRecordModel, quantity: Decimal) -> None:
        if record.available < quantity:
            logger.warning(
                "inventory_insufficient_stock",
                extra={
                    "material_id": str(record.material_id),
                    "location_id": str(record.location_id),
                    "available": str(record.available),
                    "requested": str(quantity),
                },
            )
            raise InsufficientStockError(
                record.material_id, record.location_id, record.available, quantity,
            )

    def _check_assignment(
        self,
        record: InventoryRecordModel,
        project_id: UUID,
        site_id: UUID | None,
        quantity: Decimal,
    ) -> None:
        assignment = self._find_assignment(record.id, project_id, site_id)
        if assignment is None:
            raise AssignmentNotFoundError(
                f"{record.material_id}@{record.location_id}:{project_id}/{site_id}"
            )
        if assignment.quantity < quantity:
            raise InsufficientStockError(
                record.material_id, record.location_id, assignment.quantity, quantity, pool="assigned",
            )

    def _find_assignment(
        self, record_id: UUID, project_id: UUID, site_id: UUID | None,
    ) -> InventoryAssignmentModel | None:
        return self._session.execute(
            select(InventoryAssignmentModel)
            .where(
                InventoryAssignmentModel.record_id == record_id,
                InventoryAssignmentModel.project_id == project_id,
                InventoryAssignmentModel.site_id == site_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _offset_commit(
        self,
        record: InventoryRecordModel,
        project_id: UUID,
        site_id: UUID | None,
        quantity: Decimal,
    ) -> UUID | None:
        """The commit a release of ``quantity`` exactly undoes, if any."""
        assignment = self._find_assignment(record.id, project_id, site_id)
        if assignment is None or assignment.quantity != quantity:
            return None
        last = self._session.execute(
            select(InventoryMovementModel)
            .where(
                InventoryMovementModel.record_id == record.id,
                or_(
                    and_(
                        InventoryMovementModel.project_id == project_id,
                        InventoryMovementModel.site_id == site_id,
                    ),
                    and_(
                        InventoryMovementModel.target_project_id == project_id,
                        InventoryMovementModel.target_site_id == site_id,
                    ),
                ),
            )
            .order_by(InventoryMovementModel.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()
        if (
            last is None
            or last.movement_type != MovementType.ASSIGN.value
            or last.status != MovementStatus.ACTIVE.value
            or last.quantity != quantity
        ):
            return None
        return last.id

    def _apply_assignment_effects(
        self, record: InventoryRecordModel, actor_id: UUID, effects: Sequence[AssignmentEffect],
    ) -> None:
        """Add signed quantities to assignments; create on demand, delete at zero."""
        for project_id, site_id, quantity in effects:
            assignment = self._find_assignment(record.id, project_id, site_id)
            if assignment is None:
                assignment = InventoryAssignmentModel(
                    record_id=record.id,
                    project_id=project_id,
                    site_id=site_id,
                    quantity=ZERO,
                    created_by_id=actor_id,
                )
                self._session.add(assignment)
            assignment.quantity += quantity
            if assignment.quantity == ZERO:
                self._session.delete(assignment)
            # keeps the next lookup in this loop consistent
            self._session.flush()

    @staticmethod
    def _assignment_effects(movement: InventoryMovementModel) -> list[AssignmentEffect]:
        """Assignment changes a stored movement made, derived from its type."""
        movement_type = MovementType(movement.movement_type)
        quantity = movement.quantity
        assigned_delta = movement.assigned_after - movement.assigned_before
        if movement_type == MovementType.TRANSFER_ASSIGNMENT:
            return [
                (movement.project_id, movement.site_id, -quantity),
                (movement.target_project_id, movement.target_site_id, quantity),
            ]
        if movement_type in (MovementType.RECEIPT, MovementType.ASSIGN) and assigned_delta > ZERO:
            return [(movement.project_id, movement.site_id, quantity)]
        if movement_type in (MovementType.ISSUE, MovementType.RELEASE) and assigned_delta < ZERO:
            return [(movement.project_id, movement.site_id, -quantity)]
        return []

    def _check_reversal(
        self,
        original: InventoryMovementModel,
        record: InventoryRecordModel,
        available_delta: Decimal,
        assigned_delta: Decimal,
        effects: Sequence[AssignmentEffect],
    ) -> None:
        if record.available + available_delta < ZERO:
            raise WouldGoNegativeError(original.id, "available", record.available, available_delta)
        if record.assigned + assigned_delta < ZERO:
            raise WouldGoNegativeError(original.id, "assigned", record.assigned, assigned_delta)
        for project_id, site_id, quantity in effects:
            if quantity >= ZERO:
                continue
            assignment = self._find_assignment(record.id, project_id, site_id)
            current = assignment.quantity if assignment else ZERO
            if current + quantity < ZERO:
                raise WouldGoNegativeError(
                    original.id, f"assignment:{project_id}/{site_id}", current, quantity,
                )

    def _append_movement(
        self,
        record: InventoryRecordModel,
        movement_type: MovementType,
        quantity: Decimal,
        before: tuple[Decimal, Decimal],
        actor_id: UUID,
        **fields,
    ) -> InventoryMovementModel:
        last = self._session.execute(
            select(func.max(InventoryMovementModel.sequence)).where(
                InventoryMovementModel.record_id == record.id
            )
        ).scalar_one_or_none()
        value_amount = fields.pop("value_amount", None)
        movement = InventoryMovementModel(
            movement_type=movement_type.value,
            status=MovementStatus.ACTIVE.value,
            record_id=record.id,
            sequence=(last or 0) + 1,
            material_id=record.material_id,
            location_id=record.location_id,
            quantity=quantity,
            available_before=before[0],
            available_after=record.available,
            assigned_before=before[1],
            assigned_after=record.assigned,
            value_amount=round_money(value_amount, 4) if value_amount is not None else None,
            movement_date=self._clock.today(),
            occurred_at=self._clock.now(),
            created_by_id=actor_id,
            **fields,
        )
        self._session.add(movement)
        self._session.flush()
        return movement

    @staticmethod
    def _result(record: InventoryRecordModel, movement: InventoryMovementModel) -> StockMovementResult:
        return StockMovementResult(record=record.to_dto(), movement=movement.to_dto())
