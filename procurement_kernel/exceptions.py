"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (the HTTP adapter, batch jobs, tests) must decide between "fix the
request", "retry the whole operation" and "give up". Parsing message strings
for that decision is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (entity ids, offending quantities)

Example:
    try:
        inventory.commit_stock(...)
    except InsufficientStockError as e:
        api_response(code=e.code, available=e.available, requested=e.requested)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProcurementKernelError (base)
    |
    +-- DomainError                      recoverable by the caller
    |   +-- WorkflowError
    |   |   +-- InvalidTransitionError
    |   |   +-- NotEditableError
    |   +-- PurchaseOrderError
    |   |   +-- PurchaseOrderNotFoundError
    |   |   +-- PurchaseOrderLineNotFoundError
    |   |   +-- EmptyOrderError
    |   |   +-- OverReceiptError
    |   |   +-- PurchaseOrderNotLiquidatedError
    |   +-- QuotingError
    |   |   +-- RequisitionNotFoundError
    |   |   +-- QuoteOptionNotFoundError
    |   |   +-- QuoteOptionLockedError
    |   |   +-- OverAllocationError
    |   |   +-- InvalidQuoteGroupingError
    |   +-- InventoryError
    |   |   +-- InsufficientStockError
    |   |   +-- WouldGoNegativeError
    |   |   +-- AlreadyReversedError
    |   |   +-- MovementNotFoundError
    |   |   +-- MovementNotReversibleError
    |   |   +-- ReversalWindowClosedError
    |   |   +-- AssignmentNotFoundError
    |   |   +-- InvalidAssignmentTransferError
    |   |   +-- MissingJustificationError
    |   +-- DistributionError
    |   |   +-- MissingExchangeRateError
    |   |   +-- NoDistributionBaseError
    |   |   +-- AlreadyClosedError
    |   |   +-- IncrementalCostNotFoundError
    |   |   +-- InvalidBaseOrderError
    |   +-- PaymentError
    |   |   +-- PaymentNotFoundError
    |   |   +-- InvalidPaymentError
    |   |   +-- PaymentAlreadyReversedError
    |   +-- InvalidCurrencyError
    |
    +-- TransactionError                 safe to retry the whole operation
        +-- StoreUnavailableError
        +-- SerializationConflictError

===============================================================================
DESIGN DECISIONS
===============================================================================

1. Domain errors and transaction errors share a root but never a branch.
   Middleware retries ``TransactionError`` and reports ``DomainError``.

2. ``code`` is a class attribute: static per type, available without an
   instance, usable for API documentation.

3. Side effects that fail after a committed state change (document emission,
   notifications) are NOT exceptions. They are warnings on the result.

===============================================================================
"""

from decimal import Decimal


class ProcurementKernelError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROCUREMENT_KERNEL_ERROR"


class DomainError(ProcurementKernelError):
    """Base for business-rule violations the caller can act upon."""

    code: str = "DOMAIN_ERROR"


# Workflow exceptions


class WorkflowError(DomainError):
    """Base exception for state machine errors."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """The requested action is not allowed from the entity's current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_id: str, current_state: str, action: str):
        self.entity_id = entity_id
        self.current_state = current_state
        self.action = action
        super().__init__(
            f"Action '{action}' is not allowed for {entity_id} "
            f"in state '{current_state}'"
        )


class NotEditableError(WorkflowError):
    """Purchase order can no longer be edited (authorized or terminal)."""

    code: str = "NOT_EDITABLE"

    def __init__(self, order_id: str, status: str):
        self.order_id = order_id
        self.status = status
        super().__init__(
            f"Purchase order {order_id} is not editable in status '{status}'"
        )


# Purchase order exceptions


class PurchaseOrderError(DomainError):
    """Base exception for purchase order errors."""

    code: str = "PURCHASE_ORDER_ERROR"


class PurchaseOrderNotFoundError(PurchaseOrderError):
    """Purchase order with given ID was not found."""

    code: str = "PURCHASE_ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Purchase order not found: {order_id}")


class PurchaseOrderLineNotFoundError(PurchaseOrderError):
    """A line id does not belong to the purchase order."""

    code: str = "PURCHASE_ORDER_LINE_NOT_FOUND"

    def __init__(self, order_id: str, line_id: str):
        self.order_id = order_id
        self.line_id = line_id
        super().__init__(f"Line {line_id} does not belong to purchase order {order_id}")


class EmptyOrderError(PurchaseOrderError):
    """An edit would leave the purchase order without lines."""

    code: str = "EMPTY_ORDER"

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Purchase order {order_id} must keep at least one line")


class OverReceiptError(PurchaseOrderError):
    """Received quantity would exceed the ordered quantity."""

    code: str = "OVER_RECEIPT"

    def __init__(
        self,
        line_id: str,
        ordered: Decimal,
        already_received: Decimal,
        requested: Decimal,
    ):
        self.line_id = line_id
        self.ordered = ordered
        self.already_received = already_received
        self.requested = requested
        super().__init__(
            f"Line {line_id}: receiving {requested} on top of {already_received} "
            f"exceeds ordered quantity {ordered}"
        )


class PurchaseOrderNotLiquidatedError(PurchaseOrderError):
    """Purchase order cannot close while an amount is still outstanding."""

    code: str = "PURCHASE_ORDER_NOT_LIQUIDATED"

    def __init__(self, order_id: str, total: Decimal, amount_paid: Decimal):
        self.order_id = order_id
        self.total = total
        self.amount_paid = amount_paid
        super().__init__(
            f"Purchase order {order_id} has {amount_paid} paid of {total}"
        )


# Quoting exceptions


class QuotingError(DomainError):
    """Base exception for requisition and quote errors."""

    code: str = "QUOTING_ERROR"


class RequisitionNotFoundError(QuotingError):
    """Requisition with given ID was not found."""

    code: str = "REQUISITION_NOT_FOUND"

    def __init__(self, requisition_id: str):
        self.requisition_id = requisition_id
        super().__init__(f"Requisition not found: {requisition_id}")


class QuoteOptionNotFoundError(QuotingError):
    """Quote option with given ID was not found."""

    code: str = "QUOTE_OPTION_NOT_FOUND"

    def __init__(self, option_id: str):
        self.option_id = option_id
        super().__init__(f"Quote option not found: {option_id}")


class QuoteOptionLockedError(QuotingError):
    """Quote option was already consumed by a purchase order."""

    code: str = "QUOTE_OPTION_LOCKED"

    def __init__(self, option_id: str, order_id: str):
        self.option_id = option_id
        self.order_id = order_id
        super().__init__(
            f"Quote option {option_id} is locked by purchase order {order_id}"
        )


class OverAllocationError(QuotingError):
    """Consuming a quote would push processed quantity above the requirement."""

    code: str = "OVER_ALLOCATION"

    def __init__(
        self,
        requisition_line_id: str,
        required_quantity: Decimal,
        processed_quantity: Decimal,
        requested_quantity: Decimal,
    ):
        self.requisition_line_id = requisition_line_id
        self.required_quantity = required_quantity
        self.processed_quantity = processed_quantity
        self.requested_quantity = requested_quantity
        super().__init__(
            f"Requisition line {requisition_line_id}: {processed_quantity} processed "
            f"+ {requested_quantity} requested exceeds required {required_quantity}"
        )


class InvalidQuoteGroupingError(QuotingError):
    """Selected quote options cannot form a consistent purchase order."""

    code: str = "INVALID_QUOTE_GROUPING"

    def __init__(self, group_key: str, reason: str):
        self.group_key = group_key
        self.reason = reason
        super().__init__(f"Invalid quote grouping for {group_key}: {reason}")


# Inventory exceptions


class InventoryError(DomainError):
    """Base exception for inventory ledger errors."""

    code: str = "INVENTORY_ERROR"


class InsufficientStockError(InventoryError):
    """Requested quantity exceeds what the pool holds."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        material_id: str,
        location_id: str,
        available: Decimal,
        requested: Decimal,
        pool: str = "available",
    ):
        self.material_id = material_id
        self.location_id = location_id
        self.available = available
        self.requested = requested
        self.pool = pool
        super().__init__(
            f"Insufficient {pool} stock for material {material_id} at "
            f"{location_id}: {available} < {requested}"
        )


class WouldGoNegativeError(InventoryError):
    """Reversing a movement would drive a pool or assignment below zero."""

    code: str = "WOULD_GO_NEGATIVE"

    def __init__(self, movement_id: str, pool: str, current: Decimal, delta: Decimal):
        self.movement_id = movement_id
        self.pool = pool
        self.current = current
        self.delta = delta
        super().__init__(
            f"Reversing movement {movement_id} would leave {pool} at {current + delta}"
        )


class AlreadyReversedError(InventoryError):
    """Movement already has a reversal pointing to it."""

    code: str = "ALREADY_REVERSED"

    def __init__(self, movement_id: str, reversal_id: str | None = None):
        self.movement_id = movement_id
        self.reversal_id = reversal_id
        super().__init__(f"Movement {movement_id} is already reversed")


class MovementNotFoundError(InventoryError):
    """Movement with given ID was not found."""

    code: str = "MOVEMENT_NOT_FOUND"

    def __init__(self, movement_id: str):
        self.movement_id = movement_id
        super().__init__(f"Movement not found: {movement_id}")


class MovementNotReversibleError(InventoryError):
    """Movement type cannot be reversed (reversals, valuation adjustments)."""

    code: str = "MOVEMENT_NOT_REVERSIBLE"

    def __init__(self, movement_id: str, movement_type: str):
        self.movement_id = movement_id
        self.movement_type = movement_type
        super().__init__(
            f"Movement {movement_id} of type '{movement_type}' cannot be reversed"
        )


class ReversalWindowClosedError(InventoryError):
    """Only movements registered on the current day may be reversed."""

    code: str = "REVERSAL_WINDOW_CLOSED"

    def __init__(self, movement_id: str, movement_date: str, today: str):
        self.movement_id = movement_id
        self.movement_date = movement_date
        self.today = today
        super().__init__(
            f"Movement {movement_id} from {movement_date} cannot be reversed on {today}"
        )


class AssignmentNotFoundError(InventoryError):
    """No assignment exists for the given record and project/site."""

    code: str = "ASSIGNMENT_NOT_FOUND"

    def __init__(self, assignment_ref: str):
        self.assignment_ref = assignment_ref
        super().__init__(f"Inventory assignment not found: {assignment_ref}")


class InvalidAssignmentTransferError(InventoryError):
    """Transfer target is the same as the source assignment."""

    code: str = "INVALID_ASSIGNMENT_TRANSFER"

    def __init__(self, assignment_id: str, reason: str):
        self.assignment_id = assignment_id
        self.reason = reason
        super().__init__(f"Cannot transfer assignment {assignment_id}: {reason}")


class MissingJustificationError(InventoryError):
    """Manual adjustments and reversals require a written reason."""

    code: str = "MISSING_JUSTIFICATION"

    def __init__(self, operation: str, min_length: int = 1):
        self.operation = operation
        self.min_length = min_length
        super().__init__(
            f"{operation} requires a justification of at least {min_length} character(s)"
        )


# Distribution exceptions


class DistributionError(DomainError):
    """Base exception for incremental cost distribution errors."""

    code: str = "DISTRIBUTION_ERROR"


class MissingExchangeRateError(DistributionError):
    """A currency present in the base lines has no supplied rate."""

    code: str = "MISSING_EXCHANGE_RATE"

    def __init__(self, currency: str, reference_currency: str):
        self.currency = currency
        self.reference_currency = reference_currency
        super().__init__(
            f"No exchange rate supplied for {currency} -> {reference_currency}"
        )


class NoDistributionBaseError(DistributionError):
    """Eligible base lines sum to zero; nothing to distribute over."""

    code: str = "NO_DISTRIBUTION_BASE"

    def __init__(self, eligible_lines: int):
        self.eligible_lines = eligible_lines
        super().__init__(
            f"Distribution base is zero ({eligible_lines} eligible line(s))"
        )


class AlreadyClosedError(DistributionError):
    """Incremental cost order was already closed."""

    code: str = "ALREADY_CLOSED"

    def __init__(self, incremental_cost_id: str):
        self.incremental_cost_id = incremental_cost_id
        super().__init__(f"Incremental cost order {incremental_cost_id} is already closed")


class IncrementalCostNotFoundError(DistributionError):
    """Incremental cost order with given ID was not found."""

    code: str = "INCREMENTAL_COST_NOT_FOUND"

    def __init__(self, incremental_cost_id: str):
        self.incremental_cost_id = incremental_cost_id
        super().__init__(f"Incremental cost order not found: {incremental_cost_id}")


class InvalidBaseOrderError(DistributionError):
    """A base purchase order cannot carry incremental costs."""

    code: str = "INVALID_BASE_ORDER"

    def __init__(self, order_id: str, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Purchase order {order_id} is not a valid base: {reason}")


# Payment exceptions


class PaymentError(DomainError):
    """Base exception for payment errors."""

    code: str = "PAYMENT_ERROR"


class PaymentNotFoundError(PaymentError):
    """Payment with given ID was not found."""

    code: str = "PAYMENT_NOT_FOUND"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment not found: {payment_id}")


class InvalidPaymentError(PaymentError):
    """Payment amount or type is not acceptable for the order."""

    code: str = "INVALID_PAYMENT"

    def __init__(self, order_id: str, reason: str):
        self.order_id = order_id
        self.reason = reason
        super().__init__(f"Invalid payment for purchase order {order_id}: {reason}")


class PaymentAlreadyReversedError(PaymentError):
    """Payment was already reversed."""

    code: str = "PAYMENT_ALREADY_REVERSED"

    def __init__(self, payment_id: str):
        self.payment_id = payment_id
        super().__init__(f"Payment {payment_id} is already reversed")


class InvalidCurrencyError(DomainError, ValueError):
    """Raised when an invalid ISO 4217 currency code is provided."""

    code: str = "INVALID_CURRENCY"

    def __init__(self, currency: str):
        self.currency = currency
        super().__init__(f"Invalid ISO 4217 currency code: '{currency}'")


# Transaction exceptions


class TransactionError(ProcurementKernelError):
    """
    Base for store-level failures.

    The operation was rolled back in full and is safe to retry as a whole.
    """

    code: str = "TRANSACTION_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Transaction failed during {operation}: {detail}")


class StoreUnavailableError(TransactionError):
    """The relational store could not be reached."""

    code: str = "STORE_UNAVAILABLE"


class SerializationConflictError(TransactionError):
    """Concurrent transaction conflict (serialization failure or deadlock)."""

    code: str = "SERIALIZATION_CONFLICT"
