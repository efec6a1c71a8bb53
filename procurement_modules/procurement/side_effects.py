"""
Authorization side effects.

Emitting the purchase order document and notifying the people involved
happen outside the store (PDF rendering, e-mail delivery).  The service
reaches them through ``AuthorizationSideEffects`` and only after the
authorization has committed.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from procurement_kernel.logging_config import get_logger
from procurement_modules.procurement.models import PurchaseOrder

logger = get_logger("modules.procurement.side_effects")


@runtime_checkable
class AuthorizationSideEffects(Protocol):
    """Port for post-authorization work; implementations may raise."""

    def emit_document(self, order: PurchaseOrder) -> None: ...

    def notify(self, order: PurchaseOrder, event: str) -> None: ...


class LoggingSideEffects:
    """Default implementation: records that the work is due and does nothing else."""

    def emit_document(self, order: PurchaseOrder) -> None:
        logger.info(
            "purchase_order_document_requested",
            extra={"order_id": str(order.id), "order_number": order.number},
        )

    def notify(self, order: PurchaseOrder, event: str) -> None:
        logger.info(
            "purchase_order_notification_requested",
            extra={"order_id": str(order.id), "order_number": order.number, "event": event},
        )
