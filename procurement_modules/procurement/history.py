"""
Purchase order history -- the append-only audit trail.

Every status change, edit, reception and payment on a purchase order
appends one ``PurchaseOrderHistoryModel`` row in the same transaction as the
change itself.  Rows are numbered per order under the order's row lock.
"""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from procurement_modules.procurement.models import HistoryEventType
from procurement_modules.procurement.orm import PurchaseOrderHistoryModel, PurchaseOrderModel


def _default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return str(value)


def to_json_details(details: dict[str, Any] | None) -> dict[str, Any]:
    """Decimals, UUIDs, dates and enums become strings; structure is kept."""
    return json.loads(json.dumps(details or {}, default=_default))


def append_history(
    session: Session,
    order: PurchaseOrderModel,
    event_type: HistoryEventType,
    actor_id: UUID,
    occurred_at: datetime,
    *,
    from_status: str | None = None,
    to_status: str | None = None,
    details: dict[str, Any] | None = None,
) -> PurchaseOrderHistoryModel:
    """Append one history row; the caller holds the order lock."""
    last = session.execute(
        select(func.max(PurchaseOrderHistoryModel.sequence)).where(
            PurchaseOrderHistoryModel.purchase_order_id == order.id
        )
    ).scalar_one_or_none()
    entry = PurchaseOrderHistoryModel(
        purchase_order_id=order.id,
        sequence=(last or 0) + 1,
        event_type=event_type.value,
        from_status=from_status,
        to_status=to_status,
        details=to_json_details(details),
        occurred_at=occurred_at,
        created_by_id=actor_id,
    )
    session.add(entry)
    session.flush()
    return entry


def list_history(session: Session, order_id: UUID) -> list[PurchaseOrderHistoryModel]:
    return list(
        session.execute(
            select(PurchaseOrderHistoryModel)
            .where(PurchaseOrderHistoryModel.purchase_order_id == order_id)
            .order_by(PurchaseOrderHistoryModel.sequence)
        ).scalars()
    )
