"""
SequenceService -- per-scope document numbering via locked counter rows.

Responsibility:
    Hands out monotonically increasing numbers per named scope: one global
    scope for purchase orders, one per department for requisitions, one for
    incremental cost orders.  Uses a counter table with row-level locking
    (``SELECT ... FOR UPDATE``) so concurrent allocations serialize.

Architecture position:
    Kernel > Services.  Called by the procurement and incremental cost
    services while they hold their own transaction.

Invariants enforced:
    - Monotonic per scope; the aggregate-max-plus-one pattern is never used.
    - Transactional: a number is consumed only if the caller commits.
      Numbers may have gaps (rolled-back callers); they never repeat.

Failure modes:
    - Concurrent first use of a scope is resolved by INSERT ... ON CONFLICT
      DO NOTHING followed by a locked re-read, so no savepoint is needed.
"""

from uuid import uuid4

from sqlalchemy import BigInteger, String, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Mapped, Session, mapped_column

from procurement_kernel.db.base import Base
from procurement_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """One row per numbering scope."""

    __tablename__ = "sequence_counters"

    # Scope name (e.g., "purchase_order", "requisition:MNT")
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Transactional sequence numbers per scope.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    PURCHASE_ORDER = "purchase_order"
    INCREMENTAL_COST = "incremental_cost"

    def __init__(self, session: Session):
        self._session = session

    @staticmethod
    def requisition_scope(department_code: str) -> str:
        """Requisition numbers restart per department."""
        return f"requisition:{department_code.strip().upper()}"

    def _lock_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _ensure_counter(self, sequence_name: str) -> None:
        dialect = self._session.get_bind().dialect.name
        insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
        stmt = (
            insert(SequenceCounter)
            .values(id=str(uuid4()), name=sequence_name, current_value=0)
            .on_conflict_do_nothing(index_elements=["name"])
        )
        self._session.execute(stmt)

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the scope's counter row (creating it on first use), increment it
        and return the new value (always > 0).
        """
        counter = self._lock_counter(sequence_name)
        if counter is None:
            self._ensure_counter(sequence_name)
            counter = self._lock_counter(sequence_name)
            logger.debug("sequence_scope_created", extra={"sequence_name": sequence_name})

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value of a scope without incrementing, or None if unused."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None


def format_document_number(prefix: str, value: int, width: int = 4) -> str:
    """Display form of a sequence value, e.g. ``OC-0019``."""
    return f"{prefix}-{value:0{width}d}"
