"""
Shared helpers for module services.

Used by procurement_modules/*/service.py to own (or defer) the transaction
boundary and to load aggregates under a row lock.

Architecture: Modules layer. Imports only from procurement_kernel.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_kernel.db.engine import translate_store_errors
from procurement_kernel.logging_config import get_logger

logger = get_logger("modules.transactions")

ModelT = TypeVar("ModelT")


@contextmanager
def transaction_boundary(
    session: Session,
    operation: str,
    auto_commit: bool = True,
) -> Generator[None, None, None]:
    """Commit on success, roll back on any exception.

    With ``auto_commit=False`` the caller owns the boundary: the block is
    only flushed, and nothing is rolled back here.  Store failures surface
    as ``TransactionError`` either way.
    """
    try:
        with translate_store_errors(operation):
            yield
            if auto_commit:
                session.commit()
            else:
                session.flush()
    except Exception:
        if auto_commit:
            session.rollback()
            logger.warning("service_transaction_rolled_back", extra={"operation": operation})
        raise


def lock_by_id(session: Session, model: type[ModelT], entity_id) -> ModelT | None:
    """``SELECT ... FOR UPDATE`` by primary key, refreshing any cached copy."""
    return session.execute(
        select(model)
        .where(model.id == entity_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
