"""Tests for translating driver failures into retryable TransactionErrors."""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from procurement_kernel.db.engine import classify_store_error, session_scope, translate_store_errors
from procurement_kernel.exceptions import (
    SerializationConflictError,
    StoreUnavailableError,
    TransactionError,
)
from procurement_kernel.services.sequence_service import SequenceService


class _DriverError(Exception):
    def __init__(self, message, pgcode=None):
        super().__init__(message)
        self.pgcode = pgcode


def _operational(message, pgcode=None):
    return OperationalError("UPDATE inventory_records ...", {}, _DriverError(message, pgcode))


class TestClassifyStoreError:
    @pytest.mark.parametrize("pgcode", ["40001", "40P01", "55P03"])
    def test_conflict_sqlstates(self, pgcode):
        error = classify_store_error("inventory.commit_stock", _operational("could not serialize", pgcode))

        assert isinstance(error, SerializationConflictError)
        assert error.operation == "inventory.commit_stock"

    def test_sqlite_lock_is_a_conflict(self):
        error = classify_store_error("op", _operational("database is locked"))

        assert isinstance(error, SerializationConflictError)

    def test_connection_failure_is_unavailable(self):
        error = classify_store_error("op", _operational("connection refused"))

        assert isinstance(error, StoreUnavailableError)
        assert error.code == "STORE_UNAVAILABLE"
        assert "connection refused" in error.detail


class TestTranslateStoreErrors:
    def test_operational_error_reraised_as_transaction_error(self):
        with pytest.raises(TransactionError) as exc_info:
            with translate_store_errors("payments.post_payment"):
                raise _operational("server closed the connection unexpectedly")

        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_integrity_error_passes_through(self):
        with pytest.raises(IntegrityError):
            with translate_store_errors("op"):
                raise IntegrityError("INSERT ...", {}, _DriverError("duplicate key"))

    def test_domain_errors_untouched(self):
        with pytest.raises(ValueError):
            with translate_store_errors("op"):
                raise ValueError("bad input")


class TestSessionScope:
    def test_commits_on_clean_exit(self, session):
        with session_scope("sequence.allocate") as scoped:
            SequenceService(scoped).next_value("scope-commit")

        assert SequenceService(session).current_value("scope-commit") == 1

    def test_rolls_back_on_domain_error(self, session):
        with pytest.raises(ValueError):
            with session_scope("sequence.allocate") as scoped:
                SequenceService(scoped).next_value("scope-rollback")
                raise ValueError("bad input")

        assert SequenceService(session).current_value("scope-rollback") is None
