"""
Module ORM Registry (``procurement_modules._orm_registry``).

Responsibility
--------------
Ensure every module-level SQLAlchemy ORM model is imported so that
``Base.metadata`` holds its table before ``create_tables()`` runs.

Architecture position
---------------------
**Modules layer** -- utility.  ``procurement_kernel.db.engine.create_tables``
imports it lazily; nothing else in the kernel may.
"""


def import_all_orm_models() -> None:
    """Import the kernel sequence table and every ``procurement_modules.*.orm``.

    Idempotent -- repeated calls are harmless.
    """
    import procurement_kernel.services.sequence_service  # noqa: F401
    # fmt: off
    import procurement_modules.procurement.orm  # noqa: F401
    import procurement_modules.payments.orm  # noqa: F401
    import procurement_modules.inventory.orm  # noqa: F401
    import procurement_modules.incremental.orm  # noqa: F401
    # fmt: on
