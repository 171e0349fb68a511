"""
Module ORM Registry (``concession_modules._orm_registry``).

Ensures every SQLAlchemy model is imported so that ``Base.metadata`` holds
all table definitions before ``create_tables()`` runs.  Called lazily by
``concession_kernel.db.engine.create_tables`` and by ``tests/conftest.py``.
"""


def import_all_orm_models() -> None:
    """Import kernel and module ORM models.  Idempotent."""
    # fmt: off
    import concession_kernel.services.sequence_service  # noqa: F401
    import concession_modules.tenants.orm  # noqa: F401
    import concession_modules.catalog.orm  # noqa: F401
    import concession_modules.inventory.orm  # noqa: F401
    import concession_modules.ordering.orm  # noqa: F401
    import concession_modules.qr_names.orm  # noqa: F401
    # fmt: on
