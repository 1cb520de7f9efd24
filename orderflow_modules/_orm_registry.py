"""
Module ORM Registry (``orderflow_modules._orm_registry``).

Ensure all module-level SQLAlchemy ORM models are imported so that
``Base.metadata`` contains their table definitions before tables are
created.  ``orderflow_kernel.db.engine.create_tables()`` calls this.
"""


def import_all_orm_models() -> None:
    """Import every ``orderflow_modules.*.orm`` module (idempotent)."""
    # fmt: off
    import orderflow_modules.inventory.orm  # noqa: F401
    import orderflow_modules.procurement.orm  # noqa: F401
    import orderflow_modules.sales.orm  # noqa: F401
    # fmt: on
