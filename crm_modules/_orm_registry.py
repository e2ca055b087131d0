"""
Module ORM registry (``crm_modules._orm_registry``).

Imports every ``crm_modules.*.orm`` module (and the kernel's sequence
counter table) so ``Base.metadata`` holds the full schema before
``create_tables()`` runs.  Idempotent.
"""


def import_all_orm_models() -> None:
    # fmt: off
    import crm_kernel.services.sequence_service  # noqa: F401  # sequence_counters
    import crm_modules.signatures.orm  # noqa: F401
    import crm_modules.quotes.orm  # noqa: F401
    import crm_modules.contracts.orm  # noqa: F401
    import crm_modules.change_orders.orm  # noqa: F401
    import crm_modules.invoices.orm  # noqa: F401
    import crm_modules.payments.orm  # noqa: F401
    import crm_modules.commissions.orm  # noqa: F401
    # fmt: on
