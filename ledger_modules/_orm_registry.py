"""
Loads every ORM model onto ``Base.metadata``.

``create_tables`` calls this lazily; the kernel does not import the
module or batch packages at import time.
"""


def import_all_orm_models() -> None:
    """Kernel tables first: documents, retainers and recurring rows reference them."""
    import ledger_kernel.models  # noqa: F401
    import ledger_modules.documents.orm  # noqa: F401
    import ledger_modules.retainers.orm  # noqa: F401
    import ledger_batch.models  # noqa: F401
