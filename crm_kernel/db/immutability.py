"""
ORM-level immutability enforcement for executed documents.

SQLAlchemy fires mapper events before UPDATE/DELETE statements are sent.
The listeners registered here intercept those events and raise
ImmutabilityViolationError, aborting the flush before the database is
touched:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
    [before_delete] --> _check_*_delete() --------> ImmutabilityViolationError

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity               | Rule
---------------------|-----------------------------------------------------
Contract             | Only status columns change; active -> voided/superseded
ContractLineItem     | Never updated or deleted
DocumentSignature    | Never updated or deleted
InvoiceLineItem      | Never updated or deleted (invoices are assembled once)

updated_at / updated_by_id are audit metadata and may always change.
"""

from sqlalchemy import event, inspect

from crm_kernel.exceptions import ImmutabilityViolationError
from crm_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})

# Columns a contract may change after creation, and only while active.
CONTRACT_STATUS_FIELDS = frozenset(
    {"status", "voided_at", "voided_by_id", "void_reason", "superseded_at"}
)


def _blocked(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    state = inspect(target)
    return [
        prop.key
        for prop in state.mapper.column_attrs
        if prop.key not in _AUDIT_FIELDS
        and state.attrs[prop.key].history.has_changes()
    ]


def _check_contract_immutability(mapper, connection, target):
    """
    Contracts are frozen snapshots.

    Only the status group may change, and only when the row was active
    before this flush.  voided and superseded are terminal.
    """
    from sqlalchemy.orm.attributes import get_history

    for field in _changed_fields(target):
        if field not in CONTRACT_STATUS_FIELDS:
            _blocked(
                "Contract", target, "UPDATE",
                f"Cannot modify field '{field}' on a contract",
                field=field,
            )

    status_history = get_history(target, "status")
    if status_history.deleted:
        old_status = status_history.deleted[0]
        old_value = getattr(old_status, "value", old_status)
        if old_value != "active":
            _blocked(
                "Contract", target, "UPDATE",
                f"Contract status '{old_value}' is terminal",
                field="status",
            )
    elif _changed_fields(target):
        current = getattr(target.status, "value", target.status)
        if current != "active":
            _blocked(
                "Contract", target, "UPDATE",
                f"Cannot modify a {current} contract",
            )


def _check_contract_delete(mapper, connection, target):
    _blocked("Contract", target, "DELETE", "Contracts cannot be deleted; void instead")


def _append_only_update(entity_type: str):
    def _check(mapper, connection, target):
        fields = _changed_fields(target)
        if fields:
            _blocked(
                entity_type, target, "UPDATE",
                f"{entity_type} records are immutable",
                field=fields[0],
            )

    _check.__name__ = f"_check_{entity_type.lower()}_immutability"
    return _check


def _append_only_delete(entity_type: str):
    def _check(mapper, connection, target):
        _blocked(entity_type, target, "DELETE", f"{entity_type} records cannot be deleted")

    _check.__name__ = f"_check_{entity_type.lower()}_delete"
    return _check


_check_contract_line_update = _append_only_update("ContractLineItem")
_check_contract_line_delete = _append_only_delete("ContractLineItem")
_check_signature_update = _append_only_update("DocumentSignature")
_check_signature_delete = _append_only_delete("DocumentSignature")
_check_invoice_line_update = _append_only_update("InvoiceLineItem")
_check_invoice_line_delete = _append_only_delete("InvoiceLineItem")


def _listener_table():
    from crm_modules.contracts.orm import ContractLineItemModel, ContractModel
    from crm_modules.invoices.orm import InvoiceLineItemModel
    from crm_modules.signatures.orm import DocumentSignatureModel

    return [
        (ContractModel, "before_update", _check_contract_immutability),
        (ContractModel, "before_delete", _check_contract_delete),
        (ContractLineItemModel, "before_update", _check_contract_line_update),
        (ContractLineItemModel, "before_delete", _check_contract_line_delete),
        (DocumentSignatureModel, "before_update", _check_signature_update),
        (DocumentSignatureModel, "before_delete", _check_signature_delete),
        (InvoiceLineItemModel, "before_update", _check_invoice_line_update),
        (InvoiceLineItemModel, "before_delete", _check_invoice_line_delete),
    ]


def register_immutability_listeners():
    """
    Register all immutability listeners (idempotent).

    Call after ORM models are importable and before any writes.
    """
    for target, event_name, fn in _listener_table():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability listeners.

    Only for tests that deliberately violate the rules to verify detection.
    """
    for target, event_name, fn in _listener_table():
        _safe_remove_listener(target, event_name, fn)
