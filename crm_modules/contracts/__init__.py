"""
Contracts -- immutable snapshots of signed quotes, revised by change orders.

ContractSnapshotService lives in ``crm_modules.contracts.service``.
"""

from crm_modules.contracts.models import (
    Contract,
    ContractComparison,
    ContractCreation,
    ContractLineItem,
    ContractParty,
    ContractStatus,
    RevisionLineItem,
    RevisionSource,
)
from crm_modules.contracts.workflows import CONTRACT_WORKFLOW

__all__ = [
    "CONTRACT_WORKFLOW",
    "Contract",
    "ContractComparison",
    "ContractCreation",
    "ContractLineItem",
    "ContractParty",
    "ContractStatus",
    "RevisionLineItem",
    "RevisionSource",
]
