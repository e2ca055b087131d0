"""
CRM lifecycle modules.

Each module holds its own lifecycle:
- signatures: signature validation and the one-per-role signature store
- quotes: quote authoring and the dual-signature state machine
- contracts: immutable contract snapshots and revisions
- change_orders: signed amendments to a contract
- invoices: invoice assembly from contract, change orders and extra items
- payments: the payment ledger and settlement
- commissions: per-role commission eligibility

Each package exports models, workflows and configuration; services are
imported from ``crm_modules.<module>.service``.
"""

from crm_modules import (
    change_orders,
    commissions,
    contracts,
    invoices,
    payments,
    quotes,
    signatures,
)

__all__ = [
    "change_orders",
    "commissions",
    "contracts",
    "invoices",
    "payments",
    "quotes",
    "signatures",
]
