"""
Invoices -- billing documents assembled from contract, change orders and
additional items.

InvoiceAggregator lives in ``crm_modules.invoices.service``.
"""

from crm_modules.invoices.config import InvoiceConfig
from crm_modules.invoices.models import (
    AdditionalItem,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    LineKind,
    LineSource,
)
from crm_modules.invoices.workflows import INVOICE_WORKFLOW, payment_status

__all__ = [
    "AdditionalItem",
    "INVOICE_WORKFLOW",
    "Invoice",
    "InvoiceConfig",
    "InvoiceLineItem",
    "InvoiceStatus",
    "LineKind",
    "LineSource",
    "payment_status",
]
