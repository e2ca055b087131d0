"""
Payments -- money received against invoices, and the settlement view.

PaymentLedger lives in ``crm_modules.payments.service``.
"""

from crm_modules.payments.models import LeadSettlement, Payment, PaymentMethod

__all__ = [
    "LeadSettlement",
    "Payment",
    "PaymentMethod",
]
