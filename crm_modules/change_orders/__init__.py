"""
Change orders -- signed amendments to a quote.

ChangeOrderService lives in ``crm_modules.change_orders.service``.
"""

from crm_modules.change_orders.config import ChangeOrderConfig
from crm_modules.change_orders.models import (
    ChangeOrder,
    ChangeOrderLineItem,
    ChangeOrderSigningResult,
    ChangeOrderStatus,
)
from crm_modules.change_orders.workflows import CHANGE_ORDER_WORKFLOW

__all__ = [
    "CHANGE_ORDER_WORKFLOW",
    "ChangeOrder",
    "ChangeOrderConfig",
    "ChangeOrderLineItem",
    "ChangeOrderSigningResult",
    "ChangeOrderStatus",
]
