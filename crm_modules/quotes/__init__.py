"""
Quotes -- priced proposals and their dual-signature lifecycle.

Services live in ``crm_modules.quotes.service``; this package exports
the value objects, workflows and configuration.
"""

from crm_modules.quotes.config import QuoteConfig
from crm_modules.quotes.models import (
    LineItemInput,
    Quote,
    QuoteLineItem,
    QuoteStatus,
    QuoteTotals,
    SigningResult,
    SigningState,
)
from crm_modules.quotes.workflows import QUOTE_SIGNING_WORKFLOW, QUOTE_WORKFLOW

__all__ = [
    "LineItemInput",
    "QUOTE_SIGNING_WORKFLOW",
    "QUOTE_WORKFLOW",
    "Quote",
    "QuoteConfig",
    "QuoteLineItem",
    "QuoteStatus",
    "QuoteTotals",
    "SigningResult",
    "SigningState",
]
