"""
Invoice configuration.
"""

from dataclasses import dataclass
from typing import Any, Self

from crm_kernel.logging_config import get_logger

logger = get_logger("modules.invoices.config")


@dataclass
class InvoiceConfig:
    """
    Invoice defaults.

        config = InvoiceConfig(default_payment_terms_days=15)
    """

    default_payment_terms_days: int = 30
    share_link_ttl_days: int = 30

    def __post_init__(self) -> None:
        if self.default_payment_terms_days < 0:
            raise ValueError("default_payment_terms_days cannot be negative")
        if self.share_link_ttl_days <= 0:
            raise ValueError("share_link_ttl_days must be positive")

    @property
    def payment_terms_label(self) -> str:
        if self.default_payment_terms_days == 0:
            return "Due on receipt"
        return f"Net {self.default_payment_terms_days}"

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(**data)
