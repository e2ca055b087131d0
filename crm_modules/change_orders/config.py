"""
Change order configuration.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Self


@dataclass
class ChangeOrderConfig:
    """
    Defaults applied when proposing change orders.

        config = ChangeOrderConfig.from_dict({"default_tax_rate": "0.08"})
    """

    default_tax_rate: Decimal = Decimal("0")
    share_link_ttl_days: int = 30

    def __post_init__(self) -> None:
        self.default_tax_rate = Decimal(str(self.default_tax_rate))
        if not Decimal("0") <= self.default_tax_rate < Decimal("1"):
            raise ValueError("default_tax_rate must be a fraction between 0 and 1")
        if self.share_link_ttl_days <= 0:
            raise ValueError("share_link_ttl_days must be positive")

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(**data)
