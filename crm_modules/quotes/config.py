"""
Quote configuration.
"""

from dataclasses import dataclass
from typing import Any, Self

from crm_kernel.logging_config import get_logger

logger = get_logger("modules.quotes.config")


@dataclass
class QuoteConfig:
    """
    Share-link settings for quotes.

        config = QuoteConfig(share_link_ttl_days=14)
    """

    share_link_ttl_days: int = 30

    def __post_init__(self) -> None:
        if self.share_link_ttl_days <= 0:
            raise ValueError("share_link_ttl_days must be positive")

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        return cls(**data)
