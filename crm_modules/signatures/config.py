"""
Signature capture configuration.
"""

from dataclasses import dataclass, field
from typing import Any, Self

from crm_kernel.logging_config import get_logger

logger = get_logger("modules.signatures.config")


@dataclass
class SignatureConfig:
    """
    Limits on submitted signature images.

        config = SignatureConfig.from_dict({"max_image_bytes": 256000})
    """

    max_image_bytes: int = 512_000
    allowed_media_types: tuple[str, ...] = field(
        default=("image/png", "image/jpeg", "image/svg+xml")
    )
    max_name_length: int = 255

    def __post_init__(self) -> None:
        if self.max_image_bytes <= 0:
            raise ValueError("max_image_bytes must be positive")
        if not self.allowed_media_types:
            raise ValueError("allowed_media_types cannot be empty")
        if self.max_name_length <= 0:
            raise ValueError("max_name_length must be positive")

        logger.debug(
            "signature_config_initialized",
            extra={
                "max_image_bytes": self.max_image_bytes,
                "allowed_media_types": list(self.allowed_media_types),
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        return cls()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Self:
        data = dict(data)
        if "allowed_media_types" in data:
            data["allowed_media_types"] = tuple(data["allowed_media_types"])
        return cls(**data)
