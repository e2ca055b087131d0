"""JSON encoding for module DTOs."""

from decimal import Decimal
from typing import Any

from fastapi.encoders import jsonable_encoder


def encode(obj: Any) -> Any:
    """Encode frozen dataclasses, enums, UUIDs and dates; Decimals become strings."""
    return jsonable_encoder(obj, custom_encoder={Decimal: str})
