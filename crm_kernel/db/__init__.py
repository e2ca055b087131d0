"""Database layer - engine, base classes, types, and immutability."""

from crm_kernel.db.base import (
    UUID,
    Base,
    ShareLinkMixin,
    SoftDeleteMixin,
    TrackedBase,
    UUIDString,
)
from crm_kernel.db.engine import create_tables, get_engine, get_session, session_scope
from crm_kernel.db.types import LongText, Money, PayloadHash, Rate, ShortCode

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "SoftDeleteMixin",
    "ShareLinkMixin",
    "UUIDString",
    "UUID",
    "Money",
    "Rate",
    "ShortCode",
    "LongText",
    "PayloadHash",
]
