"""
LifecycleConfig schema.

Frozen dataclasses parsed from YAML by ``crm_config.loader``.  Runtime
code receives these through ``crm_config.get_active_config()`` and
passes the relevant section to the services it builds; services never
read configuration themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DocumentSettings:
    """Numbering and share-link settings."""

    share_link_ttl_days: int = 30
    number_width: int = 3
    invoice_prefix: str = "INV"
    change_order_prefix: str = "CO"
    payment_prefix: str = "PAY"
    contract_prefix: str = "CTR"
    default_payment_terms_days: int = 30


@dataclass(frozen=True)
class NotificationSettings:
    """Bounds on calls to the email and PDF collaborators."""

    timeout_seconds: float = 20.0
    max_workers: int = 4


@dataclass(frozen=True)
class SignatureSettings:
    max_image_bytes: int = 512_000
    allowed_media_types: tuple[str, ...] = ("image/png", "image/jpeg", "image/svg+xml")


@dataclass(frozen=True)
class LifecycleConfig:
    """Root configuration object."""

    database_url: str = "sqlite+pysqlite:///:memory:"
    log_level: str = "INFO"
    documents: DocumentSettings = field(default_factory=DocumentSettings)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    signatures: SignatureSettings = field(default_factory=SignatureSettings)
