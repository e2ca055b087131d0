"""
Signatures -- capture and storage of customer / company-rep signatures.

Shared by quotes and change orders.  ``validate_signature`` is the pure
validation step; ``SignatureStore`` persists one row per
(document, role) and turns a uniqueness violation into
``AlreadySignedError``.
"""

from crm_modules.signatures.capture import validate_signature
from crm_modules.signatures.config import SignatureConfig
from crm_modules.signatures.models import (
    DocumentType,
    Signature,
    SignaturePayload,
    SignatureRole,
)
from crm_modules.signatures.store import SignatureStore

__all__ = [
    "DocumentType",
    "Signature",
    "SignatureConfig",
    "SignaturePayload",
    "SignatureRole",
    "SignatureStore",
    "validate_signature",
]
