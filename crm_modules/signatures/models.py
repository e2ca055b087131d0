"""
Signature domain models (``crm_modules.signatures.models``).

Frozen value objects.  ``SignaturePayload`` is what a signer submits;
``Signature`` is what was persisted.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class SignatureRole(Enum):
    CUSTOMER = "customer"
    COMPANY_REP = "company_rep"

    @property
    def label(self) -> str:
        return "customer" if self is SignatureRole.CUSTOMER else "company representative"


class DocumentType(Enum):
    QUOTE = "quote"
    CHANGE_ORDER = "change_order"


@dataclass(frozen=True)
class SignaturePayload:
    """A submitted signature.

    ``signature_data`` is the rendered signature image as a data URL
    (``data:image/png;base64,...``).
    """
    signer_name: str
    signature_data: str
    signer_email: str | None = None
    signer_title: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class Signature:
    id: UUID
    company_id: UUID
    document_type: DocumentType
    document_id: UUID
    role: SignatureRole
    signer_name: str
    signature_data: str
    signed_at: datetime
    signer_email: str | None = None
    signer_title: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    signed_by_user_id: UUID | None = None
