"""
Signature ORM model (``crm_modules.signatures.orm``).

One row per (document_type, document_id, role).  The unique constraint is
what makes double signing safe across processes: of two concurrent
inserts for the same role, exactly one commits.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from crm_kernel.db.base import TrackedBase


class DocumentSignatureModel(TrackedBase):
    """
    ORM model for signatures on quotes and change orders.

    Guarantees:
        - (document_type, document_id, role) is unique
          (uq_document_signatures_document_role).
        - Rows are immutable once written (db/immutability.py).
    """

    __tablename__ = "document_signatures"

    __table_args__ = (
        UniqueConstraint(
            "document_type",
            "document_id",
            "role",
            name="uq_document_signatures_document_role",
        ),
        CheckConstraint(
            "role IN ('customer', 'company_rep')",
            name="ck_document_signatures_role",
        ),
        CheckConstraint(
            "document_type IN ('quote', 'change_order')",
            name="ck_document_signatures_document_type",
        ),
        Index("idx_document_signatures_document", "document_type", "document_id"),
    )

    company_id: Mapped[UUID] = mapped_column(nullable=False)
    document_type: Mapped[str] = mapped_column(String(20), nullable=False)
    document_id: Mapped[UUID] = mapped_column(nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    signer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    signer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    signer_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    signature_data: Mapped[str] = mapped_column(Text, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    signed_at: Mapped[datetime] = mapped_column(nullable=False)
    signed_by_user_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def to_dto(self):
        from crm_modules.signatures.models import DocumentType, Signature, SignatureRole

        return Signature(
            id=self.id,
            company_id=self.company_id,
            document_type=DocumentType(self.document_type),
            document_id=self.document_id,
            role=SignatureRole(self.role),
            signer_name=self.signer_name,
            signature_data=self.signature_data,
            signed_at=self.signed_at,
            signer_email=self.signer_email,
            signer_title=self.signer_title,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            signed_by_user_id=self.signed_by_user_id,
        )

    def __repr__(self) -> str:
        return (
            f"<DocumentSignatureModel {self.document_type}:{self.document_id} "
            f"role={self.role} signer={self.signer_name!r}>"
        )
