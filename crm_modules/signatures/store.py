"""
SignatureStore -- persistence for validated signatures.

Invariants enforced:
    - At most one signature per (document, role).  The check in
      ``validate_signature`` gives a friendly error in the common case;
      the unique constraint decides the race.  An IntegrityError from the
      insert becomes AlreadySignedError naming whoever won.
    - Inserts run in a savepoint so a lost race leaves the caller's
      transaction usable.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_kernel.domain.actors import PUBLIC_ACTOR_ID
from crm_kernel.domain.clock import Clock
from crm_kernel.exceptions import AlreadySignedError
from crm_kernel.logging_config import get_logger
from crm_modules.signatures.models import DocumentType, Signature, SignaturePayload, SignatureRole
from crm_modules.signatures.orm import DocumentSignatureModel

logger = get_logger("modules.signatures.store")


class SignatureStore:

    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    def signatures_for(
        self, document_type: DocumentType, document_id: UUID
    ) -> dict[SignatureRole, Signature]:
        rows = self._session.execute(
            select(DocumentSignatureModel).where(
                DocumentSignatureModel.document_type == document_type.value,
                DocumentSignatureModel.document_id == document_id,
            )
        ).scalars()
        return {SignatureRole(row.role): row.to_dto() for row in rows}

    def signer_names(
        self, document_type: DocumentType, document_id: UUID
    ) -> dict[SignatureRole, str]:
        return {
            role: sig.signer_name
            for role, sig in self.signatures_for(document_type, document_id).items()
        }

    def record(
        self,
        *,
        company_id: UUID,
        document_type: DocumentType,
        document_id: UUID,
        role: SignatureRole,
        payload: SignaturePayload,
        signed_by_user_id: UUID | None = None,
    ) -> Signature:
        """
        Insert the signature row.

        Raises:
            AlreadySignedError: another signature for ``role`` exists,
                including one committed by a concurrent request.
        """
        row = DocumentSignatureModel(
            company_id=company_id,
            document_type=document_type.value,
            document_id=document_id,
            role=role.value,
            signer_name=payload.signer_name,
            signer_email=payload.signer_email,
            signer_title=payload.signer_title,
            signature_data=payload.signature_data,
            ip_address=payload.ip_address,
            user_agent=payload.user_agent,
            signed_at=self._clock.now(),
            signed_by_user_id=signed_by_user_id,
            created_by_id=signed_by_user_id or PUBLIC_ACTOR_ID,
        )

        savepoint = self._session.begin_nested()
        try:
            self._session.add(row)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            winner = self.signer_names(document_type, document_id).get(role)
            logger.warning(
                "signature_conflict",
                extra={
                    "document_type": document_type.value,
                    "document_id": str(document_id),
                    "role": role.value,
                },
            )
            raise AlreadySignedError(
                document_type.value, document_id, role.value, winner
            ) from None

        logger.info(
            "signature_recorded",
            extra={
                "document_type": document_type.value,
                "document_id": str(document_id),
                "role": role.value,
                "signature_id": str(row.id),
            },
        )
        return row.to_dto()
