"""
Typed exception hierarchy for the quote-to-cash lifecycle.

Every error raised by a lifecycle service is a subclass of ``CrmError``
and carries:
  1. a machine-readable ``code`` class attribute (stable across message
     wording changes and safe to return from the API);
  2. structured attributes describing the failing entity, so callers
     and the log formatter never parse message strings.

Catch by type, not by message:

    try:
        signing.sign_customer(quote_id, payload)
    except AlreadySignedError as e:
        respond(400, code=e.code, signer=e.signer_name)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CrmError (base)
    |
    +-- NotFoundError
    |   +-- QuoteNotFoundError
    |   +-- ContractNotFoundError
    |   +-- ChangeOrderNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- PaymentNotFoundError
    |   +-- CommissionNotFoundError
    |   +-- ShareTokenNotFoundError
    |
    +-- LinkExpiredError
    |
    +-- InvalidStateError
    |   +-- InvalidTransitionError
    |   +-- QuoteLockedError
    |
    +-- DuplicateSubmissionError
    |   +-- AlreadySignedError
    |
    +-- ValidationError
    |   +-- SignatureValidationError
    |
    +-- AuthenticationError
    |
    +-- DownstreamFailure
    |   +-- NotificationDispatchError
    |   +-- DocumentRenderError
    |   +-- DispatchTimeoutError
    |
    +-- PersistenceError
    |   +-- InvoiceLineItemWriteError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

Propagation:
    NotFound, LinkExpired, InvalidState, DuplicateSubmission and
    ValidationError are returned synchronously and leave no partial
    writes. DownstreamFailure is caught at the notification boundary
    and logged; it never fails the primary operation.
"""


class CrmError(Exception):
    """
    Base exception for all lifecycle errors.

    All subclasses must define a ``code`` class attribute.
    """

    code: str = "CRM_ERROR"


# Not found


class NotFoundError(CrmError):
    """Entity does not exist, is soft-deleted, or belongs to another company."""

    code: str = "NOT_FOUND"
    entity_type: str = "entity"

    def __init__(self, entity_id: object):
        self.entity_id = str(entity_id)
        super().__init__(f"{self.entity_type.capitalize()} not found: {entity_id}")


class QuoteNotFoundError(NotFoundError):
    code: str = "QUOTE_NOT_FOUND"
    entity_type = "quote"


class ContractNotFoundError(NotFoundError):
    code: str = "CONTRACT_NOT_FOUND"
    entity_type = "contract"


class ChangeOrderNotFoundError(NotFoundError):
    code: str = "CHANGE_ORDER_NOT_FOUND"
    entity_type = "change order"


class InvoiceNotFoundError(NotFoundError):
    code: str = "INVOICE_NOT_FOUND"
    entity_type = "invoice"


class PaymentNotFoundError(NotFoundError):
    code: str = "PAYMENT_NOT_FOUND"
    entity_type = "payment"


class CommissionNotFoundError(NotFoundError):
    code: str = "COMMISSION_NOT_FOUND"
    entity_type = "commission"


class ShareTokenNotFoundError(NotFoundError):
    """No document is reachable through the given share token."""

    code: str = "SHARE_TOKEN_NOT_FOUND"
    entity_type = "shared document"

    def __init__(self, document_type: str):
        self.document_type = document_type
        self.entity_id = ""
        CrmError.__init__(
            self, f"{document_type.replace('_', ' ').capitalize()} not found or link expired"
        )


# Expired share links


class LinkExpiredError(CrmError):
    """The share link used to reach a document is past its expiry."""

    code: str = "LINK_EXPIRED"

    def __init__(self, document_type: str, document_id: object, expired_at: object):
        self.document_type = document_type
        self.document_id = str(document_id)
        self.expired_at = expired_at
        super().__init__("This link has expired")


# Lifecycle state


class InvalidStateError(CrmError):
    """Operation attempted against a document in the wrong lifecycle state."""

    code: str = "INVALID_STATE"

    def __init__(
        self,
        entity_type: str,
        entity_id: object,
        current_state: str,
        action: str,
        message: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.current_state = current_state
        self.action = action
        super().__init__(
            message
            or f"Cannot {action} {entity_type} {entity_id} in state '{current_state}'"
        )


class InvalidTransitionError(InvalidStateError):
    """No workflow transition exists for (state, action)."""

    code: str = "INVALID_TRANSITION"


class QuoteLockedError(InvalidStateError):
    """Quote is signed and locked; line items change only via change orders."""

    code: str = "QUOTE_LOCKED"

    def __init__(self, quote_id: object, action: str = "edit"):
        super().__init__(
            "quote",
            quote_id,
            "locked",
            action,
            message=f"Quote {quote_id} is locked; use a change order instead",
        )


# Duplicate submissions


class DuplicateSubmissionError(CrmError):
    """A write that may happen at most once was attempted again."""

    code: str = "DUPLICATE_SUBMISSION"


class AlreadySignedError(DuplicateSubmissionError):
    """A signature already exists for the (document, role) pair."""

    code: str = "ALREADY_SIGNED"

    def __init__(
        self,
        document_type: str,
        document_id: object,
        role: str,
        signer_name: str | None = None,
    ):
        self.document_type = document_type
        self.document_id = str(document_id)
        self.role = role
        self.signer_name = signer_name
        signer = signer_name or role.replace("_", " ")
        super().__init__(f"This document has already been signed by {signer}")


# Validation


class ValidationError(CrmError):
    """Missing or malformed input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class SignatureValidationError(ValidationError):
    code: str = "INVALID_SIGNATURE"


# Authentication


class AuthenticationError(CrmError):
    code: str = "UNAUTHENTICATED"

    def __init__(self, reason: str = "Authentication required"):
        self.reason = reason
        super().__init__(reason)


# Downstream collaborators


class DownstreamFailure(CrmError):
    """An external collaborator (email, PDF rendering) failed."""

    code: str = "DOWNSTREAM_FAILURE"

    def __init__(self, collaborator: str, reason: str):
        self.collaborator = collaborator
        self.reason = reason
        super().__init__(f"{collaborator} failed: {reason}")


class NotificationDispatchError(DownstreamFailure):
    code: str = "NOTIFICATION_DISPATCH_FAILED"

    def __init__(self, reason: str):
        super().__init__("notification_dispatcher", reason)


class DocumentRenderError(DownstreamFailure):
    code: str = "DOCUMENT_RENDER_FAILED"

    def __init__(self, reason: str):
        super().__init__("document_renderer", reason)


class DispatchTimeoutError(DownstreamFailure):
    code: str = "DOWNSTREAM_TIMEOUT"

    def __init__(self, collaborator: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(collaborator, f"timed out after {timeout_seconds}s")


# Persistence


class PersistenceError(CrmError):
    code: str = "PERSISTENCE_ERROR"


class InvoiceLineItemWriteError(PersistenceError):
    """Line items could not be written; the invoice row was compensated."""

    code: str = "INVOICE_LINE_ITEMS_FAILED"

    def __init__(self, invoice_number: str, reason: str):
        self.invoice_number = invoice_number
        self.reason = reason
        super().__init__(
            f"Failed to create line items for invoice {invoice_number}: {reason}"
        )


# Immutability


class ImmutabilityError(CrmError):
    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Contracts (outside their status columns), contract line items,
    signatures and invoice line items are immutable once written.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: object, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
