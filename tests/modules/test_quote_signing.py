"""
Tests for QuoteSigningService -- the dual-signature state machine.

Validates:
- Either signing order ends fully_signed, locked, accepted, with one contract
- A role cannot sign twice (AlreadySignedError names the signer)
- Expired share links are refused with LinkExpiredError
- Customers cannot sign draft or declined quotes
- Company signatures need an authenticated user of the quote's company
- A rejected signature writes nothing
- on_contract_signed fires once per quote
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from crm_kernel.domain.hooks import LifecycleHooks
from crm_kernel.exceptions import (
    AlreadySignedError,
    AuthenticationError,
    InvalidStateError,
    LinkExpiredError,
    QuoteLockedError,
    QuoteNotFoundError,
    ShareTokenNotFoundError,
    SignatureValidationError,
)
from crm_modules.quotes.models import LineItemInput, QuoteStatus, SigningState
from crm_modules.quotes.service import QuoteSigningService
from crm_modules.signatures.models import SignaturePayload

# =============================================================================
# Fixtures
# =============================================================================


class RecordingHooks(LifecycleHooks):
    def __init__(self):
        self.contracts_signed = []

    def on_contract_signed(self, *, company_id, lead_id, quote_id, contract_id):
        self.contracts_signed.append(contract_id)


@pytest.fixture
def recording_hooks():
    return RecordingHooks()


@pytest.fixture
def signing(session, deterministic_clock, recording_hooks):
    return QuoteSigningService(session, deterministic_clock, hooks=recording_hooks)


# =============================================================================
# Happy paths
# =============================================================================


class TestDualSignature:

    def test_customer_then_company(
        self, signing, create_quote, customer_payload, company_payload, sales_user, recording_hooks
    ):
        quote = create_quote()

        first = signing.sign_customer_by_token(quote.share_token, customer_payload)
        assert first.quote.signing_state is SigningState.CUSTOMER_SIGNED
        assert first.fully_signed is False
        assert first.contract_id is None
        assert first.quote.is_locked is False

        second = signing.sign_company(quote.id, company_payload, sales_user)
        assert second.fully_signed is True
        assert second.contract_created is True
        assert second.quote.is_locked is True
        assert second.quote.status is QuoteStatus.ACCEPTED
        assert recording_hooks.contracts_signed == [second.contract_id]

    def test_company_then_customer(
        self, signing, create_quote, customer_payload, company_payload, sales_user
    ):
        quote = create_quote()

        first = signing.sign_company(quote.id, company_payload, sales_user)
        assert first.quote.signing_state is SigningState.COMPANY_SIGNED

        second = signing.sign_customer_by_token(quote.share_token, customer_payload)
        assert second.fully_signed is True
        assert second.contract_id is not None
        assert second.signature.signer_name == "Jane Homeowner"
        assert second.signature.ip_address == "203.0.113.7"

    def test_company_may_sign_draft_first(
        self, signing, create_quote, company_payload, sales_user
    ):
        quote = create_quote(send=False)
        result = signing.sign_company(quote.id, company_payload, sales_user)
        assert result.quote.status is QuoteStatus.DRAFT
        assert result.quote.signing_state is SigningState.COMPANY_SIGNED

    def test_viewed_quote_can_be_signed(
        self, lifecycle, signing, create_quote, customer_payload
    ):
        quote = create_quote()
        viewed = lifecycle.quotes.record_view(quote.share_token)
        assert viewed.status is QuoteStatus.PENDING

        result = signing.sign_customer_by_token(quote.share_token, customer_payload)
        assert result.quote.signing_state is SigningState.CUSTOMER_SIGNED


# =============================================================================
# Refusals
# =============================================================================


class TestSigningRefusals:

    def test_customer_cannot_sign_twice(self, signing, create_quote, customer_payload):
        quote = create_quote()
        signing.sign_customer_by_token(quote.share_token, customer_payload)

        with pytest.raises(AlreadySignedError) as exc_info:
            signing.sign_customer_by_token(quote.share_token, customer_payload)
        assert exc_info.value.role == "customer"
        assert exc_info.value.signer_name == "Jane Homeowner"

    def test_company_cannot_sign_twice(self, signing, create_quote, company_payload, sales_user):
        quote = create_quote()
        signing.sign_company(quote.id, company_payload, sales_user)

        with pytest.raises(AlreadySignedError):
            signing.sign_company(quote.id, company_payload, sales_user)

    def test_fully_signed_quote_refuses_more_signatures(
        self, signing, signed_quote, customer_payload
    ):
        quote, _ = signed_quote()
        with pytest.raises(AlreadySignedError):
            signing.sign_customer(quote.id, customer_payload)

    def test_expired_link(self, signing, create_quote, customer_payload, deterministic_clock):
        quote = create_quote()
        deterministic_clock.advance_days(31)

        with pytest.raises(LinkExpiredError):
            signing.sign_customer_by_token(quote.share_token, customer_payload)

    def test_unknown_token(self, signing, customer_payload):
        with pytest.raises(ShareTokenNotFoundError):
            signing.sign_customer_by_token("does-not-exist", customer_payload)

    def test_token_must_match_quote(self, signing, create_quote, customer_payload):
        first = create_quote()
        second = create_quote()
        with pytest.raises(ShareTokenNotFoundError):
            signing.sign_customer(first.id, customer_payload, share_token=second.share_token)

    def test_customer_cannot_sign_draft(self, signing, create_quote, customer_payload):
        quote = create_quote(send=False)
        with pytest.raises(InvalidStateError) as exc_info:
            signing.sign_customer(quote.id, customer_payload)
        assert exc_info.value.current_state == "draft"

    def test_customer_cannot_sign_declined(
        self, lifecycle, signing, create_quote, customer_payload, sales_user
    ):
        quote = create_quote()
        lifecycle.quotes.decline(quote.id, sales_user.user_id, sales_user.company_id)

        with pytest.raises(InvalidStateError, match="declined"):
            signing.sign_customer_by_token(quote.share_token, customer_payload)

    def test_company_signature_requires_user(self, signing, create_quote, company_payload):
        quote = create_quote()
        with pytest.raises(AuthenticationError):
            signing.sign_company(quote.id, company_payload, None)

    def test_company_signature_from_other_company(
        self, signing, create_quote, company_payload, other_company_user
    ):
        quote = create_quote()
        with pytest.raises(QuoteNotFoundError):
            signing.sign_company(quote.id, company_payload, other_company_user)

    def test_invalid_signature_writes_nothing(self, lifecycle, signing, create_quote, sales_user):
        quote = create_quote()

        with pytest.raises(SignatureValidationError):
            signing.sign_customer_by_token(
                quote.share_token, SignaturePayload("Jane", "not-an-image")
            )

        assert lifecycle.quotes.get(quote.id).signing_state is SigningState.UNSIGNED


# =============================================================================
# Locking and contract creation
# =============================================================================


class TestLockingAndContract:

    def test_locked_quote_rejects_line_item_edits(self, lifecycle, signed_quote, sales_user):
        quote, _ = signed_quote()
        with pytest.raises(QuoteLockedError):
            lifecycle.quotes.replace_line_items(
                quote.id,
                [LineItemInput("Gutters", Decimal("1"), Decimal("500"))],
                sales_user.user_id,
            )

    def test_locked_quote_cannot_be_declined_or_deleted(self, lifecycle, signed_quote, sales_user):
        quote, _ = signed_quote()
        with pytest.raises(QuoteLockedError):
            lifecycle.quotes.decline(quote.id, sales_user.user_id)
        with pytest.raises(QuoteLockedError):
            lifecycle.quotes.soft_delete(quote.id, sales_user.user_id)

    def test_contract_number_and_totals(self, lifecycle, signed_quote):
        quote, contract_id = signed_quote()
        contract = lifecycle.contracts.get(contract_id)

        assert contract.contract_number == "CTR-2025-001"
        assert contract.revision == 1
        assert contract.original_total == Decimal("1080.00")
        assert contract.customer.signed_by == "Jane Homeowner"
        assert contract.company.signed_by == "Morgan Reyes"

    def test_contract_creation_is_at_most_once(self, lifecycle, signed_quote):
        quote, contract_id = signed_quote()

        again = lifecycle.contracts.create_from_quote(quote.id)

        assert again.created is False
        assert again.contract.id == contract_id
        assert len(lifecycle.contracts.history_for_quote(quote.id)) == 1
