"""
Tests for the ORM immutability listeners.

Validates:
- Contract snapshot columns cannot change; status may leave active once
- Contract line items and signatures are append-only
- Contracts cannot be deleted
"""

from decimal import Decimal

import pytest

from crm_kernel.exceptions import ImmutabilityViolationError
from crm_modules.contracts.orm import ContractModel
from crm_modules.signatures.orm import DocumentSignatureModel


@pytest.fixture
def contract_row(session, signed_quote):
    _, contract_id = signed_quote()
    return session.get(ContractModel, contract_id)


class TestContractImmutability:

    def test_snapshot_total_cannot_change(self, session, contract_row):
        contract_row.original_total = Decimal("1.00")
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "Contract"

    def test_status_may_leave_active(self, session, contract_row, deterministic_clock):
        contract_row.status = "voided"
        contract_row.voided_at = deterministic_clock.now()
        contract_row.void_reason = "Customer cancelled"
        session.flush()

        assert contract_row.status == "voided"

    def test_voided_is_terminal(self, session, contract_row, deterministic_clock):
        contract_row.status = "voided"
        contract_row.voided_at = deterministic_clock.now()
        session.flush()

        contract_row.status = "active"
        with pytest.raises(ImmutabilityViolationError, match="terminal"):
            session.flush()

    def test_cannot_delete(self, session, contract_row):
        session.delete(contract_row)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_line_items_are_append_only(self, session, contract_row):
        contract_row.line_items[0].unit_price = Decimal("0.01")
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "ContractLineItem"


class TestSignatureImmutability:

    def test_signature_cannot_be_edited(self, session, contract_row):
        signature = (
            session.query(DocumentSignatureModel)
            .filter(DocumentSignatureModel.document_id == contract_row.quote_id)
            .first()
        )
        signature.signer_name = "Someone Else"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "DocumentSignature"
