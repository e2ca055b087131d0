"""
Request bodies for the lifecycle HTTP surface.

Responses are the module DTOs encoded by ``crm_api.encoding.encode``;
money travels as strings so no precision is lost to floats.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from crm_modules.invoices.models import AdditionalItem
from crm_modules.quotes.models import LineItemInput
from crm_modules.signatures.models import SignaturePayload


class SignatureIn(BaseModel):
    signer_name: str
    signature_data: str
    signer_email: Optional[str] = None
    signer_title: Optional[str] = None

    def to_payload(self, ip_address: Optional[str], user_agent: Optional[str]) -> SignaturePayload:
        return SignaturePayload(
            signer_name=self.signer_name,
            signature_data=self.signature_data,
            signer_email=self.signer_email,
            signer_title=self.signer_title,
            ip_address=ip_address,
            user_agent=user_agent,
        )


class TokenSignatureIn(SignatureIn):
    """Public signing: the share token identifies the document."""
    share_token: str


class LineItemIn(BaseModel):
    description: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0")
    unit: str = "ea"
    category: Optional[str] = None

    def to_input(self) -> LineItemInput:
        return LineItemInput(
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            unit=self.unit,
            category=self.category,
        )


class AdditionalItemIn(LineItemIn):
    notes: Optional[str] = None

    def to_item(self) -> AdditionalItem:
        return AdditionalItem(
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            unit=self.unit,
            category=self.category,
            notes=self.notes,
        )


class InvoiceCreateIn(BaseModel):
    contract_id: UUID
    selected_change_order_ids: list[UUID] = Field(default_factory=list)
    additional_items: list[AdditionalItemIn] = Field(default_factory=list)
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    tax_rate: Decimal = Decimal("0")
    payment_terms: Optional[str] = None
    notes: Optional[str] = None


class PaymentIn(BaseModel):
    invoice_id: UUID
    amount: Decimal
    method: str
    payment_date: Optional[date] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    cleared: bool = False


class RejectIn(BaseModel):
    reason: Optional[str] = None


class SendEmailIn(BaseModel):
    recipient: Optional[str] = None
    message: Optional[str] = None
