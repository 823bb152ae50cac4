"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
Requests are rejected here (422) before any service touches state.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from domain.payment import Payment
from domain.ticket import RecipientInfo, RecipientType, Ticket, TransferRecord

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MOBILE_PATTERN = re.compile(r"^\+?[\d\s-]{10,}$")


def _check_contact(kind: str, value: str) -> str:
    value = value.strip()
    if kind == "email" and not EMAIL_PATTERN.match(value):
        raise ValueError("Invalid email address")
    if kind == "mobile" and not MOBILE_PATTERN.match(value):
        raise ValueError("Invalid mobile number")
    return value


# ============================================================================
# Shared Models
# ============================================================================

class RecipientModel(BaseModel):
    """Who a ticket is for."""
    type: Literal["mobile", "email"]
    value: str = Field(..., min_length=1)
    name: Optional[str] = Field(None, max_length=100)

    @model_validator(mode="after")
    def validate_contact(self) -> "RecipientModel":
        self.value = _check_contact(self.type, self.value)
        return self

    def to_domain(self) -> RecipientInfo:
        return RecipientInfo(type=RecipientType(self.type), value=self.value, name=self.name)

    @classmethod
    def from_domain(cls, info: RecipientInfo) -> "RecipientModel":
        return cls.model_construct(type=info.type.value, value=info.value or "", name=info.name)


class TransferRecordResponse(BaseModel):
    from_user_id: UUID
    to: RecipientModel
    to_user_id: Optional[UUID] = None
    transferred_at: datetime
    expires_at: datetime
    status: str
    cancelled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, record: TransferRecord) -> "TransferRecordResponse":
        return cls(
            from_user_id=record.from_user_id,
            to=RecipientModel.from_domain(record.to),
            to_user_id=record.to_user_id,
            transferred_at=record.transferred_at,
            expires_at=record.expires_at,
            status=record.status.value,
            cancelled_at=record.cancelled_at,
            completed_at=record.completed_at,
        )


class TicketResponse(BaseModel):
    """Single ticket in API responses. QR data is only included for paid tickets."""
    ticket_id: UUID
    event_id: UUID
    owner_id: Optional[UUID] = None
    recipient_info: Optional[RecipientModel] = None
    ticket_type: str
    price: Decimal
    reference: str
    payment_reference: str
    status: str
    scanned: bool
    scanned_at: Optional[datetime] = None
    transferred: bool
    qr_code: Optional[str] = None
    transfer_history: List[TransferRecordResponse] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, ticket: Ticket) -> "TicketResponse":
        return cls(
            ticket_id=ticket.ticket_id,
            event_id=ticket.event_id,
            owner_id=ticket.owner_id,
            recipient_info=RecipientModel.from_domain(ticket.recipient_info) if ticket.recipient_info else None,
            ticket_type=ticket.tier_name,
            price=ticket.price,
            reference=ticket.reference,
            payment_reference=ticket.payment_reference,
            status=ticket.status.value,
            scanned=ticket.scanned,
            scanned_at=ticket.scanned_at,
            transferred=ticket.transferred,
            qr_code=ticket.qr_code.data if ticket.qr_code and ticket.is_paid else None,
            transfer_history=[TransferRecordResponse.from_domain(r) for r in ticket.transfer_history],
        )

    class Config:
        json_schema_extra = {
            "example": {
                "ticket_id": "123e4567-e89b-12d3-a456-426614174010",
                "event_id": "123e4567-e89b-12d3-a456-426614174000",
                "owner_id": "123e4567-e89b-12d3-a456-426614174002",
                "recipient_info": {"type": "email", "value": "awa@example.com", "name": "Awa"},
                "ticket_type": "VIP",
                "price": "1500.00",
                "reference": "PAY-1700000000000-42-TKT-0",
                "payment_reference": "PAY-1700000000000-42",
                "status": "success",
                "scanned": False,
                "transferred": False,
                "transfer_history": [],
            }
        }


class PaymentSummary(BaseModel):
    reference: str
    status: str
    amount: Decimal
    currency: str
    gateway: str
    event_id: UUID
    ticket_type: str
    quantity: int
    exchange_rate: Optional[Decimal] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, payment: Payment) -> "PaymentSummary":
        return cls(
            reference=payment.reference,
            status=payment.status.value,
            amount=payment.amount,
            currency=payment.currency.value,
            gateway=payment.gateway.value,
            event_id=payment.event_id,
            ticket_type=payment.tier_name,
            quantity=payment.quantity,
            exchange_rate=payment.exchange_rate,
            created_at=payment.created_at,
            updated_at=payment.updated_at,
        )


# ============================================================================
# Payment Models
# ============================================================================

class PaymentRequest(BaseModel):
    """Request to start a ticket purchase."""
    ticket_type: str = Field(..., min_length=1, max_length=50, description="Ticket tier name")
    quantity: int = Field(..., ge=1)
    recipient_info: List[RecipientModel] = Field(
        default_factory=list,
        description="One recipient per ticket; missing entries default to the buyer",
    )
    payment_gateway: Literal["stripe", "wave"] = "stripe"
    currency: Optional[str] = Field(None, min_length=3, max_length=3)

    @model_validator(mode="after")
    def validate_recipients(self) -> "PaymentRequest":
        if len(self.recipient_info) > self.quantity:
            raise ValueError("More recipients than tickets")
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "ticket_type": "VIP",
                "quantity": 2,
                "recipient_info": [
                    {"type": "email", "value": "awa@example.com", "name": "Awa"},
                    {"type": "mobile", "value": "+220 7123456", "name": "Lamin"},
                ],
                "payment_gateway": "stripe",
                "currency": "GMD",
            }
        }


class PaymentResponse(BaseModel):
    """Checkout handle returned after a purchase is started."""
    id: str = Field(..., description="Gateway session id")
    payment_url: Optional[str] = None
    gateway: str
    reference: str
    amount: Decimal
    currency: str
    ticket_references: List[str]

    class Config:
        json_schema_extra = {
            "example": {
                "id": "cs_test_a1b2c3",
                "payment_url": "https://checkout.stripe.com/c/pay/cs_test_a1b2c3",
                "gateway": "stripe",
                "reference": "PAY-1700000000000-42",
                "amount": "3000.00",
                "currency": "GMD",
                "ticket_references": ["PAY-1700000000000-42-TKT-0", "PAY-1700000000000-42-TKT-1"],
            }
        }


class VerifyPaymentRequest(BaseModel):
    reference: str = Field(..., min_length=1, description="Payment reference or gateway session id")
    gateway: Optional[Literal["stripe", "wave"]] = None

    class Config:
        json_schema_extra = {"example": {"reference": "PAY-1700000000000-42", "gateway": "wave"}}


class VerifyPaymentResponse(BaseModel):
    message: str
    status: str
    payment: PaymentSummary
    tickets: List[TicketResponse] = Field(default_factory=list)


# ============================================================================
# Ticket Models
# ============================================================================

class TransferRequest(BaseModel):
    recipient_type: Literal["mobile", "email"]
    recipient_value: str = Field(..., min_length=1)
    recipient_name: str = Field(..., min_length=1, max_length=100)

    @model_validator(mode="after")
    def validate_contact(self) -> "TransferRequest":
        self.recipient_value = _check_contact(self.recipient_type, self.recipient_value)
        return self

    def to_domain(self) -> RecipientInfo:
        return RecipientInfo(
            type=RecipientType(self.recipient_type),
            value=self.recipient_value,
            name=self.recipient_name,
        )

    class Config:
        json_schema_extra = {
            "example": {"recipient_type": "email", "recipient_value": "fatou@example.com", "recipient_name": "Fatou"}
        }


class TransferResponse(BaseModel):
    message: str
    ticket: TicketResponse
    recipient_registered: bool


class TicketListResponse(BaseModel):
    tickets: List[TicketResponse]
    total_count: int


class TransferHistoryResponse(BaseModel):
    ticket_id: UUID
    history: List[TransferRecordResponse]


# ============================================================================
# Admin Models
# ============================================================================

class ScanRequest(BaseModel):
    ticket_id: Optional[UUID] = None
    qr_data: Optional[str] = None

    @model_validator(mode="after")
    def require_identifier(self) -> "ScanRequest":
        if self.ticket_id is None and not self.qr_data:
            raise ValueError("Provide ticket_id or qr_data")
        return self


class ScanResponse(BaseModel):
    message: str
    ticket: TicketResponse
    event_title: str


# ============================================================================
# Inventory Models
# ============================================================================

class TierResponse(BaseModel):
    name: str
    price: Decimal
    currency: str
    quantity: int
    sold: int
    remaining: int
    is_sold_out: bool
    description: str = ""
    benefits: List[str] = Field(default_factory=list)


class TicketTypesResponse(BaseModel):
    event_id: UUID
    title: str
    sold_out: bool
    ticket_types: List[TierResponse]

    class Config:
        json_schema_extra = {
            "example": {
                "event_id": "123e4567-e89b-12d3-a456-426614174000",
                "title": "Banjul Jazz Night",
                "sold_out": False,
                "ticket_types": [
                    {
                        "name": "VIP",
                        "price": "1500.00",
                        "currency": "GMD",
                        "quantity": 50,
                        "sold": 48,
                        "remaining": 2,
                        "is_sold_out": False,
                        "description": "Front rows",
                        "benefits": ["Free drink"],
                    }
                ],
            }
        }


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response (`detail` of an HTTPException)."""
    message: str
    status_code: int

    class Config:
        json_schema_extra = {
            "example": {"message": "Only 2 'VIP' tickets available", "status_code": 409}
        }
