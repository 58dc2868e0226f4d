# backend/consultdesk/schemas/payment.py
"""Payment request/response schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import ConfigDict, EmailStr, Field, model_validator

from ._strict_base import StrictModel, StrictRequestModel


class CreateOrderRequest(StrictRequestModel):
    amount: Decimal = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    session_id: Optional[str] = None
    quotation_id: Optional[str] = None
    client_id: Optional[str] = None
    client_email: Optional[EmailStr] = None
    client_name: Optional[str] = None
    receipt: Optional[str] = Field(None, max_length=40)

    @model_validator(mode="after")
    def _single_target(self) -> "CreateOrderRequest":
        if self.session_id and self.quotation_id:
            raise ValueError("An order may reference a session or a quotation, not both")
        return self


class PublicCreateOrderRequest(StrictRequestModel):
    """Order raised from the public booking page; the session decides the consultant."""

    session_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    client_email: Optional[EmailStr] = None
    client_name: Optional[str] = None

    def to_order_request(self) -> CreateOrderRequest:
        return CreateOrderRequest(**self.model_dump())


class CreateOrderResponse(StrictModel):
    order_id: str
    amount: Decimal
    currency: str
    transaction_id: str
    key_id: str
    receipt: str
    created_at: datetime


class VerifyPaymentRequest(StrictRequestModel):
    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)


class PaymentFailureRequest(StrictRequestModel):
    order_id: str = Field(..., min_length=1)
    error_code: Optional[str] = None
    error_description: Optional[str] = None


class RefundRequest(StrictRequestModel):
    payment_id: str = Field(..., min_length=1)
    amount: Optional[Decimal] = Field(None, gt=0)
    reason: Optional[str] = Field(None, max_length=500)


class PaymentTransactionResponse(StrictModel):
    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: str
    gateway_order_id: str
    gateway_payment_id: Optional[str] = None
    session_id: Optional[str] = None
    quotation_id: Optional[str] = None
    amount: Decimal
    refunded_amount: Optional[Decimal] = None
    currency: str
    status: str
    payment_method: Optional[str] = None
    processed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class PaymentFailureResponse(StrictModel):
    order_id: str
    failed_transactions: int
