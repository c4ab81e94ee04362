"""Pydantic schemas for payments and OTP payment sessions."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from staffing_broker.domain.enums import PaymentMethod

# ---------------------------------------------------------------------------
# Payment sessions
# ---------------------------------------------------------------------------


class CreatePaymentSessionRequest(BaseModel):
    """Request body for opening an OTP payment session."""

    contract_id: uuid.UUID
    phone: str = Field(..., min_length=6, max_length=32, examples=["+966500000000"])
    method: PaymentMethod = PaymentMethod.PAYPASS


class VerifyOtpRequest(BaseModel):
    code: str = Field(..., min_length=4, max_length=10, pattern=r"^\d+$")


class PaymentSessionResponse(BaseModel):
    """A payment session. The OTP hash is never exposed."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    contract_id: uuid.UUID
    customer_id: str
    session_token: str
    payment_method: str
    status: str
    otp_attempts: int
    expires_at: datetime
    cancel_reason: str | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime


class PaymentSessionStatusResponse(BaseModel):
    """Pure-read status, with expiry computed from the deadline."""

    session_id: uuid.UUID
    contract_id: uuid.UUID
    status: str = Field(..., description="Stored status, or 'expired' once the deadline passed")
    remaining_seconds: int
    attempts_remaining: int
    expires_at: datetime


# ---------------------------------------------------------------------------
# Offline payments
# ---------------------------------------------------------------------------


class PreparePaymentRequest(BaseModel):
    contract_id: uuid.UUID
    method: PaymentMethod = PaymentMethod.BANK_TRANSFER
    amount: Decimal | None = Field(
        default=None,
        gt=0,
        decimal_places=2,
        description="Defaults to the outstanding invoice balance",
    )


class ConfirmPaymentRequest(BaseModel):
    transaction_id: str = Field(..., min_length=1, max_length=128)


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    contract_id: uuid.UUID
    invoice_id: uuid.UUID
    customer_id: str
    payment_session_id: uuid.UUID | None
    amount: Decimal
    method: str
    status: str
    transaction_id: str | None
    paid_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime
