"""Pydantic schemas for contracts and invoices."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from staffing_broker.domain.enums import ContractStatus

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateContractRequest(BaseModel):
    """Request body for creating a contract from a confirmed reservation."""

    reservation_id: uuid.UUID
    original_amount: Decimal = Field(..., ge=0, decimal_places=2, examples=[4500.00])
    discount_amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    terms_accepted: bool = Field(..., description="Must be true")
    package_id: str | None = Field(default=None, max_length=64)
    start_date: date | None = Field(default=None, description="Defaults to the reservation window")
    end_date: date | None = None
    payment_on_signing: bool | None = Field(
        default=None,
        description="Open the payment window immediately; defaults to the configured policy",
    )
    notes: str | None = Field(default=None, max_length=5000)


class TransitionContractRequest(BaseModel):
    """Operator status change from the contract status table."""

    target_status: ContractStatus
    notes: str | None = Field(default=None, max_length=2000)


class CancelContractRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ContractResponse(BaseModel):
    """Response schema for a contract."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    contract_number: str
    reservation_id: uuid.UUID
    customer_id: str
    worker_id: uuid.UUID
    package_id: str | None
    start_date: date
    end_date: date
    original_amount: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    currency: str
    status: str
    payment_deadline: datetime | None
    terms_accepted: bool
    notes: str | None
    activated_at: datetime | None
    ended_at: datetime | None
    cancelled_at: datetime | None
    cancellation_reason: str | None
    created_at: datetime
    updated_at: datetime


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    invoice_number: str
    contract_id: uuid.UUID
    customer_id: str
    amount: Decimal
    currency: str
    due_date: datetime
    status: str
    paid_at: datetime | None
    created_at: datetime
