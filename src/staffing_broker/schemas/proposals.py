"""Pydantic schemas for recruitment requests and supplier proposals."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class OpenRequestRequest(BaseModel):
    """Request body for opening a recruitment request."""

    quantity: int = Field(..., ge=1, examples=[10])
    deadline: datetime = Field(..., description="Proposals are accepted until this instant")
    nationality_code: str | None = Field(default=None, max_length=8)
    profession_code: str | None = Field(default=None, max_length=32)
    sla_days: int | None = Field(default=None, ge=0)
    requirements: str | None = Field(default=None, max_length=5000)


class SubmitProposalRequest(BaseModel):
    """An agency's offer against a recruitment request."""

    offered_qty: int = Field(..., ge=1)
    unit_price: Decimal = Field(..., ge=0, decimal_places=2)
    lead_time_days: int | None = Field(default=None, ge=0)
    valid_until: datetime | None = None
    notes: str | None = Field(default=None, max_length=5000)


class UpdateProposalRequest(BaseModel):
    """Amendments to a Submitted proposal. Omitted fields are left unchanged."""

    offered_qty: int | None = Field(default=None, ge=1)
    unit_price: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    lead_time_days: int | None = Field(default=None, ge=0)
    valid_until: datetime | None = None
    notes: str | None = Field(default=None, max_length=5000)


class ApproveProposalRequest(BaseModel):
    qty: int | None = Field(
        default=None,
        ge=1,
        description="Quantity to award; defaults to min(offered, remaining)",
    )
    notes: str | None = Field(default=None, max_length=2000)


class RejectProposalRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class RecruitmentRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    nationality_code: str | None
    profession_code: str | None
    quantity: int
    awarded_qty: int
    remaining_qty: int
    deadline: datetime
    sla_days: int | None
    requirements: str | None
    status: str
    created_by: str | None
    created_at: datetime


class ProposalResponse(BaseModel):
    """Response schema for a supplier proposal."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    request_id: uuid.UUID
    agency_id: str
    offered_qty: int
    unit_price: Decimal
    lead_time_days: int | None
    valid_until: datetime | None
    notes: str | None
    status: str
    approved_qty: int | None
    approval_notes: str | None
    rejection_reason: str | None
    reviewed_by: str | None
    reviewed_at: datetime | None
    created_at: datetime
