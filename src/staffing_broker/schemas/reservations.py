"""Pydantic schemas for worker reservations."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from staffing_broker.domain.enums import ReservationAction


class ReserveWorkerRequest(BaseModel):
    """Request body for claiming a Ready worker."""

    worker_id: uuid.UUID
    start_date: date
    end_date: date


class ProcessReservationRequest(BaseModel):
    """Back-office decision on an active reservation."""

    action: ReservationAction
    notes: str | None = Field(default=None, max_length=2000)
    extension_minutes: int | None = Field(
        default=None,
        description="Required for action=extend",
        examples=[30],
    )


class CancelReservationRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=2000)


class ReservationResponse(BaseModel):
    """Response schema for a reservation."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    worker_id: uuid.UUID
    customer_id: str
    start_date: date
    end_date: date
    state: str
    expires_at: datetime
    contract_id: uuid.UUID | None
    notes: str | None
    processed_by: str | None
    cancellation_reason: str | None
    cancelled_at: datetime | None
    created_at: datetime
    updated_at: datetime
