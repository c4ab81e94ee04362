"""Schemas shared across the API: errors, audit events, health, sweeps."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Body of every business failure response."""

    error: str = Field(..., description="Machine-readable failure code", examples=["NOT_AVAILABLE"])
    message: str = Field(..., description="Human-readable description of the current state")
    details: dict = Field(default_factory=dict)


class AuditEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: uuid.UUID
    entity_kind: str
    entity_id: uuid.UUID
    event_type: str
    old_status: str | None
    new_status: str | None
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class SweepReportResponse(BaseModel):
    """Counts from one expiry sweeper tick."""

    reservations_expired: int
    sessions_expired: int
    contracts_cancelled: int
    invoices_overdue: int
    failures: int
    total: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
