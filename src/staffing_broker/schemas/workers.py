"""Pydantic schemas for workers and the Resource Ledger."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from staffing_broker.domain.enums import OnboardingStage

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class RegisterWorkerRequest(BaseModel):
    """Request body for adding a worker to the pool."""

    worker_number: str = Field(..., min_length=1, max_length=32, examples=["W-000123"])
    name: str = Field(..., min_length=1, max_length=255)
    nationality_code: str | None = Field(default=None, max_length=8, examples=["PH"])
    profession_code: str | None = Field(default=None, max_length=32, examples=["HOUSEMAID"])
    agency_id: str | None = Field(default=None, max_length=64)
    experience_years: int = Field(default=0, ge=0, le=60)
    experience_summary: str | None = Field(default=None, max_length=5000)
    recruitment_request_id: uuid.UUID | None = None


class ChangeWorkerStatusRequest(BaseModel):
    """Request body for an administrative status change."""

    event: Literal["put_on_leave", "return_from_leave", "block", "deactivate", "terminate"] = Field(
        ..., description="Ledger event to fire"
    )
    reason: str | None = Field(default=None, max_length=2000)


class ReleaseWorkerRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=2000)


class AdvanceOnboardingRequest(BaseModel):
    next_stage: OnboardingStage = Field(
        ..., description="Must be the stage directly after the current one"
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class WorkerResponse(BaseModel):
    """Response schema for a worker."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    worker_number: str
    name: str
    nationality_code: str | None
    profession_code: str | None
    agency_id: str | None
    experience_years: int
    experience_summary: str | None
    recruitment_request_id: uuid.UUID | None
    status: str
    onboarding_stage: str
    current_contract_id: uuid.UUID | None
    created_at: datetime
    updated_at: datetime
