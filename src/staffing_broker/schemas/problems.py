"""Pydantic schemas for worker incident reports."""

from __future__ import annotations

import uuid
from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from staffing_broker.domain.enums import ProblemType, ResolutionAction


class ReportProblemRequest(BaseModel):
    worker_id: uuid.UUID
    problem_type: ProblemType
    description: str = Field(..., min_length=1, max_length=5000)
    date_reported: date


class ResolveProblemRequest(BaseModel):
    action: ResolutionAction
    notes: str | None = Field(default=None, max_length=2000)


class RejectProblemRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=2000)


class WorkerProblemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    worker_id: uuid.UUID
    contract_id: uuid.UUID | None
    problem_type: str
    description: str
    date_reported: date
    status: str
    resolution_action: str | None
    resolution_notes: str | None
    created_by: str
    approved_by: str | None
    approved_at: datetime | None
    resolved_at: datetime | None
    created_at: datetime
