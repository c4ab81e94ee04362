"""Recruitment request and supplier proposal REST API routes.

Routes:
    POST   /api/v1/requests                     - Back office: open a request
    GET    /api/v1/requests/{id}                - Get a request with award progress
    GET    /api/v1/requests/{id}/proposals      - List proposals on a request
    POST   /api/v1/requests/{id}/proposals      - Agency: submit a proposal
    POST   /api/v1/proposals/{id}/review        - Back office: mark reviewed
    POST   /api/v1/proposals/{id}/approve       - Back office: award quantity
    POST   /api/v1/proposals/{id}/reject        - Back office: reject
    POST   /api/v1/proposals/{id}/withdraw      - Agency: withdraw
    PATCH  /api/v1/proposals/{id}               - Agency: amend a submitted proposal
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from staffing_broker.api.deps import (
    get_actor,
    get_app_settings,
    get_clock,
    get_runner,
    require_back_office,
)
from staffing_broker.config import Settings
from staffing_broker.domain.clock import Clock
from staffing_broker.domain.collaborators import Actor
from staffing_broker.infrastructure.database.transactions import TransactionRunner
from staffing_broker.schemas.proposals import (
    ApproveProposalRequest,
    OpenRequestRequest,
    ProposalResponse,
    RecruitmentRequestResponse,
    RejectProposalRequest,
    SubmitProposalRequest,
    UpdateProposalRequest,
)
from staffing_broker.services.proposal_service import ProposalService

router = APIRouter(prefix="/api/v1", tags=["Proposals"])


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@router.post(
    "/requests",
    response_model=RecruitmentRequestResponse,
    status_code=201,
    summary="Open a recruitment request",
)
async def open_request(
    body: OpenRequestRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> RecruitmentRequestResponse:
    require_back_office(actor, settings)
    request = await runner.run(
        lambda s: ProposalService(s, clock).open_request(
            body.quantity,
            body.deadline,
            nationality_code=body.nationality_code,
            profession_code=body.profession_code,
            sla_days=body.sla_days,
            requirements=body.requirements,
            actor=actor,
        ),
        name="request.open",
    )
    return RecruitmentRequestResponse.model_validate(request)


@router.get(
    "/requests/{request_id}",
    response_model=RecruitmentRequestResponse,
    summary="Get a recruitment request",
)
async def get_request(
    request_id: uuid.UUID,
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
) -> RecruitmentRequestResponse:
    request = await runner.run(
        lambda s: ProposalService(s, clock).get_request(request_id), name="request.get"
    )
    return RecruitmentRequestResponse.model_validate(request)


@router.get(
    "/requests/{request_id}/proposals",
    response_model=list[ProposalResponse],
    summary="List proposals on a request",
)
async def list_proposals(
    request_id: uuid.UUID,
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
) -> list[ProposalResponse]:
    proposals = await runner.run(
        lambda s: ProposalService(s, clock).list_for_request(request_id),
        name="proposal.list",
    )
    return [ProposalResponse.model_validate(p) for p in proposals]


@router.post(
    "/requests/{request_id}/proposals",
    response_model=ProposalResponse,
    status_code=201,
    summary="Submit a proposal",
)
async def submit_proposal(
    request_id: uuid.UUID,
    body: SubmitProposalRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
) -> ProposalResponse:
    """The calling actor is the submitting agency."""
    proposal = await runner.run(
        lambda s: ProposalService(s, clock).submit_proposal(
            request_id,
            actor.id,
            body.offered_qty,
            body.unit_price,
            lead_time_days=body.lead_time_days,
            valid_until=body.valid_until,
            notes=body.notes,
        ),
        name="proposal.submit",
    )
    return ProposalResponse.model_validate(proposal)


# ---------------------------------------------------------------------------
# Proposals
# ---------------------------------------------------------------------------


@router.post(
    "/proposals/{proposal_id}/review",
    response_model=ProposalResponse,
    summary="Mark a proposal reviewed",
)
async def review_proposal(
    proposal_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> ProposalResponse:
    require_back_office(actor, settings)
    proposal = await runner.run(
        lambda s: ProposalService(s, clock).mark_reviewed(proposal_id, actor),
        name="proposal.review",
    )
    return ProposalResponse.model_validate(proposal)


@router.post(
    "/proposals/{proposal_id}/approve",
    response_model=ProposalResponse,
    summary="Approve a proposal in full or in part",
)
async def approve_proposal(
    proposal_id: uuid.UUID,
    body: ApproveProposalRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> ProposalResponse:
    require_back_office(actor, settings)
    proposal = await runner.run(
        lambda s: ProposalService(s, clock).approve(
            proposal_id, actor, qty=body.qty, notes=body.notes
        ),
        name="proposal.approve",
    )
    return ProposalResponse.model_validate(proposal)


@router.post(
    "/proposals/{proposal_id}/reject",
    response_model=ProposalResponse,
    summary="Reject a proposal",
)
async def reject_proposal(
    proposal_id: uuid.UUID,
    body: RejectProposalRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> ProposalResponse:
    require_back_office(actor, settings)
    proposal = await runner.run(
        lambda s: ProposalService(s, clock).reject(proposal_id, body.reason, actor),
        name="proposal.reject",
    )
    return ProposalResponse.model_validate(proposal)


@router.post(
    "/proposals/{proposal_id}/withdraw",
    response_model=ProposalResponse,
    summary="Withdraw my proposal",
)
async def withdraw_proposal(
    proposal_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
) -> ProposalResponse:
    proposal = await runner.run(
        lambda s: ProposalService(s, clock).withdraw(proposal_id, actor.id),
        name="proposal.withdraw",
    )
    return ProposalResponse.model_validate(proposal)


@router.patch(
    "/proposals/{proposal_id}",
    response_model=ProposalResponse,
    summary="Amend my submitted proposal",
)
async def update_proposal(
    proposal_id: uuid.UUID,
    body: UpdateProposalRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
) -> ProposalResponse:
    proposal = await runner.run(
        lambda s: ProposalService(s, clock).update_proposal(
            proposal_id, actor.id, **body.model_dump(exclude_none=True)
        ),
        name="proposal.update",
    )
    return ProposalResponse.model_validate(proposal)
