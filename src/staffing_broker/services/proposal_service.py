"""Proposal Arbitration - awarding a recruitment request across agencies.

All writes for one request are serialized through its row lock: approve
locks the request before touching any proposal, so two approvals can never
award overlapping quantity. When an approval fills the request, every other
pending proposal is closed out as Rejected in the same transaction.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from staffing_broker.domain.clock import Clock, SystemClock
from staffing_broker.domain.collaborators import SYSTEM_ACTOR, EntityRef, Notification
from staffing_broker.domain.enums import (
    ACCEPTING_REQUEST_STATUSES,
    PENDING_PROPOSAL_STATUSES,
    EntityKind,
    EventType,
    ProposalStatus,
    RequestStatus,
)
from staffing_broker.domain.exceptions import (
    AlreadyExistsError,
    DomainValidationError,
    EntityNotFoundError,
    ExpiredError,
    NotProcessableError,
    UnauthorizedError,
)
from staffing_broker.domain.state_machine import (
    ProposalStateMachine,
    RequestStateMachine,
    fire_transition,
)
from staffing_broker.infrastructure.database.orm_models import (
    RecruitmentRequest,
    SupplierProposal,
)
from staffing_broker.infrastructure.database.repositories import (
    EventRepository,
    ProposalRepository,
    RecruitmentRequestRepository,
)
from staffing_broker.infrastructure.database.transactions import outbox_for
from staffing_broker.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

    from staffing_broker.domain.collaborators import Actor

logger = get_logger(__name__)

RIVAL_REJECTION_NOTE = "Request has been fully awarded to other proposals"


class ProposalService:
    """Manages recruitment requests and the proposals competing for them."""

    def __init__(self, session: AsyncSession, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._request_repo = RecruitmentRequestRepository(session)
        self._proposal_repo = ProposalRepository(session)
        self._event_repo = EventRepository(session)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def open_request(
        self,
        quantity: int,
        deadline: datetime,
        *,
        nationality_code: str | None = None,
        profession_code: str | None = None,
        sla_days: int | None = None,
        requirements: str | None = None,
        actor: Actor = SYSTEM_ACTOR,
    ) -> RecruitmentRequest:
        if quantity < 1:
            raise DomainValidationError("Quantity must be at least 1", details={"quantity": quantity})
        if deadline <= self._clock.now():
            raise DomainValidationError(
                "Request deadline must be in the future",
                details={"deadline": deadline.isoformat()},
            )

        request = await self._request_repo.create(
            RecruitmentRequest(
                nationality_code=nationality_code,
                profession_code=profession_code,
                quantity=quantity,
                awarded_qty=0,
                deadline=deadline,
                sla_days=sla_days,
                requirements=requirements,
                status=RequestStatus.OPEN,
                created_by=actor.id,
            )
        )
        await self._event_repo.record(
            subject=EntityRef(EntityKind.RECRUITMENT_REQUEST, request.id),
            event_type=EventType.REQUEST_OPENED,
            old_status=None,
            new_status=request.status,
            actor=actor.id,
            metadata={"quantity": quantity},
        )
        logger.info("request.opened", request_id=str(request.id), quantity=quantity)
        return request

    async def get_request(self, request_id: uuid.UUID) -> RecruitmentRequest:
        request = await self._request_repo.get_by_id(request_id)
        if request is None:
            raise EntityNotFoundError(EntityKind.RECRUITMENT_REQUEST, request_id)
        return request

    # ------------------------------------------------------------------
    # Agency side
    # ------------------------------------------------------------------

    async def submit_proposal(
        self,
        request_id: uuid.UUID,
        agency_id: str,
        offered_qty: int,
        unit_price: Decimal,
        *,
        lead_time_days: int | None = None,
        valid_until: datetime | None = None,
        notes: str | None = None,
    ) -> SupplierProposal:
        request = await self._get_request_for_update(request_id)
        now = self._clock.now()
        if request.status not in ACCEPTING_REQUEST_STATUSES or now >= request.deadline:
            raise NotProcessableError(
                "Request is not accepting proposals",
                details={"request_id": str(request_id), "status": request.status},
            )
        if offered_qty < 1:
            raise DomainValidationError("Offered quantity must be at least 1")
        if Decimal(unit_price) < 0:
            raise DomainValidationError("Unit price cannot be negative")
        if valid_until is not None and valid_until <= now:
            raise DomainValidationError("Proposal validity must end in the future")
        existing = await self._proposal_repo.get_pending_for_agency(request.id, agency_id)
        if existing is not None:
            raise AlreadyExistsError(
                "Agency already has an active proposal for this request",
                details={"request_id": str(request_id), "proposal_id": str(existing.id)},
            )

        proposal = await self._proposal_repo.create(
            SupplierProposal(
                request_id=request.id,
                agency_id=agency_id,
                offered_qty=offered_qty,
                unit_price=Decimal(unit_price),
                lead_time_days=lead_time_days,
                valid_until=valid_until,
                notes=notes,
                status=ProposalStatus.SUBMITTED,
            )
        )
        await self._event_repo.record(
            subject=EntityRef(EntityKind.PROPOSAL, proposal.id),
            event_type=EventType.PROPOSAL_SUBMITTED,
            old_status=None,
            new_status=proposal.status,
            actor=agency_id,
            metadata={"request_id": request.id, "offered_qty": offered_qty},
        )
        logger.info(
            "proposal.submitted",
            proposal_id=str(proposal.id),
            request_id=str(request_id),
            agency_id=agency_id,
        )
        return proposal

    async def update_proposal(
        self,
        proposal_id: uuid.UUID,
        agency_id: str,
        *,
        offered_qty: int | None = None,
        unit_price: Decimal | None = None,
        lead_time_days: int | None = None,
        valid_until: datetime | None = None,
        notes: str | None = None,
    ) -> SupplierProposal:
        """Amend a Submitted proposal. Only the fields passed are changed.

        Raises:
            UnauthorizedError: The proposal belongs to another agency.
            NotProcessableError: The proposal is no longer Submitted.
            DomainValidationError: offered_qty outside 1..remaining, or a bad price/validity.
        """
        unlocked = await self._get_proposal_or_raise(proposal_id)
        request = await self._get_request_for_update(unlocked.request_id)
        proposal = await self._get_proposal_for_update(proposal_id)
        if proposal.agency_id != agency_id:
            raise UnauthorizedError("Proposal does not belong to this agency")
        if proposal.status != ProposalStatus.SUBMITTED:
            raise NotProcessableError(
                "Proposal cannot be updated in its current state",
                details={"proposal_id": str(proposal_id), "status": proposal.status},
            )

        changes: dict = {}
        if offered_qty is not None:
            remaining = request.remaining_qty
            if offered_qty < 1 or offered_qty > remaining:
                raise DomainValidationError(
                    f"Offered quantity must be between 1 and the remaining quantity ({remaining})",
                    details={"offered_qty": offered_qty, "remaining_qty": remaining},
                )
            changes["offered_qty"] = offered_qty
        if unit_price is not None:
            if Decimal(unit_price) < 0:
                raise DomainValidationError("Unit price cannot be negative")
            changes["unit_price"] = Decimal(unit_price)
        if valid_until is not None:
            if valid_until <= self._clock.now():
                raise DomainValidationError("Proposal validity must end in the future")
            changes["valid_until"] = valid_until
        if lead_time_days is not None:
            changes["lead_time_days"] = lead_time_days
        if notes is not None:
            changes["notes"] = notes

        for field, value in changes.items():
            setattr(proposal, field, value)
        await self._proposal_repo.save(proposal)
        await self._event_repo.record(
            subject=EntityRef(EntityKind.PROPOSAL, proposal.id),
            event_type=EventType.PROPOSAL_UPDATED,
            old_status=proposal.status,
            new_status=proposal.status,
            actor=agency_id,
            metadata=changes,
        )
        logger.info("proposal.updated", proposal_id=str(proposal_id), fields=sorted(changes))
        return proposal

    async def withdraw(self, proposal_id: uuid.UUID, agency_id: str) -> SupplierProposal:
        proposal = await self._get_proposal_or_raise(proposal_id)
        await self._get_request_for_update(proposal.request_id)
        proposal = await self._get_proposal_for_update(proposal_id)
        if proposal.agency_id != agency_id:
            raise UnauthorizedError("Proposal does not belong to this agency")
        return await self._transition(
            proposal,
            "withdraw",
            ProposalStatus.CANCELLED,
            EventType.PROPOSAL_WITHDRAWN,
            actor_id=agency_id,
        )

    # ------------------------------------------------------------------
    # Back-office arbitration
    # ------------------------------------------------------------------

    async def mark_reviewed(self, proposal_id: uuid.UUID, actor: Actor) -> SupplierProposal:
        proposal = await self._get_proposal_or_raise(proposal_id)
        await self._get_request_for_update(proposal.request_id)
        proposal = await self._get_proposal_for_update(proposal_id)
        proposal.reviewed_by = actor.id
        proposal.reviewed_at = self._clock.now()
        return await self._transition(
            proposal,
            "review",
            ProposalStatus.REVIEWED,
            EventType.PROPOSAL_REVIEWED,
            actor_id=actor.id,
        )

    async def approve(
        self,
        proposal_id: uuid.UUID,
        actor: Actor,
        qty: int | None = None,
        notes: str | None = None,
    ) -> SupplierProposal:
        """Award ``qty`` (default: as much as the request still needs) to a proposal.

        Raises:
            NotProcessableError: Proposal not pending, or request not accepting.
            ExpiredError: The proposal is past its validity window.
            DomainValidationError: qty outside 1..min(offered, remaining).
        """
        unlocked = await self._get_proposal_or_raise(proposal_id)
        # Request row first: it serializes every award on this request
        request = await self._get_request_for_update(unlocked.request_id)
        proposal = await self._get_proposal_for_update(proposal_id)

        if proposal.status not in PENDING_PROPOSAL_STATUSES:
            raise NotProcessableError(
                "Proposal is not in pending status",
                details={"proposal_id": str(proposal_id), "status": proposal.status},
            )
        if request.status not in ACCEPTING_REQUEST_STATUSES:
            raise NotProcessableError(
                "Request is not open for approval",
                details={"request_id": str(request.id), "status": request.status},
            )
        if proposal.valid_until is not None and self._clock.now() >= proposal.valid_until:
            raise ExpiredError(
                "Proposal validity has expired",
                details={"proposal_id": str(proposal_id)},
            )

        remaining = request.remaining_qty
        if qty is None:
            qty = min(proposal.offered_qty, remaining)
        if qty < 1 or qty > proposal.offered_qty or qty > remaining:
            raise DomainValidationError(
                "Approved quantity must be between 1 and the lesser of the offered "
                "and remaining quantities",
                details={
                    "qty": qty,
                    "offered_qty": proposal.offered_qty,
                    "remaining_qty": remaining,
                },
            )

        partially = qty < proposal.offered_qty
        proposal.approved_qty = qty
        proposal.approval_notes = notes
        proposal.reviewed_by = actor.id
        proposal.reviewed_at = self._clock.now()
        proposal = await self._transition(
            proposal,
            "approve_partially" if partially else "approve",
            ProposalStatus.PARTIALLY_APPROVED if partially else ProposalStatus.APPROVED,
            EventType.PROPOSAL_APPROVED,
            actor_id=actor.id,
            metadata={"approved_qty": qty},
        )

        old_request_status = request.status
        request.awarded_qty += qty
        if request.remaining_qty == 0:
            request.status = fire_transition(
                RequestStateMachine, request.status, "award_fully", target=RequestStatus.FULLY_AWARDED
            )
            await self._request_repo.save(request)
            await self._close_out_rivals(request, proposal, actor)
        else:
            request.status = fire_transition(
                RequestStateMachine,
                request.status,
                "award_partially",
                target=RequestStatus.PARTIALLY_AWARDED,
            )
            await self._request_repo.save(request)

        await self._event_repo.record(
            subject=EntityRef(EntityKind.RECRUITMENT_REQUEST, request.id),
            event_type=EventType.REQUEST_AWARD_CHANGED,
            old_status=old_request_status,
            new_status=request.status,
            actor=actor.id,
            metadata={"proposal_id": proposal.id, "awarded_qty": request.awarded_qty},
        )
        logger.info(
            "proposal.approved",
            proposal_id=str(proposal_id),
            request_id=str(request.id),
            qty=qty,
            request_status=request.status,
        )
        return proposal

    async def reject(
        self,
        proposal_id: uuid.UUID,
        reason: str,
        actor: Actor,
    ) -> SupplierProposal:
        """Reject a Submitted proposal. Siblings are unaffected."""
        if not reason or not reason.strip():
            raise DomainValidationError("A rejection reason is required")
        unlocked = await self._get_proposal_or_raise(proposal_id)
        await self._get_request_for_update(unlocked.request_id)
        proposal = await self._get_proposal_for_update(proposal_id)
        if proposal.status != ProposalStatus.SUBMITTED:
            raise NotProcessableError(
                "Only submitted proposals can be rejected",
                details={"proposal_id": str(proposal_id), "status": proposal.status},
            )

        proposal.rejection_reason = reason.strip()
        proposal.reviewed_by = actor.id
        proposal.reviewed_at = self._clock.now()
        return await self._transition(
            proposal,
            "reject",
            ProposalStatus.REJECTED,
            EventType.PROPOSAL_REJECTED,
            actor_id=actor.id,
            metadata={"reason": proposal.rejection_reason},
        )

    async def list_for_request(self, request_id: uuid.UUID) -> list[SupplierProposal]:
        return await self._proposal_repo.list_for_request(request_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _close_out_rivals(
        self,
        request: RecruitmentRequest,
        winner: SupplierProposal,
        actor: Actor,
    ) -> None:
        for rival in await self._proposal_repo.list_pending_rivals(request.id, winner.id):
            rival.rejection_reason = RIVAL_REJECTION_NOTE
            rival.reviewed_by = actor.id
            rival.reviewed_at = self._clock.now()
            await self._transition(
                rival,
                "close_out",
                ProposalStatus.REJECTED,
                EventType.PROPOSAL_REJECTED,
                actor_id=actor.id,
                metadata={"reason": RIVAL_REJECTION_NOTE, "awarded_to": winner.id},
            )

    async def _transition(
        self,
        proposal: SupplierProposal,
        event_name: str,
        target: ProposalStatus,
        event_type: EventType,
        *,
        actor_id: str,
        metadata: dict | None = None,
    ) -> SupplierProposal:
        old_status = proposal.status
        proposal.status = fire_transition(
            ProposalStateMachine, proposal.status, event_name, target=target
        )
        await self._proposal_repo.save(proposal)
        await self._event_repo.record(
            subject=EntityRef(EntityKind.PROPOSAL, proposal.id),
            event_type=event_type,
            old_status=old_status,
            new_status=proposal.status,
            actor=actor_id,
            metadata=metadata,
        )
        outbox_for(self._session).notifications.append(
            Notification(
                user_id=proposal.agency_id,
                event_type=f"proposal.{event_name}",
                subject=EntityRef(EntityKind.PROPOSAL, proposal.id),
                payload={"status": str(proposal.status)},
            )
        )
        return proposal

    async def _get_request_for_update(self, request_id: uuid.UUID) -> RecruitmentRequest:
        request = await self._request_repo.get_for_update(request_id)
        if request is None:
            raise EntityNotFoundError(EntityKind.RECRUITMENT_REQUEST, request_id)
        return request

    async def _get_proposal_or_raise(self, proposal_id: uuid.UUID) -> SupplierProposal:
        proposal = await self._proposal_repo.get_by_id(proposal_id)
        if proposal is None:
            raise EntityNotFoundError(EntityKind.PROPOSAL, proposal_id)
        return proposal

    async def _get_proposal_for_update(self, proposal_id: uuid.UUID) -> SupplierProposal:
        proposal = await self._proposal_repo.get_for_update(proposal_id)
        if proposal is None:
            raise EntityNotFoundError(EntityKind.PROPOSAL, proposal_id)
        return proposal
