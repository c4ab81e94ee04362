"""Tests for proposal arbitration across agencies."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import STAFF
from staffing_broker.domain.collaborators import EntityRef
from staffing_broker.domain.enums import EntityKind, EventType, ProposalStatus, RequestStatus
from staffing_broker.domain.exceptions import (
    AlreadyExistsError,
    DomainValidationError,
    ExpiredError,
    NotProcessableError,
    UnauthorizedError,
)
from staffing_broker.infrastructure.database.orm_models import SupplierProposal
from staffing_broker.services.proposal_service import RIVAL_REJECTION_NOTE, ProposalService


@pytest.fixture
def proposals(factory):  # noqa: ANN001, ANN201
    return lambda s: ProposalService(s, factory.clock)


async def _open(factory, proposals, quantity=10):  # noqa: ANN001, ANN202
    deadline = factory.clock.now() + timedelta(days=14)
    return await factory.runner.run(
        lambda s: proposals(s).open_request(
            quantity, deadline, nationality_code="PH", profession_code="DRIVER", actor=STAFF
        )
    )


async def _submit(factory, proposals, request_id, agency, qty, **kwargs):  # noqa: ANN001, ANN202
    return await factory.runner.run(
        lambda s: proposals(s).submit_proposal(request_id, agency, qty, Decimal("1500.00"), **kwargs)
    )


class TestRequests:
    @pytest.mark.asyncio
    async def test_open_request(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals)

        assert request.status == RequestStatus.OPEN
        assert request.awarded_qty == 0
        assert request.remaining_qty == 10
        assert request.created_by == STAFF.id

    @pytest.mark.asyncio
    async def test_deadline_must_be_future(self, factory, proposals) -> None:  # noqa: ANN001
        with pytest.raises(DomainValidationError):
            await factory.runner.run(
                lambda s: proposals(s).open_request(5, factory.clock.now(), actor=STAFF)
            )

    @pytest.mark.asyncio
    async def test_closed_after_deadline(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals)
        factory.clock.advance(days=15)

        with pytest.raises(NotProcessableError):
            await _submit(factory, proposals, request.id, "agency-a", 3)


class TestApproval:
    @pytest.mark.asyncio
    async def test_partial_then_full_award(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals, quantity=10)
        first = await _submit(factory, proposals, request.id, "agency-a", 6)
        second = await _submit(factory, proposals, request.id, "agency-b", 8)
        third = await _submit(factory, proposals, request.id, "agency-c", 2)
        await factory.runner.run(lambda s: proposals(s).mark_reviewed(third.id, STAFF))

        approved = await factory.runner.run(lambda s: proposals(s).approve(first.id, STAFF))
        assert approved.status == ProposalStatus.APPROVED
        assert approved.approved_qty == 6
        request = await factory.runner.run(lambda s: proposals(s).get_request(request.id))
        assert request.status == RequestStatus.PARTIALLY_AWARDED
        assert request.remaining_qty == 4

        # Default quantity is capped by what the request still needs
        partially = await factory.runner.run(lambda s: proposals(s).approve(second.id, STAFF))
        assert partially.status == ProposalStatus.PARTIALLY_APPROVED
        assert partially.approved_qty == 4

        request = await factory.runner.run(lambda s: proposals(s).get_request(request.id))
        assert request.status == RequestStatus.FULLY_AWARDED
        assert request.awarded_qty == 10

        rival = await factory.reload(SupplierProposal, third.id)
        assert rival.status == ProposalStatus.REJECTED
        assert rival.rejection_reason == RIVAL_REJECTION_NOTE

    @pytest.mark.asyncio
    async def test_quantity_cannot_exceed_remaining(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals, quantity=5)
        proposal = await _submit(factory, proposals, request.id, "agency-a", 8)

        with pytest.raises(DomainValidationError):
            await factory.runner.run(lambda s: proposals(s).approve(proposal.id, STAFF, qty=6))

    @pytest.mark.asyncio
    async def test_fully_awarded_request_refuses_more(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals, quantity=2)
        winner = await _submit(factory, proposals, request.id, "agency-a", 2)
        await factory.runner.run(lambda s: proposals(s).approve(winner.id, STAFF))

        with pytest.raises(NotProcessableError):
            await _submit(factory, proposals, request.id, "agency-b", 1)

    @pytest.mark.asyncio
    async def test_lapsed_proposal_cannot_be_approved(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals)
        proposal = await _submit(
            factory,
            proposals,
            request.id,
            "agency-a",
            3,
            valid_until=factory.clock.now() + timedelta(days=2),
        )
        factory.clock.advance(days=3)

        with pytest.raises(ExpiredError):
            await factory.runner.run(lambda s: proposals(s).approve(proposal.id, STAFF))

    @pytest.mark.asyncio
    async def test_decided_proposal_cannot_be_approved_again(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals)
        proposal = await _submit(factory, proposals, request.id, "agency-a", 3)
        await factory.runner.run(lambda s: proposals(s).approve(proposal.id, STAFF))

        with pytest.raises(NotProcessableError, match="pending"):
            await factory.runner.run(lambda s: proposals(s).approve(proposal.id, STAFF))


class TestRejectAndWithdraw:
    @pytest.mark.asyncio
    async def test_reject_leaves_siblings_alone(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals)
        loser = await _submit(factory, proposals, request.id, "agency-a", 3)
        sibling = await _submit(factory, proposals, request.id, "agency-b", 3)

        rejected = await factory.runner.run(
            lambda s: proposals(s).reject(loser.id, "price too high", STAFF)
        )

        assert rejected.status == ProposalStatus.REJECTED
        assert rejected.rejection_reason == "price too high"
        untouched = await factory.reload(SupplierProposal, sibling.id)
        assert untouched.status == ProposalStatus.SUBMITTED

    @pytest.mark.asyncio
    async def test_reviewed_proposal_cannot_be_rejected(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals)
        proposal = await _submit(factory, proposals, request.id, "agency-a", 3)
        await factory.runner.run(lambda s: proposals(s).mark_reviewed(proposal.id, STAFF))

        with pytest.raises(NotProcessableError):
            await factory.runner.run(lambda s: proposals(s).reject(proposal.id, "late", STAFF))

    @pytest.mark.asyncio
    async def test_agency_withdraws_own_proposal(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals)
        proposal = await _submit(factory, proposals, request.id, "agency-a", 3)

        with pytest.raises(UnauthorizedError):
            await factory.runner.run(lambda s: proposals(s).withdraw(proposal.id, "agency-b"))

        withdrawn = await factory.runner.run(lambda s: proposals(s).withdraw(proposal.id, "agency-a"))
        assert withdrawn.status == ProposalStatus.CANCELLED

        listed = await factory.runner.run(lambda s: proposals(s).list_for_request(request.id))
        assert [p.id for p in listed] == [proposal.id]


class TestOneActiveProposalPerAgency:
    @pytest.mark.asyncio
    async def test_second_submission_rejected(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals)
        first = await _submit(factory, proposals, request.id, "agency-a", 3)

        with pytest.raises(AlreadyExistsError) as exc_info:
            await _submit(factory, proposals, request.id, "agency-a", 4)
        assert exc_info.value.details["proposal_id"] == str(first.id)

        listed = await factory.runner.run(lambda s: proposals(s).list_for_request(request.id))
        assert [p.id for p in listed] == [first.id]

    @pytest.mark.asyncio
    async def test_reviewed_proposal_still_blocks(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals)
        first = await _submit(factory, proposals, request.id, "agency-a", 3)
        await factory.runner.run(lambda s: proposals(s).mark_reviewed(first.id, STAFF))

        with pytest.raises(AlreadyExistsError):
            await _submit(factory, proposals, request.id, "agency-a", 3)

    @pytest.mark.asyncio
    async def test_resubmit_after_withdraw(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals)
        first = await _submit(factory, proposals, request.id, "agency-a", 3)
        await factory.runner.run(lambda s: proposals(s).withdraw(first.id, "agency-a"))

        second = await _submit(factory, proposals, request.id, "agency-a", 5)

        assert second.status == ProposalStatus.SUBMITTED
        assert second.id != first.id


class TestUpdateProposal:
    @pytest.mark.asyncio
    async def test_changes_only_given_fields(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals, quantity=10)
        proposal = await _submit(factory, proposals, request.id, "agency-a", 3, notes="first")

        updated = await factory.runner.run(
            lambda s: proposals(s).update_proposal(
                proposal.id, "agency-a", offered_qty=10, unit_price=Decimal("1400.00")
            )
        )

        assert updated.offered_qty == 10
        assert updated.unit_price == Decimal("1400.00")
        assert updated.notes == "first"
        assert updated.status == ProposalStatus.SUBMITTED
        events = await factory.events(EntityRef(EntityKind.PROPOSAL, proposal.id))
        assert EventType.PROPOSAL_UPDATED in [e.event_type for e in events]

    @pytest.mark.asyncio
    async def test_quantity_capped_at_remaining(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals, quantity=10)
        winner = await _submit(factory, proposals, request.id, "agency-a", 6)
        other = await _submit(factory, proposals, request.id, "agency-b", 2)
        await factory.runner.run(lambda s: proposals(s).approve(winner.id, STAFF))

        with pytest.raises(DomainValidationError) as exc_info:
            await factory.runner.run(
                lambda s: proposals(s).update_proposal(other.id, "agency-b", offered_qty=5)
            )
        assert exc_info.value.details["remaining_qty"] == 4

        stored = await factory.reload(SupplierProposal, other.id)
        assert stored.offered_qty == 2

    @pytest.mark.asyncio
    async def test_other_agency_cannot_update(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals)
        proposal = await _submit(factory, proposals, request.id, "agency-a", 3)

        with pytest.raises(UnauthorizedError):
            await factory.runner.run(
                lambda s: proposals(s).update_proposal(proposal.id, "agency-b", offered_qty=4)
            )

    @pytest.mark.asyncio
    async def test_reviewed_proposal_is_frozen(self, factory, proposals) -> None:  # noqa: ANN001
        request = await _open(factory, proposals)
        proposal = await _submit(factory, proposals, request.id, "agency-a", 3)
        await factory.runner.run(lambda s: proposals(s).mark_reviewed(proposal.id, STAFF))

        with pytest.raises(NotProcessableError, match="cannot be updated"):
            await factory.runner.run(
                lambda s: proposals(s).update_proposal(proposal.id, "agency-a", offered_qty=4)
            )
