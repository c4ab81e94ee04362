"""Tests for the entity state machines and the fire_transition helper.

These tests verify the transition tables are correctly enforced
at the domain level, independent of any database or API.
"""

from __future__ import annotations

import pytest

from staffing_broker.domain.enums import ContractStatus, WorkerStatus
from staffing_broker.domain.exceptions import InvalidStateTransitionError
from staffing_broker.domain.state_machine import (
    CONTRACT_OPERATOR_EVENTS,
    ContractStateMachine,
    InvoiceStateMachine,
    OnboardingStateMachine,
    PaymentSessionStateMachine,
    PaymentStateMachine,
    ProposalStateMachine,
    RequestStateMachine,
    ReservationStateMachine,
    WorkerProblemStateMachine,
    WorkerStateMachine,
    can_fire,
    fire_transition,
)


class TestWorkerStateMachine:
    """Worker availability transitions."""

    def test_initial_state_is_ready(self) -> None:
        sm = WorkerStateMachine()
        assert sm.status == "Ready"

    def test_claim_confirm_assign_path(self) -> None:
        status = fire_transition(WorkerStateMachine, "Ready", "claim")
        assert status == WorkerStatus.RESERVED_AWAITING_CONTRACT
        status = fire_transition(WorkerStateMachine, status, "confirm")
        assert status == WorkerStatus.RESERVED_AWAITING_PAYMENT
        status = fire_transition(WorkerStateMachine, status, "assign")
        assert status == WorkerStatus.ASSIGNED_TO_CONTRACT

    @pytest.mark.parametrize(
        "held",
        ["ReservedAwaitingContract", "ReservedAwaitingPayment", "AssignedToContract"],
    )
    def test_release_from_any_hold(self, held: str) -> None:
        assert fire_transition(WorkerStateMachine, held, "release") == "Ready"

    @pytest.mark.parametrize(
        "status",
        ["ReservedAwaitingContract", "AssignedToContract", "OnLeave", "Blocked", "Inactive"],
    )
    def test_claim_only_from_ready(self, status: str) -> None:
        with pytest.raises(InvalidStateTransitionError):
            fire_transition(WorkerStateMachine, status, "claim")

    def test_cannot_assign_without_payment_hold(self) -> None:
        with pytest.raises(InvalidStateTransitionError, match="ReservedAwaitingContract"):
            fire_transition(
                WorkerStateMachine,
                "ReservedAwaitingContract",
                "assign",
                target=WorkerStatus.ASSIGNED_TO_CONTRACT,
            )

    def test_leave_round_trip(self) -> None:
        status = fire_transition(WorkerStateMachine, "Ready", "put_on_leave")
        assert status == "OnLeave"
        assert fire_transition(WorkerStateMachine, status, "return_from_leave") == "Ready"

    def test_held_worker_cannot_be_terminated(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            fire_transition(WorkerStateMachine, "AssignedToContract", "terminate")

    def test_terminated_is_final(self) -> None:
        sm = WorkerStateMachine(current_status="Terminated")
        assert sm.get_allowed_events() == []

    def test_blocked_worker_can_be_deactivated(self) -> None:
        assert fire_transition(WorkerStateMachine, "Blocked", "deactivate") == "Inactive"


class TestOnboardingStateMachine:
    def test_advances_one_stage_at_a_time(self) -> None:
        stages = ["MedicalCheck", "IqamaIssued", "BankAccount", "SIMCardIssued", "ReadyToWork"]
        status = stages[0]
        for expected in stages[1:]:
            status = fire_transition(OnboardingStateMachine, status, "advance")
            assert status == expected

    def test_ready_to_work_is_final(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            fire_transition(OnboardingStateMachine, "ReadyToWork", "advance")


class TestReservationStateMachine:
    def test_approve_then_complete(self) -> None:
        status = fire_transition(ReservationStateMachine, "AwaitingContract", "approve")
        assert status == "AwaitingPayment"
        assert fire_transition(ReservationStateMachine, status, "complete") == "Completed"

    def test_cannot_complete_unconfirmed(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            fire_transition(ReservationStateMachine, "AwaitingContract", "complete")

    @pytest.mark.parametrize("status", ["Cancelled", "Expired"])
    def test_terminal_states_accept_nothing(self, status: str) -> None:
        assert ReservationStateMachine(current_status=status).get_allowed_events() == []

    def test_completed_reservation_can_only_be_voided(self) -> None:
        sm = ReservationStateMachine(current_status="Completed")
        assert sm.get_allowed_events() == ["void"]


class TestContractStateMachine:
    """Contract status table."""

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            ("Draft", ContractStatus.ACTIVE),
            ("Draft", ContractStatus.CANCELLED),
            ("Active", ContractStatus.SUSPENDED),
            ("Active", ContractStatus.TERMINATED),
            ("Active", ContractStatus.COMPLETED),
            ("Suspended", ContractStatus.ACTIVE),
            ("Suspended", ContractStatus.TERMINATED),
        ],
    )
    def test_operator_transitions_allowed(self, current: str, target: ContractStatus) -> None:
        event = CONTRACT_OPERATOR_EVENTS[target]
        assert fire_transition(ContractStateMachine, current, event, target=target) == target

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            ("Active", ContractStatus.CANCELLED),
            ("Suspended", ContractStatus.COMPLETED),
            ("Draft", ContractStatus.SUSPENDED),
            ("Completed", ContractStatus.ACTIVE),
            ("Terminated", ContractStatus.ACTIVE),
            ("AwaitingPayment", ContractStatus.ACTIVE),
        ],
    )
    def test_operator_transitions_rejected(self, current: str, target: ContractStatus) -> None:
        event = CONTRACT_OPERATOR_EVENTS[target]
        with pytest.raises(InvalidStateTransitionError, match=f"from {current} to {target}"):
            fire_transition(ContractStateMachine, current, event, target=target)

    def test_payment_flow(self) -> None:
        status = fire_transition(ContractStateMachine, "Draft", "request_payment")
        assert status == "AwaitingPayment"
        assert fire_transition(ContractStateMachine, status, "confirm_payment") == "Active"
        assert fire_transition(ContractStateMachine, status, "expire_payment") == "Cancelled"

    def test_cancel_from_active(self) -> None:
        assert fire_transition(ContractStateMachine, "Active", "cancel") == "Cancelled"

    def test_suspended_contract_cannot_be_cancelled(self) -> None:
        assert not can_fire(ContractStateMachine, "Suspended", "cancel")


class TestPaymentMachines:
    def test_payment_lifecycle(self) -> None:
        status = fire_transition(PaymentStateMachine, "pending", "confirm")
        assert status == "processing"
        assert fire_transition(PaymentStateMachine, status, "settle") == "completed"

    def test_cannot_settle_pending_payment(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            fire_transition(PaymentStateMachine, "pending", "settle")

    def test_completed_session_cannot_be_cancelled(self) -> None:
        assert not can_fire(PaymentSessionStateMachine, "completed", "cancel")

    def test_invoice_paid_after_overdue(self) -> None:
        status = fire_transition(InvoiceStateMachine, "Unpaid", "mark_overdue")
        assert fire_transition(InvoiceStateMachine, status, "mark_paid") == "Paid"


class TestArbitrationMachines:
    def test_partial_award_can_repeat(self) -> None:
        status = fire_transition(RequestStateMachine, "Open", "award_partially")
        assert status == "PartiallyAwarded"
        status = fire_transition(RequestStateMachine, status, "award_partially")
        assert status == "PartiallyAwarded"
        assert fire_transition(RequestStateMachine, status, "award_fully") == "FullyAwarded"

    def test_reviewed_proposal_cannot_be_rejected_directly(self) -> None:
        assert not can_fire(ProposalStateMachine, "Reviewed", "reject")
        assert can_fire(ProposalStateMachine, "Reviewed", "close_out")

    def test_problem_must_be_approved_before_resolution(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            fire_transition(WorkerProblemStateMachine, "Pending", "resolve")
        assert fire_transition(WorkerProblemStateMachine, "Approved", "resolve") == "Closed"


class TestFireTransitionHelper:
    """Tests for the fire_transition utility function."""

    def test_invalid_status_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            fire_transition(WorkerStateMachine, "NONEXISTENT", "claim")

    def test_unknown_event_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            fire_transition(WorkerStateMachine, "Ready", "teleport")

    def test_error_names_target_status(self) -> None:
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            fire_transition(
                ContractStateMachine, "Completed", "activate", target=ContractStatus.ACTIVE
            )
        assert exc_info.value.current_state == "Completed"
        assert exc_info.value.attempted_state == "Active"
        assert exc_info.value.details == {"from": "Completed", "to": "Active"}

    def test_allowed_events_from_ready(self) -> None:
        allowed = set(WorkerStateMachine(current_status="Ready").get_allowed_events())
        assert allowed == {"claim", "put_on_leave", "block", "deactivate", "terminate"}
