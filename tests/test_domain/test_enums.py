"""Tests for domain enumerations."""

from __future__ import annotations

from staffing_broker.domain.enums import (
    ACTIVE_RESERVATION_STATES,
    HELD_WORKER_STATUSES,
    PENDING_PROPOSAL_STATUSES,
    ContractStatus,
    EventType,
    OnboardingStage,
    ReservationState,
    WorkerStatus,
)


class TestWorkerStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {
            "Ready",
            "ReservedAwaitingContract",
            "ReservedAwaitingPayment",
            "AssignedToContract",
            "OnLeave",
            "Blocked",
            "Inactive",
            "Terminated",
        }
        assert {s.value for s in WorkerStatus} == expected

    def test_string_comparison(self) -> None:
        assert WorkerStatus.READY == "Ready"
        assert f"{WorkerStatus.BLOCKED}" == "Blocked"

    def test_held_statuses(self) -> None:
        assert WorkerStatus.READY not in HELD_WORKER_STATUSES
        assert WorkerStatus.ASSIGNED_TO_CONTRACT in HELD_WORKER_STATUSES


class TestOnboardingStage:
    def test_successor_chain(self) -> None:
        assert OnboardingStage.MEDICAL_CHECK.successor is OnboardingStage.IQAMA_ISSUED
        assert OnboardingStage.SIM_CARD_ISSUED.successor is OnboardingStage.READY_TO_WORK
        assert OnboardingStage.READY_TO_WORK.successor is None


class TestLifecycleGroups:
    def test_active_reservation_states(self) -> None:
        assert ACTIVE_RESERVATION_STATES == {
            ReservationState.AWAITING_CONTRACT,
            ReservationState.AWAITING_PAYMENT,
        }

    def test_pending_proposals_exclude_decided(self) -> None:
        assert all(s.value in {"Submitted", "Reviewed"} for s in PENDING_PROPOSAL_STATUSES)

    def test_contract_statuses(self) -> None:
        assert len(ContractStatus) == 7


class TestEventType:
    def test_key_event_types_exist(self) -> None:
        assert EventType.RESERVATION_EXPIRED == "RESERVATION_EXPIRED"
        assert EventType.PAYMENT_SESSION_OTP_FAILED == "PAYMENT_SESSION_OTP_FAILED"
        assert EventType.PROPOSAL_WITHDRAWN == "PROPOSAL_WITHDRAWN"
