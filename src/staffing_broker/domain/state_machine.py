"""Entity state machine guards.

Uses python-statemachine to enforce legal state transitions at the domain level.
No service writes a status column directly: it fires an event on the entity's
machine and stores the resulting state value. An illegal transition raises
InvalidStateTransitionError naming the from/to pair.

Worker transition table (the Resource Ledger is the only caller):
    Ready                                  -> ReservedAwaitingContract  (claim)
    ReservedAwaitingContract               -> ReservedAwaitingPayment   (confirm)
    ReservedAwaitingPayment                -> AssignedToContract        (assign)
    Reserved* / AssignedToContract         -> Ready                     (release)
    Ready                                 <-> OnLeave                   (put_on_leave / return_from_leave)
    any working state                      -> Blocked                   (block)
    any working state / Blocked            -> Inactive                  (deactivate)
    Ready / OnLeave / Blocked / Inactive   -> Terminated                (terminate)

Contract operator table (transition_status):
    Draft      -> Active, Cancelled
    Active     -> Suspended, Terminated, Completed
    Suspended  -> Active, Terminated
AwaitingPayment is entered and left only through the payment flow
(request_payment, confirm_payment, expire_payment, cancel).
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from staffing_broker.domain.enums import ContractStatus
from staffing_broker.domain.exceptions import InvalidStateTransitionError


class GuardedStateMachine(StateMachine):
    """Base for the per-entity machines, started at a stored status value.

    Usage:
        sm = ContractStateMachine(current_status="Active")
        sm.suspend()
        sm.status  # "Suspended"
    """

    def __init__(self, current_status: str | None = None) -> None:
        valid_values = {s.value for s in self.states}
        if current_status is not None and current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        # start_value expects the string value, not the State object
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


class WorkerStateMachine(GuardedStateMachine):
    READY = State("Ready", value="Ready", initial=True)
    RESERVED_AWAITING_CONTRACT = State(
        "ReservedAwaitingContract", value="ReservedAwaitingContract"
    )
    RESERVED_AWAITING_PAYMENT = State(
        "ReservedAwaitingPayment", value="ReservedAwaitingPayment"
    )
    ASSIGNED_TO_CONTRACT = State("AssignedToContract", value="AssignedToContract")
    ON_LEAVE = State("OnLeave", value="OnLeave")
    BLOCKED = State("Blocked", value="Blocked")
    INACTIVE = State("Inactive", value="Inactive")
    TERMINATED = State("Terminated", value="Terminated", final=True)

    # Reservation hold
    claim = READY.to(RESERVED_AWAITING_CONTRACT)
    confirm = RESERVED_AWAITING_CONTRACT.to(RESERVED_AWAITING_PAYMENT)
    assign = RESERVED_AWAITING_PAYMENT.to(ASSIGNED_TO_CONTRACT)
    release = (
        RESERVED_AWAITING_CONTRACT.to(READY)
        | RESERVED_AWAITING_PAYMENT.to(READY)
        | ASSIGNED_TO_CONTRACT.to(READY)
    )

    # Administrative
    put_on_leave = READY.to(ON_LEAVE)
    return_from_leave = ON_LEAVE.to(READY)
    block = (
        READY.to(BLOCKED)
        | RESERVED_AWAITING_CONTRACT.to(BLOCKED)
        | RESERVED_AWAITING_PAYMENT.to(BLOCKED)
        | ASSIGNED_TO_CONTRACT.to(BLOCKED)
        | ON_LEAVE.to(BLOCKED)
    )
    deactivate = (
        READY.to(INACTIVE)
        | RESERVED_AWAITING_CONTRACT.to(INACTIVE)
        | RESERVED_AWAITING_PAYMENT.to(INACTIVE)
        | ASSIGNED_TO_CONTRACT.to(INACTIVE)
        | ON_LEAVE.to(INACTIVE)
        | BLOCKED.to(INACTIVE)
    )
    terminate = (
        READY.to(TERMINATED)
        | ON_LEAVE.to(TERMINATED)
        | BLOCKED.to(TERMINATED)
        | INACTIVE.to(TERMINATED)
    )


class OnboardingStateMachine(GuardedStateMachine):
    MEDICAL_CHECK = State("MedicalCheck", value="MedicalCheck", initial=True)
    IQAMA_ISSUED = State("IqamaIssued", value="IqamaIssued")
    BANK_ACCOUNT = State("BankAccount", value="BankAccount")
    SIM_CARD_ISSUED = State("SIMCardIssued", value="SIMCardIssued")
    READY_TO_WORK = State("ReadyToWork", value="ReadyToWork", final=True)

    advance = (
        MEDICAL_CHECK.to(IQAMA_ISSUED)
        | IQAMA_ISSUED.to(BANK_ACCOUNT)
        | BANK_ACCOUNT.to(SIM_CARD_ISSUED)
        | SIM_CARD_ISSUED.to(READY_TO_WORK)
    )


class ReservationStateMachine(GuardedStateMachine):
    AWAITING_CONTRACT = State("AwaitingContract", value="AwaitingContract", initial=True)
    AWAITING_PAYMENT = State("AwaitingPayment", value="AwaitingPayment")
    COMPLETED = State("Completed", value="Completed")
    CANCELLED = State("Cancelled", value="Cancelled", final=True)
    EXPIRED = State("Expired", value="Expired", final=True)

    approve = AWAITING_CONTRACT.to(AWAITING_PAYMENT)
    complete = AWAITING_PAYMENT.to(COMPLETED)
    cancel = AWAITING_CONTRACT.to(CANCELLED) | AWAITING_PAYMENT.to(CANCELLED)
    expire = AWAITING_CONTRACT.to(EXPIRED) | AWAITING_PAYMENT.to(EXPIRED)
    # A completed reservation follows its contract when the contract is cancelled
    void = COMPLETED.to(CANCELLED)


class ContractStateMachine(GuardedStateMachine):
    DRAFT = State("Draft", value="Draft", initial=True)
    AWAITING_PAYMENT = State("AwaitingPayment", value="AwaitingPayment")
    ACTIVE = State("Active", value="Active")
    SUSPENDED = State("Suspended", value="Suspended")
    TERMINATED = State("Terminated", value="Terminated", final=True)
    COMPLETED = State("Completed", value="Completed", final=True)
    CANCELLED = State("Cancelled", value="Cancelled", final=True)

    # Operator transitions
    activate = DRAFT.to(ACTIVE) | SUSPENDED.to(ACTIVE)
    suspend = ACTIVE.to(SUSPENDED)
    terminate = ACTIVE.to(TERMINATED) | SUSPENDED.to(TERMINATED)
    complete = ACTIVE.to(COMPLETED)
    discard = DRAFT.to(CANCELLED)

    # Payment flow
    request_payment = DRAFT.to(AWAITING_PAYMENT)
    confirm_payment = AWAITING_PAYMENT.to(ACTIVE)
    expire_payment = AWAITING_PAYMENT.to(CANCELLED)
    cancel = DRAFT.to(CANCELLED) | AWAITING_PAYMENT.to(CANCELLED) | ACTIVE.to(CANCELLED)


# Target status -> event used by the operator-facing transition_status call
CONTRACT_OPERATOR_EVENTS: dict[ContractStatus, str] = {
    ContractStatus.ACTIVE: "activate",
    ContractStatus.SUSPENDED: "suspend",
    ContractStatus.TERMINATED: "terminate",
    ContractStatus.COMPLETED: "complete",
    ContractStatus.CANCELLED: "discard",
}


class InvoiceStateMachine(GuardedStateMachine):
    UNPAID = State("Unpaid", value="Unpaid", initial=True)
    OVERDUE = State("Overdue", value="Overdue")
    PAID = State("Paid", value="Paid", final=True)

    mark_overdue = UNPAID.to(OVERDUE)
    mark_paid = UNPAID.to(PAID) | OVERDUE.to(PAID)


class PaymentStateMachine(GuardedStateMachine):
    PENDING = State("pending", value="pending", initial=True)
    PROCESSING = State("processing", value="processing")
    COMPLETED = State("completed", value="completed", final=True)
    CANCELLED = State("cancelled", value="cancelled", final=True)

    confirm = PENDING.to(PROCESSING)
    settle = PROCESSING.to(COMPLETED)
    cancel = PENDING.to(CANCELLED) | PROCESSING.to(CANCELLED)


class PaymentSessionStateMachine(GuardedStateMachine):
    PENDING = State("pending", value="pending", initial=True)
    COMPLETED = State("completed", value="completed", final=True)
    CANCELLED = State("cancelled", value="cancelled", final=True)

    complete = PENDING.to(COMPLETED)
    cancel = PENDING.to(CANCELLED)


class RequestStateMachine(GuardedStateMachine):
    OPEN = State("Open", value="Open", initial=True)
    PARTIALLY_AWARDED = State("PartiallyAwarded", value="PartiallyAwarded")
    FULLY_AWARDED = State("FullyAwarded", value="FullyAwarded", final=True)

    award_partially = OPEN.to(PARTIALLY_AWARDED) | PARTIALLY_AWARDED.to.itself()
    award_fully = OPEN.to(FULLY_AWARDED) | PARTIALLY_AWARDED.to(FULLY_AWARDED)


class ProposalStateMachine(GuardedStateMachine):
    SUBMITTED = State("Submitted", value="Submitted", initial=True)
    REVIEWED = State("Reviewed", value="Reviewed")
    APPROVED = State("Approved", value="Approved", final=True)
    PARTIALLY_APPROVED = State("PartiallyApproved", value="PartiallyApproved", final=True)
    REJECTED = State("Rejected", value="Rejected", final=True)
    CANCELLED = State("Cancelled", value="Cancelled", final=True)

    review = SUBMITTED.to(REVIEWED)
    approve = SUBMITTED.to(APPROVED) | REVIEWED.to(APPROVED)
    approve_partially = SUBMITTED.to(PARTIALLY_APPROVED) | REVIEWED.to(PARTIALLY_APPROVED)
    reject = SUBMITTED.to(REJECTED)
    # Rivals of a proposal that filled the request
    close_out = SUBMITTED.to(REJECTED) | REVIEWED.to(REJECTED)
    withdraw = SUBMITTED.to(CANCELLED) | REVIEWED.to(CANCELLED)


class WorkerProblemStateMachine(GuardedStateMachine):
    PENDING = State("Pending", value="Pending", initial=True)
    APPROVED = State("Approved", value="Approved")
    REJECTED = State("Rejected", value="Rejected", final=True)
    CLOSED = State("Closed", value="Closed", final=True)

    approve = PENDING.to(APPROVED)
    reject = PENDING.to(REJECTED)
    resolve = APPROVED.to(CLOSED)


def fire_transition(
    machine_cls: type[GuardedStateMachine],
    current_status: str,
    event_name: str,
    *,
    target: str | None = None,
) -> str:
    """Fire ``event_name`` from ``current_status`` and return the new status.

    Args:
        machine_cls: The entity's state machine class.
        current_status: The stored status value.
        event_name: The event to fire (e.g., "claim").
        target: Status named in the error message when the event is refused.
                Defaults to the event name.

    Returns:
        The new status string after the transition.

    Raises:
        InvalidStateTransitionError: If the event cannot fire from the current status.
        ValueError: If the status or event name is unknown.
    """
    sm = machine_cls(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    try:
        event_method()
    except TransitionNotAllowed as exc:
        raise InvalidStateTransitionError(
            current_state=current_status,
            attempted_state=target or event_name,
        ) from exc
    return sm.status


def can_fire(
    machine_cls: type[GuardedStateMachine], current_status: str, event_name: str
) -> bool:
    """Return whether ``event_name`` is allowed from ``current_status``."""
    return event_name in machine_cls(current_status=current_status).get_allowed_events()
