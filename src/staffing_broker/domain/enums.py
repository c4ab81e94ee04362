"""Domain enumerations for the Staffing Broker.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class WorkerStatus(enum.StrEnum):
    """Availability of a worker in the pool.

    Only the Resource Ledger (services/worker_ledger.py) writes this value.
    See domain/state_machine.py for the transition table.
    """

    READY = "Ready"
    RESERVED_AWAITING_CONTRACT = "ReservedAwaitingContract"
    RESERVED_AWAITING_PAYMENT = "ReservedAwaitingPayment"
    ASSIGNED_TO_CONTRACT = "AssignedToContract"
    ON_LEAVE = "OnLeave"
    BLOCKED = "Blocked"
    INACTIVE = "Inactive"
    TERMINATED = "Terminated"


# Statuses in which a worker is held by a reservation or contract
HELD_WORKER_STATUSES = frozenset(
    {
        WorkerStatus.RESERVED_AWAITING_CONTRACT,
        WorkerStatus.RESERVED_AWAITING_PAYMENT,
        WorkerStatus.ASSIGNED_TO_CONTRACT,
    }
)


class OnboardingStage(enum.StrEnum):
    """Post-arrival onboarding pipeline, independent of WorkerStatus."""

    MEDICAL_CHECK = "MedicalCheck"
    IQAMA_ISSUED = "IqamaIssued"
    BANK_ACCOUNT = "BankAccount"
    SIM_CARD_ISSUED = "SIMCardIssued"
    READY_TO_WORK = "ReadyToWork"

    @property
    def successor(self) -> "OnboardingStage | None":
        stages = list(OnboardingStage)
        index = stages.index(self)
        return stages[index + 1] if index + 1 < len(stages) else None


class ReservationState(enum.StrEnum):
    """Lifecycle of a worker reservation.

    AWAITING_PAYMENT is the "confirmed" state a contract is created from.
    """

    AWAITING_CONTRACT = "AwaitingContract"
    AWAITING_PAYMENT = "AwaitingPayment"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


ACTIVE_RESERVATION_STATES = frozenset(
    {ReservationState.AWAITING_CONTRACT, ReservationState.AWAITING_PAYMENT}
)


class ReservationAction(enum.StrEnum):
    """Back-office decisions on an active reservation."""

    APPROVE = "approve"
    REJECT = "reject"
    EXTEND = "extend"


class ContractStatus(enum.StrEnum):
    DRAFT = "Draft"
    AWAITING_PAYMENT = "AwaitingPayment"
    ACTIVE = "Active"
    SUSPENDED = "Suspended"
    TERMINATED = "Terminated"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


NON_TERMINAL_CONTRACT_STATUSES = frozenset(
    {
        ContractStatus.DRAFT,
        ContractStatus.AWAITING_PAYMENT,
        ContractStatus.ACTIVE,
        ContractStatus.SUSPENDED,
    }
)


class InvoiceStatus(enum.StrEnum):
    UNPAID = "Unpaid"
    PAID = "Paid"
    OVERDUE = "Overdue"


class PaymentStatus(enum.StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


OPEN_PAYMENT_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PROCESSING})


class PaymentMethod(enum.StrEnum):
    PAYPASS = "paypass"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CARD = "card"


class PaymentSessionStatus(enum.StrEnum):
    """Stored session states. Expiry is computed from expires_at until swept."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SessionCancelReason(enum.StrEnum):
    EXPIRED = "Expired"
    TOO_MANY_ATTEMPTS = "TooManyAttempts"
    CUSTOMER_CANCELLED = "CustomerCancelled"
    CONTRACT_CLOSED = "ContractClosed"


class RequestStatus(enum.StrEnum):
    """Award progress of a recruitment request, derived from quantities."""

    OPEN = "Open"
    PARTIALLY_AWARDED = "PartiallyAwarded"
    FULLY_AWARDED = "FullyAwarded"


ACCEPTING_REQUEST_STATUSES = frozenset(
    {RequestStatus.OPEN, RequestStatus.PARTIALLY_AWARDED}
)


class ProposalStatus(enum.StrEnum):
    SUBMITTED = "Submitted"
    REVIEWED = "Reviewed"
    APPROVED = "Approved"
    PARTIALLY_APPROVED = "PartiallyApproved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


PENDING_PROPOSAL_STATUSES = frozenset({ProposalStatus.SUBMITTED, ProposalStatus.REVIEWED})


class ProblemType(enum.StrEnum):
    ESCAPE = "escape"
    REFUSAL = "refusal"
    NON_COMPLIANCE = "non_compliance"
    MISCONDUCT = "misconduct"
    EARLY_RETURN = "early_return"


class ProblemStatus(enum.StrEnum):
    PENDING = "Pending"
    APPROVED = "Approved"
    REJECTED = "Rejected"
    CLOSED = "Closed"


class ResolutionAction(enum.StrEnum):
    DISMISSAL = "Dismissal"
    RE_TRAINING = "Re-training"
    ESCALATION = "Escalation"


class EntityKind(enum.StrEnum):
    """Discriminator for EntityRef, the subject of audit events and notifications."""

    WORKER = "worker"
    RESERVATION = "reservation"
    CONTRACT = "contract"
    INVOICE = "invoice"
    PAYMENT = "payment"
    PAYMENT_SESSION = "payment_session"
    RECRUITMENT_REQUEST = "recruitment_request"
    PROPOSAL = "proposal"
    WORKER_PROBLEM = "worker_problem"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the audit_events table.

    Every state transition produces exactly one event, written in the same
    transaction as the change it describes.
    """

    # Worker ledger
    WORKER_REGISTERED = "WORKER_REGISTERED"
    WORKER_STATUS_CHANGED = "WORKER_STATUS_CHANGED"
    WORKER_ONBOARDING_ADVANCED = "WORKER_ONBOARDING_ADVANCED"

    # Reservations
    RESERVATION_CREATED = "RESERVATION_CREATED"
    RESERVATION_APPROVED = "RESERVATION_APPROVED"
    RESERVATION_REJECTED = "RESERVATION_REJECTED"
    RESERVATION_EXTENDED = "RESERVATION_EXTENDED"
    RESERVATION_CANCELLED = "RESERVATION_CANCELLED"
    RESERVATION_EXPIRED = "RESERVATION_EXPIRED"
    RESERVATION_COMPLETED = "RESERVATION_COMPLETED"

    # Contracts and invoices
    CONTRACT_CREATED = "CONTRACT_CREATED"
    CONTRACT_STATUS_CHANGED = "CONTRACT_STATUS_CHANGED"
    CONTRACT_CANCELLED = "CONTRACT_CANCELLED"
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_PAID = "INVOICE_PAID"
    INVOICE_OVERDUE = "INVOICE_OVERDUE"

    # Payments
    PAYMENT_PREPARED = "PAYMENT_PREPARED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    PAYMENT_CANCELLED = "PAYMENT_CANCELLED"
    PAYMENT_SESSION_CREATED = "PAYMENT_SESSION_CREATED"
    PAYMENT_SESSION_OTP_FAILED = "PAYMENT_SESSION_OTP_FAILED"
    PAYMENT_SESSION_COMPLETED = "PAYMENT_SESSION_COMPLETED"
    PAYMENT_SESSION_CANCELLED = "PAYMENT_SESSION_CANCELLED"

    # Proposal arbitration
    REQUEST_OPENED = "REQUEST_OPENED"
    REQUEST_AWARD_CHANGED = "REQUEST_AWARD_CHANGED"
    PROPOSAL_SUBMITTED = "PROPOSAL_SUBMITTED"
    PROPOSAL_REVIEWED = "PROPOSAL_REVIEWED"
    PROPOSAL_UPDATED = "PROPOSAL_UPDATED"
    PROPOSAL_APPROVED = "PROPOSAL_APPROVED"
    PROPOSAL_REJECTED = "PROPOSAL_REJECTED"
    PROPOSAL_WITHDRAWN = "PROPOSAL_WITHDRAWN"

    # Worker problems
    PROBLEM_REPORTED = "PROBLEM_REPORTED"
    PROBLEM_APPROVED = "PROBLEM_APPROVED"
    PROBLEM_REJECTED = "PROBLEM_REJECTED"
    PROBLEM_RESOLVED = "PROBLEM_RESOLVED"
