"""SQLAlchemy 2.0 ORM models for the Staffing Broker.

Tables:
    1. workers                - The finite pool of allocatable workers.
    2. recruitment_requests   - Demand for a quantity of workers.
    3. supplier_proposals     - Agency offers against a recruitment request.
    4. worker_reservations    - Time-boxed exclusive claims on a worker.
    5. contracts              - Binding agreements created from a reservation.
    6. invoices               - One per contract.
    7. payments               - Durable payment records.
    8. payment_sessions       - Ephemeral OTP-gated payment attempts.
    9. worker_problems        - Incident reports against contracted workers.
   10. audit_events           - Append-only log of every state transition.

Design decisions:
    - UUIDs as primary keys, stored natively on PostgreSQL and as CHAR(32) on SQLite.
    - Decimal for money (no floating point rounding errors).
    - Timestamps are always timezone-aware UTC when loaded, on every backend.
    - Owning rows carry a `version` column used by SQLAlchemy's version_id_col,
      so a concurrent write to the same row fails with StaleDataError.
    - Partial unique indexes enforce "at most one active X per Y" at DB level.
    - No ORM relationships: services load what they need explicitly, which
      keeps async sessions free of implicit lazy loads.
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, date, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    TypeDecorator,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from staffing_broker.domain.enums import (
    ACTIVE_RESERVATION_STATES,
    NON_TERMINAL_CONTRACT_STATUSES,
    OPEN_PAYMENT_STATUSES,
    ContractStatus,
    InvoiceStatus,
    OnboardingStage,
    PaymentMethod,
    PaymentSessionStatus,
    PaymentStatus,
    ProblemStatus,
    ProblemType,
    ProposalStatus,
    RequestStatus,
    ReservationState,
    ResolutionAction,
    WorkerStatus,
)

JSONType = JSON().with_variant(JSONB(), "postgresql")
MONEY = Numeric(12, 2)


class UTCDateTime(TypeDecorator):
    """DateTime that always round-trips as an aware UTC datetime.

    SQLite has no timezone support, so values are stored there as naive UTC
    and re-tagged on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime is not allowed: {value!r}")
        value = value.astimezone(UTC)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _in_check(column: str, values: enum.EnumMeta | frozenset) -> str:
    """Build a `column IN (...)` SQL fragment from enum values."""
    quoted = ", ".join(f"'{v}'" for v in sorted(str(v) for v in values))
    return f"{column} IN ({quoted})"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


# ---------------------------------------------------------------------------
# 1. workers
# ---------------------------------------------------------------------------
class Worker(TimestampMixin, Base):
    """A worker in the allocatable pool. Status is owned by the Resource Ledger."""

    __tablename__ = "workers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    worker_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # --- Profile ---
    nationality_code: Mapped[str | None] = mapped_column(String(8), nullable=True)
    profession_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    agency_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Supplying agency",
    )
    experience_years: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    experience_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    recruitment_request_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("recruitment_requests.id", ondelete="SET NULL"),
        nullable=True,
    )

    # --- Lifecycle ---
    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=WorkerStatus.READY,
        comment="Availability (guarded by WorkerStateMachine)",
    )
    onboarding_stage: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=OnboardingStage.MEDICAL_CHECK,
    )
    current_contract_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        nullable=True,
        default=None,
        comment="Contract currently holding the worker (back-reference only)",
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_check("status", WorkerStatus), name="ck_worker_valid_status"),
        CheckConstraint(
            _in_check("onboarding_stage", OnboardingStage),
            name="ck_worker_valid_onboarding_stage",
        ),
        CheckConstraint("experience_years >= 0", name="ck_worker_experience_non_negative"),
        Index("idx_worker_status", "status"),
        Index("idx_worker_agency", "agency_id"),
    )

    def __repr__(self) -> str:
        return f"<Worker id={self.id} number={self.worker_number} status={self.status}>"


# ---------------------------------------------------------------------------
# 2. recruitment_requests
# ---------------------------------------------------------------------------
class RecruitmentRequest(TimestampMixin, Base):
    """Demand for a number of workers, awarded through supplier proposals."""

    __tablename__ = "recruitment_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    nationality_code: Mapped[str | None] = mapped_column(String(8), nullable=True)
    profession_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    awarded_qty: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Sum of approved_qty over accepted proposals",
    )
    deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    sla_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    requirements: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=RequestStatus.OPEN)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_check("status", RequestStatus), name="ck_request_valid_status"),
        CheckConstraint("quantity > 0", name="ck_request_positive_quantity"),
        CheckConstraint(
            "awarded_qty >= 0 AND awarded_qty <= quantity",
            name="ck_request_award_bounds",
        ),
        Index("idx_request_status", "status"),
    )

    @property
    def remaining_qty(self) -> int:
        return self.quantity - self.awarded_qty

    def __repr__(self) -> str:
        return (
            f"<RecruitmentRequest id={self.id} awarded={self.awarded_qty}/"
            f"{self.quantity} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# 3. supplier_proposals
# ---------------------------------------------------------------------------
class SupplierProposal(TimestampMixin, Base):
    """An agency's offer to fill part or all of a recruitment request."""

    __tablename__ = "supplier_proposals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("recruitment_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    agency_id: Mapped[str] = mapped_column(String(64), nullable=False)
    offered_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    lead_time_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    valid_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Review outcome ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ProposalStatus.SUBMITTED,
    )
    approved_qty: Mapped[int | None] = mapped_column(Integer, nullable=True)
    approval_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_check("status", ProposalStatus), name="ck_proposal_valid_status"),
        CheckConstraint("offered_qty > 0", name="ck_proposal_positive_qty"),
        CheckConstraint("unit_price >= 0", name="ck_proposal_non_negative_price"),
        Index("idx_proposal_request_status", "request_id", "status"),
        Index("idx_proposal_agency", "agency_id"),
    )

    def __repr__(self) -> str:
        return f"<SupplierProposal id={self.id} qty={self.offered_qty} status={self.status}>"


# ---------------------------------------------------------------------------
# 4. worker_reservations
# ---------------------------------------------------------------------------
class WorkerReservation(TimestampMixin, Base):
    """A time-boxed exclusive claim on one worker by one customer."""

    __tablename__ = "worker_reservations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    worker_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workers.id", ondelete="RESTRICT"),
        nullable=False,
    )
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    state: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReservationState.AWAITING_CONTRACT,
        comment="Lifecycle state (guarded by ReservationStateMachine)",
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    contract_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_check("state", ReservationState), name="ck_reservation_valid_state"),
        CheckConstraint("end_date > start_date", name="ck_reservation_window"),
        # At most one active reservation per worker
        Index(
            "uq_reservation_active_worker",
            "worker_id",
            unique=True,
            postgresql_where=text(_in_check("state", ACTIVE_RESERVATION_STATES)),
            sqlite_where=text(_in_check("state", ACTIVE_RESERVATION_STATES)),
        ),
        Index("idx_reservation_customer", "customer_id"),
        Index("idx_reservation_state_expires", "state", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<WorkerReservation id={self.id} worker={self.worker_id} "
            f"state={self.state}>"
        )


# ---------------------------------------------------------------------------
# 5. contracts
# ---------------------------------------------------------------------------
class Contract(TimestampMixin, Base):
    """A binding agreement created from exactly one confirmed reservation."""

    __tablename__ = "contracts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contract_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    reservation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("worker_reservations.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    worker_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workers.id", ondelete="RESTRICT"),
        nullable=False,
    )
    package_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    # --- Financials ---
    original_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # --- Lifecycle ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ContractStatus.DRAFT,
        comment="Lifecycle state (guarded by ContractStateMachine)",
    )
    payment_deadline: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    terms_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    activated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_check("status", ContractStatus), name="ck_contract_valid_status"),
        CheckConstraint(
            "discount_amount >= 0 AND discount_amount <= original_amount",
            name="ck_contract_discount_bounds",
        ),
        CheckConstraint("total_amount >= 0", name="ck_contract_non_negative_total"),
        # At most one non-terminal contract per worker
        Index(
            "uq_contract_open_worker",
            "worker_id",
            unique=True,
            postgresql_where=text(_in_check("status", NON_TERMINAL_CONTRACT_STATUSES)),
            sqlite_where=text(_in_check("status", NON_TERMINAL_CONTRACT_STATUSES)),
        ),
        Index("idx_contract_customer", "customer_id"),
        Index("idx_contract_status_deadline", "status", "payment_deadline"),
    )

    def __repr__(self) -> str:
        return f"<Contract id={self.id} number={self.contract_number} status={self.status}>"


# ---------------------------------------------------------------------------
# 6. invoices
# ---------------------------------------------------------------------------
class Invoice(TimestampMixin, Base):
    __tablename__ = "invoices"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    invoice_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("contracts.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    due_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=InvoiceStatus.UNPAID)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_check("status", InvoiceStatus), name="ck_invoice_valid_status"),
        CheckConstraint("amount >= 0", name="ck_invoice_non_negative_amount"),
        Index("idx_invoice_status_due", "status", "due_date"),
    )

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} amount={self.amount} status={self.status}>"


# ---------------------------------------------------------------------------
# 7. payments
# ---------------------------------------------------------------------------
class Payment(TimestampMixin, Base):
    """Durable record of a payment against a contract's invoice."""

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("contracts.id", ondelete="CASCADE"),
        nullable=False,
    )
    invoice_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payment_session_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=PaymentStatus.PENDING)
    transaction_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(_in_check("status", PaymentStatus), name="ck_payment_valid_status"),
        CheckConstraint(_in_check("method", PaymentMethod), name="ck_payment_valid_method"),
        CheckConstraint("amount > 0", name="ck_payment_positive_amount"),
        # At most one open payment per contract
        Index(
            "uq_payment_open_contract",
            "contract_id",
            unique=True,
            postgresql_where=text(_in_check("status", OPEN_PAYMENT_STATUSES)),
            sqlite_where=text(_in_check("status", OPEN_PAYMENT_STATUSES)),
        ),
        Index("idx_payment_invoice", "invoice_id"),
    )

    def __repr__(self) -> str:
        return f"<Payment id={self.id} amount={self.amount} status={self.status}>"


# ---------------------------------------------------------------------------
# 8. payment_sessions
# ---------------------------------------------------------------------------
class PaymentSession(TimestampMixin, Base):
    """An OTP-gated payment attempt. The OTP itself is never stored."""

    __tablename__ = "payment_sessions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("contracts.id", ondelete="CASCADE"),
        nullable=False,
    )
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)
    session_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentSessionStatus.PENDING,
    )
    otp_hash: Mapped[str] = mapped_column(String(128), nullable=False, comment="bcrypt hash")
    otp_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    cancel_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(
            _in_check("status", PaymentSessionStatus),
            name="ck_payment_session_valid_status",
        ),
        CheckConstraint("otp_attempts >= 0", name="ck_payment_session_attempts"),
        # At most one pending session per contract
        Index(
            "uq_payment_session_pending_contract",
            "contract_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
        Index("idx_payment_session_status_expires", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        return f"<PaymentSession id={self.id} contract={self.contract_id} status={self.status}>"


# ---------------------------------------------------------------------------
# 9. worker_problems
# ---------------------------------------------------------------------------
class WorkerProblem(TimestampMixin, Base):
    __tablename__ = "worker_problems"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    worker_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("workers.id", ondelete="CASCADE"),
        nullable=False,
    )
    contract_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    problem_type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    date_reported: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=ProblemStatus.PENDING)
    resolution_action: Mapped[str | None] = mapped_column(String(20), nullable=True)
    resolution_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[str] = mapped_column(String(64), nullable=False)
    approved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    __table_args__ = (
        CheckConstraint(_in_check("status", ProblemStatus), name="ck_problem_valid_status"),
        CheckConstraint(_in_check("problem_type", ProblemType), name="ck_problem_valid_type"),
        CheckConstraint(
            "resolution_action IS NULL OR " + _in_check("resolution_action", ResolutionAction),
            name="ck_problem_valid_resolution",
        ),
        Index("idx_problem_worker", "worker_id"),
    )


# ---------------------------------------------------------------------------
# 10. audit_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class AuditEvent(Base):
    """Immutable audit record of a state transition on any entity.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level. Each row is written in the same transaction as
    the change it records.
    """

    __tablename__ = "audit_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Subject (EntityRef) ---
    entity_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    # --- Event Details ---
    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="EventType enum value (e.g., RESERVATION_CREATED)",
    )
    old_status: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
        comment="Status before this event (null for creation)",
    )
    new_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    actor: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="system",
        comment="Who triggered this event (user id or system)",
    )
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_audit_entity", "entity_kind", "entity_id"),
        Index("idx_audit_event_type", "event_type"),
        Index("idx_audit_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<AuditEvent {self.entity_kind}:{self.entity_id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )
