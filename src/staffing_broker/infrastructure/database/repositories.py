"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the TransactionRunner's responsibility).

`get_for_update` reads lock the row (SELECT ... FOR UPDATE on PostgreSQL)
and refresh any copy already in the session's identity map. Writes to
versioned rows are additionally guarded by the version_id_col check.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from sqlalchemy import func, select

from staffing_broker.domain.enums import (
    ACTIVE_RESERVATION_STATES,
    NON_TERMINAL_CONTRACT_STATUSES,
    OPEN_PAYMENT_STATUSES,
    PENDING_PROPOSAL_STATUSES,
    ContractStatus,
    InvoiceStatus,
    PaymentSessionStatus,
    PaymentStatus,
)
from staffing_broker.infrastructure.database.orm_models import (
    AuditEvent,
    Base,
    Contract,
    Invoice,
    Payment,
    PaymentSession,
    RecruitmentRequest,
    SupplierProposal,
    Worker,
    WorkerProblem,
    WorkerReservation,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from staffing_broker.domain.collaborators import EntityRef
    from staffing_broker.domain.enums import EventType

ModelT = TypeVar("ModelT", bound=Base)


class _Repository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, obj: ModelT) -> ModelT:
        """Insert a new row."""
        self._session.add(obj)
        await self._session.flush()
        return obj

    async def get_by_id(self, entity_id: uuid.UUID) -> ModelT | None:
        result = await self._session.execute(
            select(self.model).where(self.model.id == entity_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, entity_id: uuid.UUID) -> ModelT | None:
        """Fetch and lock a row for the rest of the transaction."""
        result = await self._session.execute(
            select(self.model)
            .where(self.model.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def save(self, obj: ModelT) -> ModelT:
        """Flush pending changes on a loaded row."""
        await self._session.flush()
        return obj


class WorkerRepository(_Repository[Worker]):
    """Data access for workers."""

    model = Worker

    async def get_by_number(self, worker_number: str) -> Worker | None:
        result = await self._session.execute(
            select(Worker).where(Worker.worker_number == worker_number)
        )
        return result.scalar_one_or_none()

    async def list_by_status(self, status: str | None = None, limit: int = 100) -> list[Worker]:
        stmt = select(Worker).order_by(Worker.worker_number).limit(limit)
        if status is not None:
            stmt = stmt.where(Worker.status == status)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())


class RecruitmentRequestRepository(_Repository[RecruitmentRequest]):
    model = RecruitmentRequest


class ProposalRepository(_Repository[SupplierProposal]):
    """Data access for supplier proposals."""

    model = SupplierProposal

    async def list_for_request(self, request_id: uuid.UUID) -> list[SupplierProposal]:
        result = await self._session.execute(
            select(SupplierProposal)
            .where(SupplierProposal.request_id == request_id)
            .order_by(SupplierProposal.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_pending_for_agency(
        self, request_id: uuid.UUID, agency_id: str
    ) -> SupplierProposal | None:
        result = await self._session.execute(
            select(SupplierProposal)
            .where(
                SupplierProposal.request_id == request_id,
                SupplierProposal.agency_id == agency_id,
                SupplierProposal.status.in_(PENDING_PROPOSAL_STATUSES),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_pending_rivals(
        self, request_id: uuid.UUID, exclude_id: uuid.UUID
    ) -> list[SupplierProposal]:
        """Lock every other pending proposal on the request."""
        result = await self._session.execute(
            select(SupplierProposal)
            .where(
                SupplierProposal.request_id == request_id,
                SupplierProposal.id != exclude_id,
                SupplierProposal.status.in_(PENDING_PROPOSAL_STATUSES),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())


class ReservationRepository(_Repository[WorkerReservation]):
    """Data access for worker reservations."""

    model = WorkerReservation

    async def get_active_for_worker(self, worker_id: uuid.UUID) -> WorkerReservation | None:
        result = await self._session.execute(
            select(WorkerReservation).where(
                WorkerReservation.worker_id == worker_id,
                WorkerReservation.state.in_(ACTIVE_RESERVATION_STATES),
            )
        )
        return result.scalar_one_or_none()

    async def list_for_customer(
        self, customer_id: str, state: str | None = None
    ) -> list[WorkerReservation]:
        stmt = (
            select(WorkerReservation)
            .where(WorkerReservation.customer_id == customer_id)
            .order_by(WorkerReservation.created_at.desc())
        )
        if state is not None:
            stmt = stmt.where(WorkerReservation.state == state)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_lapsed_ids(self, now: datetime, limit: int) -> list[uuid.UUID]:
        """IDs of active reservations whose deadline has passed."""
        result = await self._session.execute(
            select(WorkerReservation.id)
            .where(
                WorkerReservation.state.in_(ACTIVE_RESERVATION_STATES),
                WorkerReservation.expires_at <= now,
            )
            .order_by(WorkerReservation.expires_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


class ContractRepository(_Repository[Contract]):
    """Data access for contracts."""

    model = Contract

    async def get_by_reservation(self, reservation_id: uuid.UUID) -> Contract | None:
        result = await self._session.execute(
            select(Contract).where(Contract.reservation_id == reservation_id)
        )
        return result.scalar_one_or_none()

    async def get_open_for_worker(self, worker_id: uuid.UUID) -> Contract | None:
        """The worker's non-terminal contract, if any (at most one by index)."""
        result = await self._session.execute(
            select(Contract).where(
                Contract.worker_id == worker_id,
                Contract.status.in_(NON_TERMINAL_CONTRACT_STATUSES),
            )
        )
        return result.scalar_one_or_none()

    async def list_for_customer(self, customer_id: str) -> list[Contract]:
        result = await self._session.execute(
            select(Contract)
            .where(Contract.customer_id == customer_id)
            .order_by(Contract.created_at.desc())
        )
        return list(result.scalars().all())

    async def list_unpaid_past_deadline_ids(self, now: datetime, limit: int) -> list[uuid.UUID]:
        result = await self._session.execute(
            select(Contract.id)
            .where(
                Contract.status == ContractStatus.AWAITING_PAYMENT,
                Contract.payment_deadline.is_not(None),
                Contract.payment_deadline <= now,
            )
            .order_by(Contract.payment_deadline.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


class InvoiceRepository(_Repository[Invoice]):
    """Data access for invoices."""

    model = Invoice

    async def get_by_contract(self, contract_id: uuid.UUID, *, lock: bool = False) -> Invoice | None:
        stmt = select(Invoice).where(Invoice.contract_id == contract_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_overdue_ids(self, now: datetime, limit: int) -> list[uuid.UUID]:
        result = await self._session.execute(
            select(Invoice.id)
            .join(Contract, Contract.id == Invoice.contract_id)
            .where(
                Invoice.status == InvoiceStatus.UNPAID,
                Invoice.due_date <= now,
                Contract.status.in_(NON_TERMINAL_CONTRACT_STATUSES),
            )
            .order_by(Invoice.due_date.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


class PaymentRepository(_Repository[Payment]):
    """Data access for payment records."""

    model = Payment

    async def list_open_for_contract(self, contract_id: uuid.UUID) -> list[Payment]:
        """Lock the pending/processing payments of a contract."""
        result = await self._session.execute(
            select(Payment)
            .where(
                Payment.contract_id == contract_id,
                Payment.status.in_(OPEN_PAYMENT_STATUSES),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def sum_completed_for_invoice(self, invoice_id: uuid.UUID) -> Decimal:
        result = await self._session.execute(
            select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.invoice_id == invoice_id,
                Payment.status == PaymentStatus.COMPLETED,
            )
        )
        return Decimal(str(result.scalar_one()))

    async def list_for_contract(self, contract_id: uuid.UUID) -> list[Payment]:
        result = await self._session.execute(
            select(Payment)
            .where(Payment.contract_id == contract_id)
            .order_by(Payment.created_at.asc())
        )
        return list(result.scalars().all())


class PaymentSessionRepository(_Repository[PaymentSession]):
    """Data access for OTP payment sessions."""

    model = PaymentSession

    async def list_pending_for_contract(self, contract_id: uuid.UUID) -> list[PaymentSession]:
        result = await self._session.execute(
            select(PaymentSession)
            .where(
                PaymentSession.contract_id == contract_id,
                PaymentSession.status == PaymentSessionStatus.PENDING,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_lapsed_ids(self, now: datetime, limit: int) -> list[uuid.UUID]:
        result = await self._session.execute(
            select(PaymentSession.id)
            .where(
                PaymentSession.status == PaymentSessionStatus.PENDING,
                PaymentSession.expires_at <= now,
            )
            .order_by(PaymentSession.expires_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())


class WorkerProblemRepository(_Repository[WorkerProblem]):
    model = WorkerProblem

    async def list_for_worker(self, worker_id: uuid.UUID) -> list[WorkerProblem]:
        result = await self._session.execute(
            select(WorkerProblem)
            .where(WorkerProblem.worker_id == worker_id)
            .order_by(WorkerProblem.created_at.desc())
        )
        return list(result.scalars().all())


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (uuid.UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        subject: EntityRef,
        event_type: EventType,
        old_status: str | None,
        new_status: str | None,
        actor: str = "system",
        metadata: dict | None = None,
    ) -> AuditEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = AuditEvent(
            entity_kind=subject.kind.value,
            entity_id=subject.id,
            event_type=event_type.value,
            old_status=str(old_status) if old_status is not None else None,
            new_status=str(new_status) if new_status is not None else None,
            actor=actor,
            metadata_json=_jsonable(metadata) if metadata else None,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_for_entity(self, subject: EntityRef) -> list[AuditEvent]:
        """Fetch all events for an entity in chronological order."""
        result = await self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_kind == subject.kind.value,
                AuditEvent.entity_id == subject.id,
            )
            .order_by(AuditEvent.created_at.asc())
        )
        return list(result.scalars().all())
