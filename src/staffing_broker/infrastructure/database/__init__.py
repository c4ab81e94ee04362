"""Database infrastructure - engine, ORM models, repositories and transactions."""

from staffing_broker.infrastructure.database.engine import (
    close_db,
    get_session_factory,
    init_db,
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
from staffing_broker.infrastructure.database.repositories import EventRepository
from staffing_broker.infrastructure.database.transactions import (
    Outbox,
    TransactionRunner,
    outbox_for,
)

__all__ = [
    "AuditEvent",
    "Base",
    "Contract",
    "Invoice",
    "Payment",
    "PaymentSession",
    "RecruitmentRequest",
    "SupplierProposal",
    "Worker",
    "WorkerProblem",
    "WorkerReservation",
    "EventRepository",
    "Outbox",
    "TransactionRunner",
    "outbox_for",
    "get_session_factory",
    "init_db",
    "close_db",
]
