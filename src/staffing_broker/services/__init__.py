"""Application services - use case orchestration."""

from staffing_broker.services.contract_service import ContractService
from staffing_broker.services.expiry_sweeper import ExpirySweeper, SweepReport
from staffing_broker.services.payment_service import PaymentService
from staffing_broker.services.payment_session_service import PaymentSessionService
from staffing_broker.services.proposal_service import ProposalService
from staffing_broker.services.reservation_service import ReservationService
from staffing_broker.services.worker_ledger import WorkerLedger
from staffing_broker.services.worker_problem_service import WorkerProblemService

__all__ = [
    "ContractService",
    "ExpirySweeper",
    "SweepReport",
    "PaymentService",
    "PaymentSessionService",
    "ProposalService",
    "ReservationService",
    "WorkerLedger",
    "WorkerProblemService",
]
