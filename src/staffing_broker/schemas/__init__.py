"""Pydantic API schemas."""

from staffing_broker.schemas.common import (
    AuditEventResponse,
    ErrorResponse,
    HealthResponse,
    SweepReportResponse,
)
from staffing_broker.schemas.contracts import (
    CancelContractRequest,
    ContractResponse,
    CreateContractRequest,
    InvoiceResponse,
    TransitionContractRequest,
)
from staffing_broker.schemas.payments import (
    ConfirmPaymentRequest,
    CreatePaymentSessionRequest,
    PaymentResponse,
    PaymentSessionResponse,
    PaymentSessionStatusResponse,
    PreparePaymentRequest,
    VerifyOtpRequest,
)
from staffing_broker.schemas.problems import (
    RejectProblemRequest,
    ReportProblemRequest,
    ResolveProblemRequest,
    WorkerProblemResponse,
)
from staffing_broker.schemas.proposals import (
    ApproveProposalRequest,
    OpenRequestRequest,
    ProposalResponse,
    RecruitmentRequestResponse,
    RejectProposalRequest,
    SubmitProposalRequest,
    UpdateProposalRequest,
)
from staffing_broker.schemas.reservations import (
    CancelReservationRequest,
    ProcessReservationRequest,
    ReservationResponse,
    ReserveWorkerRequest,
)
from staffing_broker.schemas.workers import (
    AdvanceOnboardingRequest,
    ChangeWorkerStatusRequest,
    RegisterWorkerRequest,
    ReleaseWorkerRequest,
    WorkerResponse,
)

__all__ = [
    "AdvanceOnboardingRequest",
    "ApproveProposalRequest",
    "AuditEventResponse",
    "CancelContractRequest",
    "CancelReservationRequest",
    "ChangeWorkerStatusRequest",
    "ConfirmPaymentRequest",
    "ContractResponse",
    "CreateContractRequest",
    "CreatePaymentSessionRequest",
    "ErrorResponse",
    "HealthResponse",
    "InvoiceResponse",
    "OpenRequestRequest",
    "PaymentResponse",
    "PaymentSessionResponse",
    "PaymentSessionStatusResponse",
    "PreparePaymentRequest",
    "ProcessReservationRequest",
    "ProposalResponse",
    "RecruitmentRequestResponse",
    "RegisterWorkerRequest",
    "RejectProblemRequest",
    "RejectProposalRequest",
    "ReleaseWorkerRequest",
    "ReportProblemRequest",
    "ReservationResponse",
    "ReserveWorkerRequest",
    "ResolveProblemRequest",
    "SubmitProposalRequest",
    "SweepReportResponse",
    "TransitionContractRequest",
    "UpdateProposalRequest",
    "VerifyOtpRequest",
    "WorkerProblemResponse",
]
