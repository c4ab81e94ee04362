"""Payment session and payment REST API routes.

Routes:
    POST   /api/v1/payment-sessions               - Open an OTP session for a contract
    GET    /api/v1/payment-sessions/{id}          - Status with remaining TTL (pure read)
    POST   /api/v1/payment-sessions/{id}/verify   - Submit the OTP
    POST   /api/v1/payment-sessions/{id}/cancel   - Cancel a pending session
    POST   /api/v1/payments                       - Prepare an offline payment
    GET    /api/v1/payments/{id}                  - Get a payment
    POST   /api/v1/payments/{id}/confirm          - Record the transaction reference
    POST   /api/v1/payments/{id}/settle           - Back office: settle the payment
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from staffing_broker.api.deps import (
    get_actor,
    get_app_settings,
    get_clock,
    get_runner,
    require_back_office,
)
from staffing_broker.config import Settings
from staffing_broker.domain.clock import Clock
from staffing_broker.domain.collaborators import Actor
from staffing_broker.infrastructure.database.transactions import TransactionRunner
from staffing_broker.schemas.payments import (
    ConfirmPaymentRequest,
    CreatePaymentSessionRequest,
    PaymentResponse,
    PaymentSessionResponse,
    PaymentSessionStatusResponse,
    PreparePaymentRequest,
    VerifyOtpRequest,
)
from staffing_broker.services.payment_service import PaymentService
from staffing_broker.services.payment_session_service import PaymentSessionService

router = APIRouter(prefix="/api/v1", tags=["Payments"])


# ---------------------------------------------------------------------------
# OTP payment sessions
# ---------------------------------------------------------------------------


@router.post(
    "/payment-sessions",
    response_model=PaymentSessionResponse,
    status_code=201,
    summary="Open a payment session",
)
async def create_payment_session(
    body: CreatePaymentSessionRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> PaymentSessionResponse:
    """The OTP is delivered to ``phone`` once the session is committed."""
    payment_session = await runner.run(
        lambda s: PaymentSessionService(s, clock, settings).create_session(
            body.contract_id, body.phone, body.method, customer_id=actor.id
        ),
        name="payment_session.create",
    )
    return PaymentSessionResponse.model_validate(payment_session)


@router.get(
    "/payment-sessions/{session_id}",
    response_model=PaymentSessionStatusResponse,
    summary="Get payment session status",
)
async def get_payment_session_status(
    session_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> PaymentSessionStatusResponse:
    customer_id = None if actor.has_any_role(settings.back_office_roles) else actor.id
    view = await runner.run(
        lambda s: PaymentSessionService(s, clock, settings).get_status(session_id, customer_id),
        name="payment_session.status",
    )
    return PaymentSessionStatusResponse(
        session_id=view.session.id,
        contract_id=view.session.contract_id,
        status=view.effective_status,
        remaining_seconds=view.remaining_seconds,
        attempts_remaining=view.attempts_remaining,
        expires_at=view.session.expires_at,
    )


@router.post(
    "/payment-sessions/{session_id}/verify",
    response_model=PaymentSessionResponse,
    summary="Verify the OTP and pay the contract",
)
async def verify_payment_session(
    session_id: uuid.UUID,
    body: VerifyOtpRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> PaymentSessionResponse:
    payment_session = await runner.run(
        lambda s: PaymentSessionService(s, clock, settings).verify_otp(
            session_id, body.code, customer_id=actor.id
        ),
        name="payment_session.verify",
    )
    return PaymentSessionResponse.model_validate(payment_session)


@router.post(
    "/payment-sessions/{session_id}/cancel",
    response_model=PaymentSessionResponse,
    summary="Cancel a payment session",
)
async def cancel_payment_session(
    session_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> PaymentSessionResponse:
    payment_session = await runner.run(
        lambda s: PaymentSessionService(s, clock, settings).cancel_session(
            session_id, customer_id=actor.id
        ),
        name="payment_session.cancel",
    )
    return PaymentSessionResponse.model_validate(payment_session)


# ---------------------------------------------------------------------------
# Offline payments
# ---------------------------------------------------------------------------


@router.post(
    "/payments",
    response_model=PaymentResponse,
    status_code=201,
    summary="Prepare an offline payment",
)
async def prepare_payment(
    body: PreparePaymentRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> PaymentResponse:
    payment = await runner.run(
        lambda s: PaymentService(s, clock, settings).prepare_payment(
            body.contract_id, body.method, body.amount, customer_id=actor.id
        ),
        name="payment.prepare",
    )
    return PaymentResponse.model_validate(payment)


@router.get("/payments/{payment_id}", response_model=PaymentResponse, summary="Get a payment")
async def get_payment(
    payment_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> PaymentResponse:
    customer_id = None if actor.has_any_role(settings.back_office_roles) else actor.id
    payment = await runner.run(
        lambda s: PaymentService(s, clock, settings).get_payment(payment_id, customer_id),
        name="payment.get",
    )
    return PaymentResponse.model_validate(payment)


@router.post(
    "/payments/{payment_id}/confirm",
    response_model=PaymentResponse,
    summary="Record the payment's transaction reference",
)
async def confirm_payment(
    payment_id: uuid.UUID,
    body: ConfirmPaymentRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> PaymentResponse:
    payment = await runner.run(
        lambda s: PaymentService(s, clock, settings).confirm_payment(
            payment_id, body.transaction_id, customer_id=actor.id
        ),
        name="payment.confirm",
    )
    return PaymentResponse.model_validate(payment)


@router.post(
    "/payments/{payment_id}/settle",
    response_model=PaymentResponse,
    summary="Settle a processing payment",
)
async def settle_payment(
    payment_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> PaymentResponse:
    require_back_office(actor, settings)
    payment = await runner.run(
        lambda s: PaymentService(s, clock, settings).settle_payment(payment_id, actor),
        name="payment.settle",
    )
    return PaymentResponse.model_validate(payment)
