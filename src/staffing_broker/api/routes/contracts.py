"""Contract and invoice REST API routes.

Routes:
    POST   /api/v1/contracts                         - Create from a confirmed reservation
    GET    /api/v1/contracts                         - List the caller's contracts
    GET    /api/v1/contracts/{id}                    - Get contract details
    GET    /api/v1/contracts/{id}/invoice            - Get the contract's invoice
    GET    /api/v1/contracts/{id}/payments           - List payments against the contract
    POST   /api/v1/contracts/{id}/status             - Back office: operator status change
    POST   /api/v1/contracts/{id}/request-payment    - Back office: Draft -> AwaitingPayment
    POST   /api/v1/contracts/{id}/cancel             - Cancel with full cascade
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
from staffing_broker.schemas.contracts import (
    CancelContractRequest,
    ContractResponse,
    CreateContractRequest,
    InvoiceResponse,
    TransitionContractRequest,
)
from staffing_broker.schemas.payments import PaymentResponse
from staffing_broker.services.contract_service import ContractService
from staffing_broker.services.payment_service import PaymentService

router = APIRouter(prefix="/api/v1/contracts", tags=["Contracts"])


@router.post("", response_model=ContractResponse, status_code=201, summary="Create a contract")
async def create_contract(
    body: CreateContractRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> ContractResponse:
    """Create a contract and its invoice from the caller's confirmed reservation."""
    contract = await runner.run(
        lambda s: ContractService(s, clock, settings).create_from_reservation(
            body.reservation_id,
            actor.id,
            original_amount=body.original_amount,
            discount_amount=body.discount_amount,
            terms_accepted=body.terms_accepted,
            package_id=body.package_id,
            start_date=body.start_date,
            end_date=body.end_date,
            payment_on_signing=body.payment_on_signing,
            notes=body.notes,
        ),
        name="contract.create",
    )
    return ContractResponse.model_validate(contract)


@router.get("", response_model=list[ContractResponse], summary="List my contracts")
async def list_contracts(
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> list[ContractResponse]:
    contracts = await runner.run(
        lambda s: ContractService(s, clock, settings).list_for_customer(actor.id),
        name="contract.list",
    )
    return [ContractResponse.model_validate(c) for c in contracts]


@router.get("/{contract_id}", response_model=ContractResponse, summary="Get contract details")
async def get_contract(
    contract_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> ContractResponse:
    customer_id = None if actor.has_any_role(settings.back_office_roles) else actor.id
    contract = await runner.run(
        lambda s: ContractService(s, clock, settings).get(contract_id, customer_id),
        name="contract.get",
    )
    return ContractResponse.model_validate(contract)


@router.get("/{contract_id}/invoice", response_model=InvoiceResponse, summary="Get the invoice")
async def get_invoice(
    contract_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> InvoiceResponse:
    customer_id = None if actor.has_any_role(settings.back_office_roles) else actor.id
    invoice = await runner.run(
        lambda s: ContractService(s, clock, settings).get_invoice(contract_id, customer_id),
        name="contract.get_invoice",
    )
    return InvoiceResponse.model_validate(invoice)


@router.get(
    "/{contract_id}/payments",
    response_model=list[PaymentResponse],
    summary="List payments against a contract",
)
async def list_contract_payments(
    contract_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> list[PaymentResponse]:
    customer_id = None if actor.has_any_role(settings.back_office_roles) else actor.id
    payments = await runner.run(
        lambda s: PaymentService(s, clock, settings).list_for_contract(contract_id, customer_id),
        name="payment.list",
    )
    return [PaymentResponse.model_validate(p) for p in payments]


@router.post(
    "/{contract_id}/status",
    response_model=ContractResponse,
    summary="Change contract status",
    description=(
        "Draft -> Active/Cancelled, Active -> Suspended/Terminated/Completed, "
        "Suspended -> Active/Terminated. Any other pair is rejected."
    ),
)
async def transition_contract(
    contract_id: uuid.UUID,
    body: TransitionContractRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> ContractResponse:
    require_back_office(actor, settings)
    contract = await runner.run(
        lambda s: ContractService(s, clock, settings).transition_status(
            contract_id, body.target_status, actor, notes=body.notes
        ),
        name="contract.transition_status",
    )
    return ContractResponse.model_validate(contract)


@router.post(
    "/{contract_id}/request-payment",
    response_model=ContractResponse,
    summary="Open the payment window on a Draft contract",
)
async def request_payment(
    contract_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> ContractResponse:
    require_back_office(actor, settings)
    contract = await runner.run(
        lambda s: ContractService(s, clock, settings).request_payment(contract_id, actor),
        name="contract.request_payment",
    )
    return ContractResponse.model_validate(contract)


@router.post("/{contract_id}/cancel", response_model=ContractResponse, summary="Cancel a contract")
async def cancel_contract(
    contract_id: uuid.UUID,
    body: CancelContractRequest,
    actor: Actor = Depends(get_actor),
    runner: TransactionRunner = Depends(get_runner),
    clock: Clock = Depends(get_clock),
    settings: Settings = Depends(get_app_settings),
) -> ContractResponse:
    """Customers cancel their own contracts; back office may cancel any."""
    customer_id = None if actor.has_any_role(settings.back_office_roles) else actor.id
    contract = await runner.run(
        lambda s: ContractService(s, clock, settings).cancel(
            contract_id, body.reason, actor, customer_id=customer_id
        ),
        name="contract.cancel",
    )
    return ContractResponse.model_validate(contract)
