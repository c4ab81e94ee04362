"""Payment Service - durable payment records and invoice settlement.

Offline payments (bank transfer, cash, card at the counter) go through
prepare -> confirm -> settle:

    pending     customer declares a payment against the invoice
    processing  customer supplies the transaction reference
    completed   back office settles it; once completed payments cover the
                invoice, the invoice is Paid and the contract is activated

The OTP flow in payment_session_service.py records its payment as completed
in one step and shares ``apply_payment`` with this flow.

A contract has at most one open (pending/processing) payment or pending
payment session at a time; ``ensure_nothing_in_progress`` checks that under
the contract lock and the partial unique indexes back it up.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from staffing_broker.config import Settings, get_settings
from staffing_broker.domain.clock import Clock, SystemClock
from staffing_broker.domain.collaborators import SYSTEM_ACTOR, EntityRef
from staffing_broker.domain.enums import (
    ContractStatus,
    EntityKind,
    EventType,
    InvoiceStatus,
    PaymentMethod,
    PaymentSessionStatus,
    PaymentStatus,
    SessionCancelReason,
)
from staffing_broker.domain.exceptions import (
    AlreadyInProgressError,
    DomainValidationError,
    EntityNotFoundError,
    NotProcessableError,
    UnauthorizedError,
)
from staffing_broker.domain.state_machine import (
    InvoiceStateMachine,
    PaymentSessionStateMachine,
    PaymentStateMachine,
    fire_transition,
)
from staffing_broker.infrastructure.database.orm_models import Payment
from staffing_broker.infrastructure.database.repositories import (
    ContractRepository,
    EventRepository,
    InvoiceRepository,
    PaymentRepository,
    PaymentSessionRepository,
)
from staffing_broker.logging_config import get_logger
from staffing_broker.services.contract_service import ContractService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from staffing_broker.domain.collaborators import Actor
    from staffing_broker.infrastructure.database.orm_models import (
        Contract,
        Invoice,
        PaymentSession,
    )

logger = get_logger(__name__)


class PaymentService:
    """Handles payment records and invoice settlement."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()
        self._contract_repo = ContractRepository(session)
        self._invoice_repo = InvoiceRepository(session)
        self._payment_repo = PaymentRepository(session)
        self._session_repo = PaymentSessionRepository(session)
        self._event_repo = EventRepository(session)
        self._contracts = ContractService(session, self._clock, self._settings)

    # ------------------------------------------------------------------
    # Offline payments
    # ------------------------------------------------------------------

    async def prepare_payment(
        self,
        contract_id: uuid.UUID,
        method: PaymentMethod,
        amount: Decimal | None = None,
        customer_id: str | None = None,
    ) -> Payment:
        """Open a pending payment against the contract's invoice."""
        contract = await self.lock_payable_contract(contract_id, customer_id)
        invoice = await self.lock_open_invoice(contract)
        await self.ensure_nothing_in_progress(contract)

        outstanding = await self.outstanding_amount(invoice)
        amount = outstanding if amount is None else Decimal(amount)
        if amount <= 0 or amount > outstanding:
            raise DomainValidationError(
                "Payment amount must be positive and no more than the outstanding balance",
                details={"amount": str(amount), "outstanding": str(outstanding)},
            )

        try:
            payment = await self._payment_repo.create(
                Payment(
                    contract_id=contract.id,
                    invoice_id=invoice.id,
                    customer_id=contract.customer_id,
                    amount=amount,
                    method=PaymentMethod(method),
                    status=PaymentStatus.PENDING,
                )
            )
        except IntegrityError as exc:
            raise AlreadyInProgressError(contract_id) from exc

        await self._event_repo.record(
            subject=EntityRef(EntityKind.PAYMENT, payment.id),
            event_type=EventType.PAYMENT_PREPARED,
            old_status=None,
            new_status=payment.status,
            actor=contract.customer_id,
            metadata={"contract_id": contract.id, "amount": amount, "method": payment.method},
        )
        logger.info(
            "payment.prepared",
            payment_id=str(payment.id),
            contract_id=str(contract.id),
            amount=str(amount),
            method=payment.method,
        )
        return payment

    async def confirm_payment(
        self,
        payment_id: uuid.UUID,
        transaction_id: str,
        customer_id: str | None = None,
    ) -> Payment:
        """pending -> processing, recording the customer's transaction reference."""
        if not transaction_id or not transaction_id.strip():
            raise DomainValidationError("A transaction reference is required")
        payment = await self._get_payment_for_update(payment_id)
        if customer_id is not None and payment.customer_id != customer_id:
            raise UnauthorizedError("Payment does not belong to this customer")

        old_status = payment.status
        payment.status = fire_transition(
            PaymentStateMachine, payment.status, "confirm", target=PaymentStatus.PROCESSING
        )
        payment.transaction_id = transaction_id.strip()
        await self._payment_repo.save(payment)

        await self._event_repo.record(
            subject=EntityRef(EntityKind.PAYMENT, payment.id),
            event_type=EventType.PAYMENT_CONFIRMED,
            old_status=old_status,
            new_status=payment.status,
            actor=payment.customer_id,
            metadata={"transaction_id": payment.transaction_id},
        )
        logger.info("payment.confirmed", payment_id=str(payment_id))
        return payment

    async def settle_payment(self, payment_id: uuid.UUID, actor: Actor = SYSTEM_ACTOR) -> Payment:
        """processing -> completed; pays the invoice and activates the contract when covered."""
        unlocked = await self._payment_repo.get_by_id(payment_id)
        if unlocked is None:
            raise EntityNotFoundError(EntityKind.PAYMENT, payment_id)

        # Owning row first: the contract, then its payment
        contract = await self._contract_repo.get_for_update(unlocked.contract_id)
        if contract is None:
            raise EntityNotFoundError(EntityKind.CONTRACT, unlocked.contract_id)
        payment = await self._get_payment_for_update(payment_id)

        old_status = payment.status
        payment.status = fire_transition(
            PaymentStateMachine, payment.status, "settle", target=PaymentStatus.COMPLETED
        )
        payment.paid_at = self._clock.now()
        await self._payment_repo.save(payment)

        await self._event_repo.record(
            subject=EntityRef(EntityKind.PAYMENT, payment.id),
            event_type=EventType.PAYMENT_COMPLETED,
            old_status=old_status,
            new_status=payment.status,
            actor=actor.id,
            metadata={"transaction_id": payment.transaction_id},
        )
        logger.info("payment.settled", payment_id=str(payment_id), amount=str(payment.amount))

        invoice = await self._get_invoice_for_update(contract)
        await self.apply_payment(contract, invoice, actor)
        return payment

    async def get_payment(self, payment_id: uuid.UUID, customer_id: str | None = None) -> Payment:
        payment = await self._payment_repo.get_by_id(payment_id)
        if payment is None:
            raise EntityNotFoundError(EntityKind.PAYMENT, payment_id)
        if customer_id is not None and payment.customer_id != customer_id:
            raise UnauthorizedError("Payment does not belong to this customer")
        return payment

    async def list_for_contract(
        self, contract_id: uuid.UUID, customer_id: str | None = None
    ) -> list[Payment]:
        contract = await self._contract_repo.get_by_id(contract_id)
        if contract is None:
            raise EntityNotFoundError(EntityKind.CONTRACT, contract_id)
        if customer_id is not None and contract.customer_id != customer_id:
            raise UnauthorizedError("Contract does not belong to this customer")
        return await self._payment_repo.list_for_contract(contract_id)

    # ------------------------------------------------------------------
    # Shared with the payment session protocol
    # ------------------------------------------------------------------

    async def lock_payable_contract(
        self, contract_id: uuid.UUID, customer_id: str | None = None
    ) -> Contract:
        """Lock a contract and check it is waiting for payment."""
        contract = await self._contract_repo.get_for_update(contract_id)
        if contract is None:
            raise EntityNotFoundError(EntityKind.CONTRACT, contract_id)
        if customer_id is not None and contract.customer_id != customer_id:
            raise UnauthorizedError("Contract does not belong to this customer")
        if contract.status != ContractStatus.AWAITING_PAYMENT:
            raise NotProcessableError(
                "Contract is not awaiting payment",
                details={"contract_id": str(contract_id), "status": contract.status},
            )
        return contract

    async def lock_open_invoice(self, contract: Contract) -> Invoice:
        """Lock the contract's invoice and check it still has a balance."""
        invoice = await self._get_invoice_for_update(contract)
        if invoice.status == InvoiceStatus.PAID:
            raise NotProcessableError(
                "Invoice is already paid",
                details={"invoice_id": str(invoice.id)},
            )
        return invoice

    async def ensure_nothing_in_progress(self, contract: Contract) -> None:
        """Fail AlreadyInProgress if the contract has a live session or open payment.

        A pending session found past its deadline is cancelled first.
        """
        now = self._clock.now()
        live_sessions = []
        for pending in await self._session_repo.list_pending_for_contract(contract.id):
            if now >= pending.expires_at:
                await self.cancel_session_row(pending, SessionCancelReason.EXPIRED)
            else:
                live_sessions.append(pending)

        open_payments = await self._payment_repo.list_open_for_contract(contract.id)
        if live_sessions or open_payments:
            raise AlreadyInProgressError(contract.id)

    async def outstanding_amount(self, invoice: Invoice) -> Decimal:
        paid = await self._payment_repo.sum_completed_for_invoice(invoice.id)
        return max(Decimal(invoice.amount) - paid, Decimal("0"))

    async def apply_payment(self, contract: Contract, invoice: Invoice, actor: Actor) -> Invoice:
        """Mark the invoice Paid once covered and activate an AwaitingPayment contract."""
        if invoice.status == InvoiceStatus.PAID:
            return invoice
        if await self.outstanding_amount(invoice) > 0:
            logger.info(
                "invoice.partially_paid",
                invoice_id=str(invoice.id),
                contract_id=str(contract.id),
            )
            return invoice

        old_status = invoice.status
        invoice.status = fire_transition(
            InvoiceStateMachine, invoice.status, "mark_paid", target=InvoiceStatus.PAID
        )
        invoice.paid_at = self._clock.now()
        await self._invoice_repo.save(invoice)
        await self._event_repo.record(
            subject=EntityRef(EntityKind.INVOICE, invoice.id),
            event_type=EventType.INVOICE_PAID,
            old_status=old_status,
            new_status=invoice.status,
            actor=actor.id,
            metadata={"contract_id": contract.id},
        )
        logger.info("invoice.paid", invoice_id=str(invoice.id), contract_id=str(contract.id))

        if contract.status == ContractStatus.AWAITING_PAYMENT:
            await self._contracts.activate_paid_contract(contract, actor)
        return invoice

    async def cancel_session_row(
        self,
        payment_session: PaymentSession,
        reason: SessionCancelReason,
        actor: Actor = SYSTEM_ACTOR,
    ) -> PaymentSession:
        """Cancel a locked pending payment session."""
        payment_session.status = fire_transition(
            PaymentSessionStateMachine,
            payment_session.status,
            "cancel",
            target=PaymentSessionStatus.CANCELLED,
        )
        payment_session.cancel_reason = reason
        payment_session.cancelled_at = self._clock.now()
        await self._session_repo.save(payment_session)

        await self._event_repo.record(
            subject=EntityRef(EntityKind.PAYMENT_SESSION, payment_session.id),
            event_type=EventType.PAYMENT_SESSION_CANCELLED,
            old_status=PaymentSessionStatus.PENDING,
            new_status=payment_session.status,
            actor=actor.id,
            metadata={"reason": reason, "contract_id": payment_session.contract_id},
        )
        logger.info(
            "payment_session.cancelled",
            session_id=str(payment_session.id),
            reason=str(reason),
        )
        return payment_session

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _get_invoice_for_update(self, contract: Contract) -> Invoice:
        invoice = await self._invoice_repo.get_by_contract(contract.id, lock=True)
        if invoice is None:
            raise EntityNotFoundError(EntityKind.INVOICE, contract.id)
        return invoice

    async def _get_payment_for_update(self, payment_id: uuid.UUID) -> Payment:
        payment = await self._payment_repo.get_for_update(payment_id)
        if payment is None:
            raise EntityNotFoundError(EntityKind.PAYMENT, payment_id)
        return payment
