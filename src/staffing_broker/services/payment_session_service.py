"""Payment Session Protocol - OTP-gated payment attempts.

A session is created for a contract awaiting payment. A one-time code is
generated, stored only as a bcrypt hash, and delivered out of band after the
transaction commits. Verifying the code completes the session, records a
completed payment, pays the invoice and activates the contract in one
transaction.

Session states: pending -> {completed, cancelled}. "Expired" is computed
from expires_at until the session is touched or swept, at which point it is
stored as cancelled with reason Expired. An expired session never fails its
contract; the customer can open a new one.
"""

from __future__ import annotations

import asyncio
import hmac
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, NoReturn

import bcrypt
from sqlalchemy.exc import IntegrityError

from staffing_broker.config import Settings, get_settings
from staffing_broker.domain.clock import Clock, SystemClock
from staffing_broker.domain.collaborators import SYSTEM_ACTOR, Actor, EntityRef, OtpDelivery
from staffing_broker.domain.enums import (
    ContractStatus,
    EntityKind,
    EventType,
    PaymentMethod,
    PaymentSessionStatus,
    PaymentStatus,
    SessionCancelReason,
)
from staffing_broker.domain.exceptions import (
    AlreadyInProgressError,
    DomainValidationError,
    EntityNotFoundError,
    ExpiredError,
    InvalidCodeError,
    NotProcessableError,
    TooManyAttemptsError,
    UnauthorizedError,
)
from staffing_broker.domain.state_machine import PaymentSessionStateMachine, fire_transition
from staffing_broker.infrastructure.database.orm_models import Payment, PaymentSession
from staffing_broker.infrastructure.database.repositories import (
    ContractRepository,
    EventRepository,
    PaymentRepository,
    PaymentSessionRepository,
)
from staffing_broker.infrastructure.database.transactions import outbox_for
from staffing_broker.logging_config import get_logger
from staffing_broker.services.payment_service import PaymentService

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

OTP_PURPOSE = "contract_payment"


@dataclass(frozen=True)
class PaymentSessionView:
    """Read model returned by get_status."""

    session: PaymentSession
    effective_status: str
    remaining_seconds: int
    attempts_remaining: int


def generate_otp(length: int) -> str:
    """Return a zero-padded numeric code from a CSPRNG."""
    return f"{secrets.randbelow(10**length):0{length}d}"


def hash_otp(code: str, rounds: int) -> str:
    return bcrypt.hashpw(code.encode(), bcrypt.gensalt(rounds=rounds)).decode()


def check_otp(code: str, otp_hash: str) -> bool:
    return bcrypt.checkpw(code.encode(), otp_hash.encode())


class PaymentSessionService:
    """Creates and verifies OTP payment sessions."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or get_settings()
        self._session_repo = PaymentSessionRepository(session)
        self._payment_repo = PaymentRepository(session)
        self._contract_repo = ContractRepository(session)
        self._event_repo = EventRepository(session)
        self._payments = PaymentService(session, self._clock, self._settings)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_session(
        self,
        contract_id: uuid.UUID,
        phone: str,
        method: PaymentMethod = PaymentMethod.PAYPASS,
        customer_id: str | None = None,
    ) -> PaymentSession:
        """Open an OTP session for a contract awaiting payment.

        Raises:
            NotProcessableError: Contract not AwaitingPayment or invoice already paid.
            AlreadyInProgressError: A live session or open payment exists.
        """
        if not phone or not phone.strip():
            raise DomainValidationError("A phone number is required")

        contract = await self._payments.lock_payable_contract(contract_id, customer_id)
        await self._payments.lock_open_invoice(contract)
        await self._payments.ensure_nothing_in_progress(contract)

        now = self._clock.now()
        code = generate_otp(self._settings.otp_length)
        otp_hash = await asyncio.to_thread(hash_otp, code, self._settings.otp_hash_rounds)

        try:
            payment_session = await self._session_repo.create(
                PaymentSession(
                    contract_id=contract.id,
                    customer_id=contract.customer_id,
                    phone=phone.strip(),
                    session_token=secrets.token_urlsafe(32),
                    payment_method=PaymentMethod(method),
                    status=PaymentSessionStatus.PENDING,
                    otp_hash=otp_hash,
                    otp_attempts=0,
                    expires_at=now + timedelta(seconds=self._settings.payment_session_ttl_seconds),
                )
            )
        except IntegrityError as exc:
            raise AlreadyInProgressError(contract_id) from exc

        await self._event_repo.record(
            subject=EntityRef(EntityKind.PAYMENT_SESSION, payment_session.id),
            event_type=EventType.PAYMENT_SESSION_CREATED,
            old_status=None,
            new_status=payment_session.status,
            actor=contract.customer_id,
            metadata={"contract_id": contract.id, "expires_at": payment_session.expires_at},
        )
        outbox_for(self._session).otp_deliveries.append(
            OtpDelivery(
                phone=payment_session.phone,
                code=code,
                purpose=OTP_PURPOSE,
                subject=EntityRef(EntityKind.PAYMENT_SESSION, payment_session.id),
            )
        )

        logger.info(
            "payment_session.created",
            session_id=str(payment_session.id),
            contract_id=str(contract.id),
            expires_at=payment_session.expires_at.isoformat(),
        )
        return payment_session

    # ------------------------------------------------------------------
    # Verify
    # ------------------------------------------------------------------

    async def verify_otp(
        self,
        session_id: uuid.UUID,
        code: str,
        customer_id: str | None = None,
    ) -> PaymentSession:
        """Check a submitted code and, on match, pay the contract.

        Raises:
            NotProcessableError: The session is not pending.
            ExpiredError: The session lapsed; it is cancelled (committed).
            InvalidCodeError: Mismatch; the attempt is counted (committed).
            TooManyAttemptsError: The attempt cap was exceeded; the session
                is cancelled (committed).
        """
        payment_session = await self._get_for_update_or_raise(session_id)
        if customer_id is not None and payment_session.customer_id != customer_id:
            raise UnauthorizedError("Payment session does not belong to this customer")
        if payment_session.status != PaymentSessionStatus.PENDING:
            raise NotProcessableError(
                "Payment session is not pending",
                details={"session_id": str(session_id), "status": payment_session.status},
            )

        if self._clock.now() >= payment_session.expires_at:
            await self._payments.cancel_session_row(payment_session, SessionCancelReason.EXPIRED)
            raise ExpiredError(
                "Payment session has expired",
                details={"session_id": str(session_id)},
            )

        if not await self._code_matches(payment_session, code):
            await self._record_failed_attempt(payment_session)

        return await self._complete(payment_session)

    async def _code_matches(self, payment_session: PaymentSession, code: str) -> bool:
        if self._settings.payment_bypass_active and hmac.compare_digest(
            code.encode(), self._settings.payment_bypass_code.encode()
        ):
            logger.warning("payment_session.bypass_code_used", session_id=str(payment_session.id))
            return True
        return await asyncio.to_thread(check_otp, code, payment_session.otp_hash)

    async def _record_failed_attempt(self, payment_session: PaymentSession) -> NoReturn:
        payment_session.otp_attempts += 1
        await self._session_repo.save(payment_session)
        await self._event_repo.record(
            subject=EntityRef(EntityKind.PAYMENT_SESSION, payment_session.id),
            event_type=EventType.PAYMENT_SESSION_OTP_FAILED,
            old_status=payment_session.status,
            new_status=payment_session.status,
            metadata={"attempts": payment_session.otp_attempts},
        )
        logger.info(
            "payment_session.otp_mismatch",
            session_id=str(payment_session.id),
            attempts=payment_session.otp_attempts,
        )

        max_attempts = self._settings.otp_max_attempts
        if payment_session.otp_attempts > max_attempts:
            await self._payments.cancel_session_row(
                payment_session, SessionCancelReason.TOO_MANY_ATTEMPTS
            )
            raise TooManyAttemptsError(payment_session.id)
        raise InvalidCodeError(attempts_remaining=max_attempts - payment_session.otp_attempts)

    async def _complete(self, payment_session: PaymentSession) -> PaymentSession:
        contract = await self._contract_repo.get_for_update(payment_session.contract_id)
        if contract is None:
            raise EntityNotFoundError(EntityKind.CONTRACT, payment_session.contract_id)
        if contract.status != ContractStatus.AWAITING_PAYMENT:
            raise NotProcessableError(
                "Contract is not awaiting payment",
                details={"contract_id": str(contract.id), "status": contract.status},
            )
        invoice = await self._payments.lock_open_invoice(contract)
        amount = await self._payments.outstanding_amount(invoice)
        now = self._clock.now()

        payment_session.status = fire_transition(
            PaymentSessionStateMachine,
            payment_session.status,
            "complete",
            target=PaymentSessionStatus.COMPLETED,
        )
        payment_session.completed_at = now
        await self._session_repo.save(payment_session)

        payment = await self._payment_repo.create(
            Payment(
                contract_id=contract.id,
                invoice_id=invoice.id,
                customer_id=contract.customer_id,
                payment_session_id=payment_session.id,
                amount=amount,
                method=payment_session.payment_method,
                status=PaymentStatus.COMPLETED,
                transaction_id=f"PS-{secrets.token_hex(8).upper()}",
                paid_at=now,
            )
        )

        actor = Actor(id=contract.customer_id, roles=frozenset({"customer"}))
        await self._event_repo.record(
            subject=EntityRef(EntityKind.PAYMENT_SESSION, payment_session.id),
            event_type=EventType.PAYMENT_SESSION_COMPLETED,
            old_status=PaymentSessionStatus.PENDING,
            new_status=payment_session.status,
            actor=actor.id,
            metadata={"payment_id": payment.id},
        )
        await self._event_repo.record(
            subject=EntityRef(EntityKind.PAYMENT, payment.id),
            event_type=EventType.PAYMENT_COMPLETED,
            old_status=None,
            new_status=payment.status,
            actor=actor.id,
            metadata={"amount": amount, "payment_session_id": payment_session.id},
        )
        await self._payments.apply_payment(contract, invoice, actor)

        logger.info(
            "payment_session.completed",
            session_id=str(payment_session.id),
            payment_id=str(payment.id),
            contract_id=str(contract.id),
        )
        return payment_session

    # ------------------------------------------------------------------
    # Cancel / status / expiry
    # ------------------------------------------------------------------

    async def cancel_session(
        self,
        session_id: uuid.UUID,
        reason: SessionCancelReason = SessionCancelReason.CUSTOMER_CANCELLED,
        customer_id: str | None = None,
    ) -> PaymentSession:
        """Cancel a pending session. Already-terminal sessions are returned unchanged."""
        payment_session = await self._get_for_update_or_raise(session_id)
        if customer_id is not None and payment_session.customer_id != customer_id:
            raise UnauthorizedError("Payment session does not belong to this customer")
        if payment_session.status != PaymentSessionStatus.PENDING:
            return payment_session
        actor = (
            Actor(id=customer_id, roles=frozenset({"customer"}))
            if customer_id is not None
            else SYSTEM_ACTOR
        )
        return await self._payments.cancel_session_row(
            payment_session, SessionCancelReason(reason), actor
        )

    async def get_status(
        self, session_id: uuid.UUID, customer_id: str | None = None
    ) -> PaymentSessionView:
        """Pure read, including the remaining TTL."""
        payment_session = await self._session_repo.get_by_id(session_id)
        if payment_session is None:
            raise EntityNotFoundError(EntityKind.PAYMENT_SESSION, session_id)
        if customer_id is not None and payment_session.customer_id != customer_id:
            raise UnauthorizedError("Payment session does not belong to this customer")

        remaining = 0
        effective_status = str(payment_session.status)
        if payment_session.status == PaymentSessionStatus.PENDING:
            remaining = int((payment_session.expires_at - self._clock.now()).total_seconds())
            if remaining <= 0:
                remaining = 0
                effective_status = "expired"

        return PaymentSessionView(
            session=payment_session,
            effective_status=effective_status,
            remaining_seconds=remaining,
            attempts_remaining=max(self._settings.otp_max_attempts - payment_session.otp_attempts, 0),
        )

    async def expire_if_lapsed(self, session_id: uuid.UUID) -> bool:
        """Cancel a pending session past its deadline (sweeper)."""
        payment_session = await self._session_repo.get_for_update(session_id)
        if (
            payment_session is None
            or payment_session.status != PaymentSessionStatus.PENDING
            or self._clock.now() < payment_session.expires_at
        ):
            return False
        await self._payments.cancel_session_row(payment_session, SessionCancelReason.EXPIRED)
        return True

    async def _get_for_update_or_raise(self, session_id: uuid.UUID) -> PaymentSession:
        payment_session = await self._session_repo.get_for_update(session_id)
        if payment_session is None:
            raise EntityNotFoundError(EntityKind.PAYMENT_SESSION, session_id)
        return payment_session
