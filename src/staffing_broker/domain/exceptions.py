"""Domain exceptions for the Staffing Broker.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.

Some failures are reported only after their side effects are durable (an
expired reservation is marked Expired, a wrong OTP increments the attempt
counter). Those classes set ``commits_side_effects`` and the transaction
runner commits before re-raising them.
"""

from __future__ import annotations

from typing import Any, ClassVar


class StaffingError(Exception):
    """Base exception for all domain errors."""

    commits_side_effects: ClassVar[bool] = False

    def __init__(
        self,
        message: str,
        code: str = "STAFFING_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


# --- Lookup Errors ---


class EntityNotFoundError(StaffingError):
    """Raised when an entity ID does not exist."""

    def __init__(self, kind: str, entity_id: object) -> None:
        super().__init__(
            message=f"{kind.replace('_', ' ').capitalize()} not found: {entity_id}",
            code="NOT_FOUND",
            details={"kind": kind, "id": str(entity_id)},
        )
        self.kind = kind
        self.entity_id = entity_id


# --- Availability Errors ---


class NotAvailableError(StaffingError):
    """Raised when a resource is not free to be claimed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="NOT_AVAILABLE", details=details)


class WorkerUnavailableError(NotAvailableError):
    """Raised when a worker cannot be reserved because it is not Ready."""

    def __init__(self, worker_id: object, status: str | None = None) -> None:
        super().__init__(
            message="Worker is not available for reservation",
            details={"worker_id": str(worker_id), "status": status},
        )
        self.worker_id = worker_id


class NotProcessableError(StaffingError):
    """Raised when an entity is not in a state that allows the operation."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="NOT_PROCESSABLE", details=details)


class ExpiredError(StaffingError):
    """Raised when a deadline has passed. The expiry itself is committed."""

    commits_side_effects = True

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="EXPIRED", details=details)


# --- State Machine Errors ---


class InvalidStateTransitionError(StaffingError):
    """Raised when an attempted state transition is not allowed.

    Example: Active -> Draft (a contract never returns to Draft)
    """

    def __init__(self, current_state: str, attempted_state: str) -> None:
        super().__init__(
            message=f"Cannot transition from {current_state} to {attempted_state}",
            code="INVALID_TRANSITION",
            details={"from": str(current_state), "to": str(attempted_state)},
        )
        self.current_state = current_state
        self.attempted_state = attempted_state


# --- Uniqueness Errors ---


class AlreadyExistsError(StaffingError):
    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="ALREADY_EXISTS", details=details)


class ContractAlreadyExistsError(AlreadyExistsError):
    """Raised when a contract has already been created from a reservation."""

    def __init__(self, reservation_id: object, contract_id: object | None = None) -> None:
        details = {"reservation_id": str(reservation_id)}
        if contract_id is not None:
            details["contract_id"] = str(contract_id)
        super().__init__(
            message="A contract already exists for this reservation",
            details=details,
        )


class AlreadyInProgressError(AlreadyExistsError):
    """Raised when a contract already has an open payment or payment session."""

    def __init__(self, contract_id: object) -> None:
        super().__init__(
            message="A payment is already in progress for this contract",
            details={"contract_id": str(contract_id)},
        )


# --- OTP Errors ---


class InvalidCodeError(StaffingError):
    """Raised on an OTP mismatch. The attempt counter increment is committed."""

    commits_side_effects = True

    def __init__(self, attempts_remaining: int) -> None:
        super().__init__(
            message="Invalid verification code",
            code="INVALID_CODE",
            details={"attempts_remaining": attempts_remaining},
        )
        self.attempts_remaining = attempts_remaining


class TooManyAttemptsError(StaffingError):
    """Raised when the OTP attempt cap is exceeded. The session is cancelled."""

    commits_side_effects = True

    def __init__(self, session_id: object) -> None:
        super().__init__(
            message="Too many invalid verification attempts; session cancelled",
            code="TOO_MANY_ATTEMPTS",
            details={"session_id": str(session_id)},
        )


# --- Access Errors ---


class UnauthorizedError(StaffingError):
    """Raised when the acting party does not own the entity or lacks a role."""

    def __init__(self, message: str = "Not authorized for this operation") -> None:
        super().__init__(message=message, code="UNAUTHORIZED")


# --- Validation Errors ---


class DomainValidationError(StaffingError):
    """Raised when operation input breaks a business rule."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message=message, code="VALIDATION_ERROR", details=details)


class InvalidWindowError(DomainValidationError):
    """Raised when a requested date window is malformed."""


# --- Infrastructure Errors ---


class TransactionContentionError(StaffingError):
    """Raised when a transaction keeps losing to concurrent writers."""

    def __init__(self, attempts: int) -> None:
        super().__init__(
            message=f"Transaction aborted after {attempts} attempts due to contention",
            code="CONTENTION",
            details={"attempts": attempts},
        )
