"""Domain layer - pure business logic with zero framework dependencies."""

from staffing_broker.domain.clock import Clock, SystemClock
from staffing_broker.domain.collaborators import (
    SYSTEM_ACTOR,
    Actor,
    EntityRef,
    Notification,
    Notifier,
    OtpDelivery,
    OtpSender,
)
from staffing_broker.domain.enums import (
    ContractStatus,
    EntityKind,
    EventType,
    ReservationState,
    WorkerStatus,
)
from staffing_broker.domain.exceptions import (
    EntityNotFoundError,
    InvalidStateTransitionError,
    StaffingError,
)
from staffing_broker.domain.state_machine import (
    ContractStateMachine,
    ReservationStateMachine,
    WorkerStateMachine,
    fire_transition,
)

__all__ = [
    "Clock",
    "SystemClock",
    "SYSTEM_ACTOR",
    "Actor",
    "EntityRef",
    "Notification",
    "Notifier",
    "OtpDelivery",
    "OtpSender",
    "ContractStatus",
    "EntityKind",
    "EventType",
    "ReservationState",
    "WorkerStatus",
    "EntityNotFoundError",
    "InvalidStateTransitionError",
    "StaffingError",
    "ContractStateMachine",
    "ReservationStateMachine",
    "WorkerStateMachine",
    "fire_transition",
]
