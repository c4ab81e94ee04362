"""Interfaces to collaborators outside the allocation core.

Notification delivery, OTP delivery and identity live in other systems. The
core depends only on these protocols; infrastructure/notifications.py holds
the default implementations.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Protocol

from staffing_broker.domain.enums import EntityKind


@dataclass(frozen=True)
class EntityRef:
    """Reference to any domain entity, tagged with its kind."""

    kind: EntityKind
    id: uuid.UUID

    def __str__(self) -> str:
        return f"{self.kind}:{self.id}"


@dataclass(frozen=True)
class Actor:
    """The party performing an operation, as resolved by the gateway."""

    id: str
    roles: frozenset[str] = field(default_factory=frozenset)

    def has_any_role(self, roles: list[str] | frozenset[str]) -> bool:
        return bool(self.roles.intersection(roles))


SYSTEM_ACTOR = Actor(id="system", roles=frozenset({"system"}))


@dataclass(frozen=True)
class Notification:
    user_id: str
    event_type: str
    subject: EntityRef
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class OtpDelivery:
    phone: str
    code: str
    purpose: str
    subject: EntityRef


class Notifier(Protocol):
    async def notify(self, notification: Notification) -> None: ...


class OtpSender(Protocol):
    async def send_otp(self, delivery: OtpDelivery) -> None: ...
