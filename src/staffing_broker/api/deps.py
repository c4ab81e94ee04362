"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the transaction
runner, the clock, configuration and the acting party.
"""

from __future__ import annotations

from fastapi import Header, Request

from staffing_broker.config import Settings
from staffing_broker.domain.clock import Clock
from staffing_broker.domain.collaborators import Actor
from staffing_broker.domain.exceptions import UnauthorizedError
from staffing_broker.infrastructure.database.transactions import TransactionRunner


def get_runner(request: Request) -> TransactionRunner:
    """Provide the app-wide TransactionRunner built in the lifespan."""
    return request.app.state.runner


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_app_settings(request: Request) -> Settings:
    """Provide the application settings the app was created with."""
    return request.app.state.settings


def get_actor(
    x_actor_id: str | None = Header(default=None),
    x_actor_roles: str = Header(default=""),
) -> Actor:
    """Resolve the acting party from gateway headers.

    Authentication happens upstream; the gateway forwards the caller's id
    and a comma-separated role list.
    """
    if not x_actor_id or not x_actor_id.strip():
        raise UnauthorizedError("Missing X-Actor-Id header")
    roles = frozenset(r.strip() for r in x_actor_roles.split(",") if r.strip())
    return Actor(id=x_actor_id.strip(), roles=roles)


def require_back_office(actor: Actor, settings: Settings) -> None:
    """Refuse the operation unless the actor holds a back-office role."""
    if not actor.has_any_role(settings.back_office_roles):
        raise UnauthorizedError("This operation requires a back-office role")
