"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
services bound to the request session, the acting identity, and the
process-wide collaborators held on app.state (gateway client, push sender,
live tracker).
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from fastapi import Depends, Header, Request

from roadside_escrow.config import Settings, get_settings
from roadside_escrow.domain.enums import ActorRole
from roadside_escrow.domain.exceptions import AuthError
from roadside_escrow.domain.state_machine import Actor
from roadside_escrow.infrastructure.database.engine import get_async_session
from roadside_escrow.services.lifecycle_service import LifecycleService
from roadside_escrow.services.matching_service import MatchingService
from roadside_escrow.services.settlement_service import SettlementService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession

    from roadside_escrow.services.notification_service import NotificationDispatcher
    from roadside_escrow.services.tracking_service import LiveTracker


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_actor(
    x_actor_role: str | None = Header(default=None),
    x_actor_id: str | None = Header(default=None),
) -> Actor:
    """Acting identity, as asserted by the upstream authentication gateway.

    SYSTEM cannot be claimed over HTTP.
    """
    if not x_actor_role:
        raise AuthError("Missing X-Actor-Role header")
    try:
        role = ActorRole(x_actor_role.lower())
    except ValueError as exc:
        raise AuthError(f"Unknown actor role '{x_actor_role}'") from exc
    if role is ActorRole.SYSTEM:
        raise AuthError("The system role cannot be asserted by a client")

    actor_id = None
    if x_actor_id:
        try:
            actor_id = uuid.UUID(x_actor_id)
        except ValueError as exc:
            raise AuthError("X-Actor-Id must be a UUID") from exc
    if actor_id is None and role is not ActorRole.ADMIN:
        raise AuthError("Missing X-Actor-Id header")
    return Actor(role=role, id=actor_id)


def get_tracker(request: Request) -> LiveTracker:
    return request.app.state.tracker


def get_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.dispatcher


def get_lifecycle_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> LifecycleService:
    """Lifecycle service with the app's transition observers attached."""
    return LifecycleService(session, observers=getattr(request.app.state, "observers", ()))


def get_matching_service(
    session: AsyncSession = Depends(get_db_session),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> MatchingService:
    return MatchingService(session, lifecycle)


def get_settlement_service(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    lifecycle: LifecycleService = Depends(get_lifecycle_service),
) -> SettlementService:
    return SettlementService(session, request.app.state.gateway, lifecycle)
