"""Builders shared by the test modules (non-fixture helpers)."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from roadside_escrow.domain.enums import ProfileRole, RequestStatus, ServiceType
from roadside_escrow.infrastructure.database.orm_models import Profile

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from roadside_escrow.domain.events import TransitionEvent
    from roadside_escrow.domain.state_machine import Actor
    from roadside_escrow.infrastructure.database.orm_models import ServiceRequest
    from roadside_escrow.infrastructure.paystack_sandbox import PaystackSandbox
    from roadside_escrow.services.lifecycle_service import LifecycleService
    from roadside_escrow.services.settlement_service import SettlementService

CUSTOMER_POINT = (5.60, -0.19)
TEST_SECRET = "sk_test_secret"


def north_of(lat: float, lng: float, km: float) -> tuple[float, float]:
    """A point `km` due north of (lat, lng) on the haversine sphere."""
    return lat + math.degrees(km / 6371.0), lng


@dataclass
class RecordingObserver:
    """Collects every TransitionEvent it is given."""

    events: list[TransitionEvent] = field(default_factory=list)

    async def on_transition(self, event: TransitionEvent) -> None:
        self.events.append(event)


async def make_profile(
    session: AsyncSession,
    role: ProfileRole = ProfileRole.CUSTOMER,
    full_name: str = "Test User",
    position: tuple[float, float] | None = None,
    located_at: datetime | None = None,
    **fields: Any,
) -> Profile:
    profile = Profile(full_name=full_name, role=role.value, **fields)
    if position is not None:
        profile.is_available = True
        profile.current_lat, profile.current_lng = position
        profile.location_updated_at = located_at or datetime.now(UTC)
    session.add(profile)
    await session.flush()
    return profile


async def advance_to(
    lifecycle: LifecycleService,
    customer_actor: Actor,
    provider_actor: Actor,
    target: RequestStatus,
    quote: Decimal = Decimal("100.00"),
) -> ServiceRequest:
    """Create a request and drive it to `target` (up to `accepted`)."""
    request = await lifecycle.create_request(
        customer_actor.id, ServiceType.TIRE_CHANGE, *CUSTOMER_POINT  # type: ignore[arg-type]
    )
    if target == RequestStatus.PENDING:
        return request

    request = await lifecycle.assign_provider(
        request.id, provider_actor.id, customer_actor  # type: ignore[arg-type]
    )
    if target == RequestStatus.ASSIGNED:
        return request

    request = await lifecycle.submit_quote(request.id, provider_actor, quote)
    if target == RequestStatus.QUOTED:
        return request

    return await lifecycle.accept_quote(request.id, customer_actor)


async def paid_request(
    lifecycle: LifecycleService,
    settlement: SettlementService,
    sandbox: PaystackSandbox,
    customer_actor: Actor,
    provider_actor: Actor,
    quote: Decimal = Decimal("100.00"),
) -> ServiceRequest:
    """An accepted request whose charge webhook has been processed."""
    request = await advance_to(
        lifecycle, customer_actor, provider_actor, RequestStatus.ACCEPTED, quote
    )
    charge = await settlement.initialize_payment(request.id, "ama@example.com")
    sandbox.pay(charge.reference)
    body = sandbox.charge_event(charge.reference)
    await settlement.handle_webhook(body, sandbox.sign(body))
    return await lifecycle.get_request(request.id)


async def confirmed_request(
    lifecycle: LifecycleService,
    settlement: SettlementService,
    sandbox: PaystackSandbox,
    customer_actor: Actor,
    provider_actor: Actor,
    quote: Decimal = Decimal("100.00"),
) -> ServiceRequest:
    """A paid request the provider finished and the customer confirmed."""
    request = await paid_request(
        lifecycle, settlement, sandbox, customer_actor, provider_actor, quote
    )
    await lifecycle.depart(request.id, provider_actor)
    await lifecycle.start_work(request.id, provider_actor)
    return await lifecycle.confirm_completion(request.id, customer_actor, rating=5)
