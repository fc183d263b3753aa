"""Provider availability routes.

Routes:
    POST   /api/v1/providers/{id}/availability  - Go online / offline
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from roadside_escrow.api.deps import get_actor, get_matching_service
from roadside_escrow.domain.enums import ActorRole
from roadside_escrow.domain.exceptions import AuthError
from roadside_escrow.domain.state_machine import Actor
from roadside_escrow.schemas.common import Envelope, ok
from roadside_escrow.schemas.requests import AvailabilityRequest, AvailabilityResponse
from roadside_escrow.services.matching_service import MatchingService

router = APIRouter(prefix="/api/v1/providers", tags=["Providers"])


@router.post(
    "/{provider_id}/availability",
    response_model=Envelope[AvailabilityResponse],
    summary="Go online with a fresh position, or offline",
)
async def set_availability(
    provider_id: uuid.UUID,
    body: AvailabilityRequest,
    actor: Actor = Depends(get_actor),
    matching: MatchingService = Depends(get_matching_service),
) -> Envelope[AvailabilityResponse]:
    if actor.role is not ActorRole.ADMIN and actor.id != provider_id:
        raise AuthError("Providers can only change their own availability")
    provider = await matching.set_availability(provider_id, body.is_available, body.lat, body.lng)
    return ok(
        AvailabilityResponse(
            provider_id=provider.id,
            is_available=provider.is_available,
            current_lat=provider.current_lat,
            current_lng=provider.current_lng,
            location_updated_at=provider.location_updated_at,
        )
    )
