"""Live tracking REST API routes.

Devices push samples here; the LiveTracker buffers them and persists the
latest one on its own cadence, so these handlers never touch the database.

Routes:
    POST   /api/v1/tracking/requests/{id}/provider      - Provider sample
    GET    /api/v1/tracking/requests/{id}/eta           - Current ETA
    POST   /api/v1/tracking/customers/{id}              - Customer sample
    POST   /api/v1/tracking/customers/{id}/activate     - Start customer loop
    POST   /api/v1/tracking/customers/{id}/deactivate   - Stop customer loop
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends

from roadside_escrow.api.deps import get_actor, get_tracker
from roadside_escrow.domain.enums import ActorRole
from roadside_escrow.domain.exceptions import AuthError
from roadside_escrow.domain.state_machine import Actor
from roadside_escrow.schemas.common import Envelope, ok
from roadside_escrow.schemas.requests import (
    ActivateCustomerTrackingRequest,
    EtaResponse,
    PositionSampleRequest,
    TrackingStateResponse,
)
from roadside_escrow.services.tracking_service import LiveTracker

if TYPE_CHECKING:
    from roadside_escrow.domain.eta import EtaEstimate

router = APIRouter(prefix="/api/v1/tracking", tags=["Tracking"])


def _eta_response(request_id: uuid.UUID, active: bool, eta: EtaEstimate | None) -> EtaResponse:
    if eta is None:
        return EtaResponse(request_id=request_id, active=active)
    return EtaResponse(
        request_id=request_id,
        active=active,
        distance_km=round(eta.distance_km, 3),
        speed_kmh=round(eta.speed_kmh, 1),
        eta_minutes=round(eta.eta_minutes, 1),
        samples_in_window=eta.samples_in_window,
    )


def _require_self(actor: Actor, customer_id: uuid.UUID) -> None:
    if actor.role is ActorRole.ADMIN:
        return
    if actor.role is not ActorRole.CUSTOMER or actor.id != customer_id:
        raise AuthError("Customers can only stream their own position")


@router.post(
    "/requests/{request_id}/provider",
    response_model=Envelope[EtaResponse],
    summary="Push a provider position sample",
)
async def provider_sample(
    request_id: uuid.UUID,
    body: PositionSampleRequest,
    actor: Actor = Depends(get_actor),
    tracker: LiveTracker = Depends(get_tracker),
) -> Envelope[EtaResponse]:
    if actor.role is not ActorRole.PROVIDER:
        raise AuthError("Only the provider streams request positions")
    eta = tracker.offer_provider_sample(request_id, body.lat, body.lng, body.timestamp)
    return ok(_eta_response(request_id, True, eta))


@router.get(
    "/requests/{request_id}/eta",
    response_model=Envelope[EtaResponse],
    summary="Current ETA to the customer",
)
async def get_eta(
    request_id: uuid.UUID,
    tracker: LiveTracker = Depends(get_tracker),
) -> Envelope[EtaResponse]:
    active = tracker.is_active(ActorRole.PROVIDER, request_id)
    return ok(_eta_response(request_id, active, tracker.eta(request_id)))


@router.post(
    "/customers/{customer_id}",
    response_model=Envelope[TrackingStateResponse],
    summary="Push a customer position sample",
)
async def customer_sample(
    customer_id: uuid.UUID,
    body: PositionSampleRequest,
    actor: Actor = Depends(get_actor),
    tracker: LiveTracker = Depends(get_tracker),
) -> Envelope[TrackingStateResponse]:
    _require_self(actor, customer_id)
    tracker.offer_customer_sample(customer_id, body.lat, body.lng, body.timestamp)
    return ok(TrackingStateResponse(subject_id=customer_id, role="customer", active=True))


@router.post(
    "/customers/{customer_id}/activate",
    response_model=Envelope[TrackingStateResponse],
    summary="Start customer tracking while a request is being created",
)
async def activate_customer(
    customer_id: uuid.UUID,
    body: ActivateCustomerTrackingRequest | None = None,
    actor: Actor = Depends(get_actor),
    tracker: LiveTracker = Depends(get_tracker),
) -> Envelope[TrackingStateResponse]:
    _require_self(actor, customer_id)
    await tracker.activate_customer(customer_id, request_id=body.request_id if body else None)
    return ok(TrackingStateResponse(subject_id=customer_id, role="customer", active=True))


@router.post(
    "/customers/{customer_id}/deactivate",
    response_model=Envelope[TrackingStateResponse],
    summary="Stop customer tracking",
)
async def deactivate_customer(
    customer_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    tracker: LiveTracker = Depends(get_tracker),
) -> Envelope[TrackingStateResponse]:
    _require_self(actor, customer_id)
    await tracker.deactivate(ActorRole.CUSTOMER, customer_id)
    return ok(TrackingStateResponse(subject_id=customer_id, role="customer", active=False))
