"""Service request REST API routes.

Every status change goes through LifecycleService; these handlers only parse
input, resolve the acting identity and wrap results in the envelope.

Routes:
    POST   /api/v1/requests                    - Create a request (customer)
    GET    /api/v1/requests/{id}               - Get request details
    GET    /api/v1/requests/{id}/events        - Get audit trail
    GET    /api/v1/requests/{id}/candidates    - Nearby providers or fallback
    POST   /api/v1/requests/{id}/auto-assign   - System assigns the best provider
    POST   /api/v1/requests/{id}/assign        - Customer picks a provider
    POST   /api/v1/requests/{id}/quote         - Provider quotes
    POST   /api/v1/requests/{id}/accept        - Customer accepts the quote
    POST   /api/v1/requests/{id}/depart        - Provider heads out
    POST   /api/v1/requests/{id}/start         - Provider starts work on site
    POST   /api/v1/requests/{id}/complete      - Provider marks the job done
    POST   /api/v1/requests/{id}/confirm       - Customer confirms (+ rating)
    POST   /api/v1/requests/{id}/cancel        - Cancel
    GET    /api/v1/track/{tracking_code}       - Public status lookup
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Query

from roadside_escrow.api.deps import (
    get_actor,
    get_lifecycle_service,
    get_matching_service,
)
from roadside_escrow.domain.enums import ActorRole
from roadside_escrow.domain.exceptions import AuthError
from roadside_escrow.domain.geo import MatchMode, MatchResult
from roadside_escrow.domain.state_machine import Actor
from roadside_escrow.logging_config import get_logger
from roadside_escrow.schemas.common import Envelope, ok
from roadside_escrow.schemas.requests import (
    AssignProviderRequest,
    AutoAssignResponse,
    CancelRequest,
    CandidateResponse,
    ConfirmCompletionRequest,
    CreateServiceRequest,
    MatchResponse,
    RequestEventResponse,
    ServiceRequestResponse,
    SubmitQuoteRequest,
    TrackingView,
)
from roadside_escrow.services.lifecycle_service import LifecycleService
from roadside_escrow.services.matching_service import MatchingService

if TYPE_CHECKING:
    from roadside_escrow.infrastructure.database.orm_models import ServiceRequest

router = APIRouter(prefix="/api/v1", tags=["Requests"])
logger = get_logger(__name__)

RequestEnvelope = Envelope[ServiceRequestResponse]


def match_response(result: MatchResult) -> MatchResponse:
    return MatchResponse(
        mode=result.mode.value,
        fallback=result.mode is MatchMode.FALLBACK,
        candidates=[
            CandidateResponse(
                provider_id=c.provider_id,
                full_name=c.snapshot.full_name,
                distance_km=round(c.distance_km, 3),
                avg_rating=c.snapshot.avg_rating,
                total_reviews=c.snapshot.total_reviews,
                phone_number=c.snapshot.phone_number,
                avatar_url=c.snapshot.avatar_url,
                years_experience=c.snapshot.years_experience,
            )
            for c in result.candidates
        ],
    )


def _envelope(request: ServiceRequest) -> RequestEnvelope:
    return ok(ServiceRequestResponse.model_validate(request))


# ---------------------------------------------------------------------------
# Create / Read
# ---------------------------------------------------------------------------


@router.post(
    "/requests",
    response_model=RequestEnvelope,
    status_code=201,
    summary="Create a service request",
)
async def create_request(
    body: CreateServiceRequest,
    actor: Actor = Depends(get_actor),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> RequestEnvelope:
    if actor.role != ActorRole.CUSTOMER:
        raise AuthError("Only customers can open service requests")
    request = await svc.create_request(
        customer_id=actor.id,  # type: ignore[arg-type]
        service_type=body.service_type,
        customer_lat=body.customer_lat,
        customer_lng=body.customer_lng,
        description=body.description,
        location=body.location,
    )
    return _envelope(request)


@router.get(
    "/requests/{request_id}",
    response_model=RequestEnvelope,
    summary="Get request details",
)
async def get_request(
    request_id: uuid.UUID,
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> RequestEnvelope:
    return _envelope(await svc.get_request(request_id))


@router.get(
    "/requests/{request_id}/events",
    response_model=Envelope[list[RequestEventResponse]],
    summary="Get request audit trail",
)
async def get_request_events(
    request_id: uuid.UUID,
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> Envelope[list[RequestEventResponse]]:
    """Return all audit events for a request, oldest first."""
    events = await svc.get_events(request_id)
    return ok([RequestEventResponse.model_validate(e) for e in events])


@router.get(
    "/track/{tracking_code}",
    response_model=Envelope[TrackingView],
    summary="Public status lookup by tracking code",
)
async def track(
    tracking_code: str,
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> Envelope[TrackingView]:
    request = await svc.get_by_tracking_code(tracking_code)
    return ok(TrackingView.model_validate(request))


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------


@router.get(
    "/requests/{request_id}/candidates",
    response_model=Envelope[MatchResponse],
    summary="Nearby providers for a request",
)
async def get_candidates(
    request_id: uuid.UUID,
    radius_km: float | None = Query(default=None, gt=0, le=100),
    matching: MatchingService = Depends(get_matching_service),
) -> Envelope[MatchResponse]:
    """Ranked providers within the radius, or the single closest one as a fallback."""
    result = await matching.candidates_for_request(request_id, radius_km=radius_km)
    return ok(match_response(result))


@router.post(
    "/requests/{request_id}/auto-assign",
    response_model=Envelope[AutoAssignResponse],
    summary="Assign the best available provider",
)
async def auto_assign(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    matching: MatchingService = Depends(get_matching_service),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> Envelope[AutoAssignResponse]:
    request = await svc.get_request(request_id)
    svc.ensure_identity(actor, request)
    result, request = await matching.auto_assign(request_id)
    return ok(
        AutoAssignResponse(
            match=match_response(result),
            request=ServiceRequestResponse.model_validate(request),
        )
    )


@router.post(
    "/requests/{request_id}/assign",
    response_model=RequestEnvelope,
    summary="Assign a chosen provider",
)
async def assign_provider(
    request_id: uuid.UUID,
    body: AssignProviderRequest,
    actor: Actor = Depends(get_actor),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> RequestEnvelope:
    return _envelope(await svc.assign_provider(request_id, body.provider_id, actor))


# ---------------------------------------------------------------------------
# Quote
# ---------------------------------------------------------------------------


@router.post("/requests/{request_id}/quote", response_model=RequestEnvelope, summary="Submit quote")
async def submit_quote(
    request_id: uuid.UUID,
    body: SubmitQuoteRequest,
    actor: Actor = Depends(get_actor),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> RequestEnvelope:
    request = await svc.submit_quote(request_id, actor, body.amount, body.description)
    return _envelope(request)


@router.post("/requests/{request_id}/accept", response_model=RequestEnvelope, summary="Accept quote")
async def accept_quote(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> RequestEnvelope:
    return _envelope(await svc.accept_quote(request_id, actor))


# ---------------------------------------------------------------------------
# Job execution
# ---------------------------------------------------------------------------


@router.post("/requests/{request_id}/depart", response_model=RequestEnvelope, summary="Head out")
async def depart(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> RequestEnvelope:
    return _envelope(await svc.depart(request_id, actor))


@router.post("/requests/{request_id}/start", response_model=RequestEnvelope, summary="Start work")
async def start_work(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> RequestEnvelope:
    return _envelope(await svc.start_work(request_id, actor))


@router.post(
    "/requests/{request_id}/complete", response_model=RequestEnvelope, summary="Complete job"
)
async def complete(
    request_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> RequestEnvelope:
    return _envelope(await svc.complete(request_id, actor))


@router.post(
    "/requests/{request_id}/confirm",
    response_model=RequestEnvelope,
    summary="Customer confirms completion",
)
async def confirm(
    request_id: uuid.UUID,
    body: ConfirmCompletionRequest | None = None,
    actor: Actor = Depends(get_actor),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> RequestEnvelope:
    """Confirming is the escrow release condition for the provider payout."""
    body = body or ConfirmCompletionRequest()
    request = await svc.confirm_completion(request_id, actor, body.rating, body.review)
    return _envelope(request)


@router.post("/requests/{request_id}/cancel", response_model=RequestEnvelope, summary="Cancel")
async def cancel(
    request_id: uuid.UUID,
    body: CancelRequest | None = None,
    actor: Actor = Depends(get_actor),
    svc: LifecycleService = Depends(get_lifecycle_service),
) -> RequestEnvelope:
    reason = body.reason if body else None
    return _envelope(await svc.cancel(request_id, actor, reason))
