"""Pydantic schemas for service requests, matching and live tracking.

Separate from the ORM models so the API shape can change without a
migration. JSON keys are camelCase (see ApiModel).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import Field

from roadside_escrow.domain.enums import ServiceType
from roadside_escrow.schemas.common import ApiModel

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateServiceRequest(ApiModel):
    """Request body for a customer opening a new service request."""

    service_type: ServiceType = Field(
        ...,
        description="Kind of roadside help needed",
        examples=["tire_change"],
    )
    customer_lat: float = Field(..., ge=-90, le=90, examples=[5.6037])
    customer_lng: float = Field(..., ge=-180, le=180, examples=[-0.187])
    description: str | None = Field(default=None, max_length=2000)
    location: str | None = Field(
        default=None,
        max_length=255,
        description="Human-readable address or landmark",
        examples=["Spintex Road, near the Shell station"],
    )


class AssignProviderRequest(ApiModel):
    provider_id: uuid.UUID = Field(..., description="Provider chosen from the candidate list")


class SubmitQuoteRequest(ApiModel):
    """Request body for a provider quoting a price."""

    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Quoted price in major currency units (GHS)",
        examples=[150.00],
    )
    description: str | None = Field(default=None, max_length=2000)


class ConfirmCompletionRequest(ApiModel):
    rating: int | None = Field(default=None, ge=1, le=5)
    review: str | None = Field(default=None, max_length=2000)


class CancelRequest(ApiModel):
    reason: str | None = Field(default=None, max_length=500)


class PositionSampleRequest(ApiModel):
    """A device position. `timestamp` defaults to the server clock."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    timestamp: datetime | None = None


class ActivateCustomerTrackingRequest(ApiModel):
    request_id: uuid.UUID | None = Field(
        default=None,
        description="Bind samples to this request's customer coordinates as well",
    )


class AvailabilityRequest(ApiModel):
    """Request body for a provider going online or offline."""

    is_available: bool
    lat: float | None = Field(default=None, ge=-90, le=90)
    lng: float | None = Field(default=None, ge=-180, le=180)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ServiceRequestResponse(ApiModel):
    """Response schema for a service request."""

    id: uuid.UUID
    tracking_code: str
    service_type: str
    description: str | None
    location: str | None
    status: str
    payment_status: str
    customer_id: uuid.UUID
    provider_id: uuid.UUID | None
    customer_lat: float | None
    customer_lng: float | None
    provider_lat: float | None
    provider_lng: float | None
    provider_location_at: datetime | None
    quoted_amount: Decimal | None
    quote_description: str | None
    quoted_at: datetime | None
    quote_approved_at: datetime | None
    amount: Decimal | None
    paid_at: datetime | None
    completed_at: datetime | None
    customer_confirmed_at: datetime | None
    created_at: datetime
    updated_at: datetime


class TrackingView(ApiModel):
    """Public status view by tracking code (no participant ids)."""

    tracking_code: str
    service_type: str
    status: str
    payment_status: str
    provider_lat: float | None
    provider_lng: float | None
    provider_location_at: datetime | None
    quoted_amount: Decimal | None
    updated_at: datetime


class RequestEventResponse(ApiModel):
    """Response schema for an audit event."""

    id: uuid.UUID
    service_request_id: uuid.UUID
    event_type: str
    old_status: str | None
    new_status: str
    actor_role: str
    actor_id: str | None
    metadata: dict | None = Field(
        default=None, validation_alias="metadata_json", serialization_alias="metadata"
    )
    created_at: datetime


class CandidateResponse(ApiModel):
    provider_id: uuid.UUID
    full_name: str
    distance_km: float
    avg_rating: float
    total_reviews: int
    phone_number: str | None
    avatar_url: str | None
    years_experience: int | None


class MatchResponse(ApiModel):
    """Ranked candidates, or the single closest provider when `fallback` is set."""

    mode: str = Field(..., description="ranked | fallback | none")
    fallback: bool
    candidates: list[CandidateResponse]


class AutoAssignResponse(ApiModel):
    match: MatchResponse
    request: ServiceRequestResponse


class EtaResponse(ApiModel):
    request_id: uuid.UUID
    active: bool
    distance_km: float | None = None
    speed_kmh: float | None = None
    eta_minutes: float | None = None
    samples_in_window: int = 0


class TrackingStateResponse(ApiModel):
    subject_id: uuid.UUID
    role: str
    active: bool


class AvailabilityResponse(ApiModel):
    provider_id: uuid.UUID
    is_available: bool
    current_lat: float | None
    current_lng: float | None
    location_updated_at: datetime | None
