"""Pydantic API schemas."""

from roadside_escrow.schemas.common import (
    ApiModel,
    Envelope,
    ErrorBody,
    ErrorEnvelope,
    HealthResponse,
    ok,
)
from roadside_escrow.schemas.payments import (
    BankResponse,
    InitializePaymentRequest,
    InitializePaymentResponse,
    PayoutAccountRequest,
    PayoutAccountResponse,
    TransferRequest,
    TransferResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
    WebhookAck,
)
from roadside_escrow.schemas.requests import (
    ActivateCustomerTrackingRequest,
    AssignProviderRequest,
    AutoAssignResponse,
    AvailabilityRequest,
    AvailabilityResponse,
    CancelRequest,
    CandidateResponse,
    ConfirmCompletionRequest,
    CreateServiceRequest,
    EtaResponse,
    MatchResponse,
    PositionSampleRequest,
    RequestEventResponse,
    ServiceRequestResponse,
    SubmitQuoteRequest,
    TrackingStateResponse,
    TrackingView,
)

__all__ = [
    "ActivateCustomerTrackingRequest",
    "ApiModel",
    "AssignProviderRequest",
    "AutoAssignResponse",
    "AvailabilityRequest",
    "AvailabilityResponse",
    "BankResponse",
    "CancelRequest",
    "CandidateResponse",
    "ConfirmCompletionRequest",
    "CreateServiceRequest",
    "Envelope",
    "ErrorBody",
    "ErrorEnvelope",
    "EtaResponse",
    "HealthResponse",
    "InitializePaymentRequest",
    "InitializePaymentResponse",
    "MatchResponse",
    "PayoutAccountRequest",
    "PayoutAccountResponse",
    "PositionSampleRequest",
    "RequestEventResponse",
    "ServiceRequestResponse",
    "SubmitQuoteRequest",
    "TrackingStateResponse",
    "TrackingView",
    "TransferRequest",
    "TransferResponse",
    "VerifyPaymentRequest",
    "VerifyPaymentResponse",
    "WebhookAck",
    "ok",
]
