"""Domain layer: pure business logic with zero framework dependencies."""

from roadside_escrow.domain.enums import (
    ActorRole,
    EventType,
    GatewayEvent,
    PaymentStatus,
    RequestStatus,
    ServiceType,
    TransactionType,
    TransferStatus,
)
from roadside_escrow.domain.exceptions import (
    AuthError,
    DuplicateEventError,
    ExternalServiceError,
    IllegalTransitionError,
    MissingQuoteError,
    NotFoundError,
    PreconditionError,
    RoadsideError,
    ValidationError,
)
from roadside_escrow.domain.state_machine import (
    Actor,
    RequestLifecycle,
    allowed_successors,
    check_transition,
)

__all__ = [
    "ActorRole",
    "EventType",
    "GatewayEvent",
    "PaymentStatus",
    "RequestStatus",
    "ServiceType",
    "TransactionType",
    "TransferStatus",
    "AuthError",
    "DuplicateEventError",
    "ExternalServiceError",
    "IllegalTransitionError",
    "MissingQuoteError",
    "NotFoundError",
    "PreconditionError",
    "RoadsideError",
    "ValidationError",
    "Actor",
    "RequestLifecycle",
    "allowed_successors",
    "check_transition",
]
