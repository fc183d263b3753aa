"""Transition-to-notification mapping.

The recipient of a notification depends on who drove the transition, so the
table is keyed by the full (old status, new status, driver) triple. Triples
that are not in the table produce no notification.
"""

from __future__ import annotations

from dataclasses import dataclass

from roadside_escrow.domain.enums import ActorRole, RequestStatus


@dataclass(frozen=True)
class Notification:
    recipient: ActorRole  # CUSTOMER or PROVIDER
    title: str
    body: str


_C = ActorRole.CUSTOMER
_P = ActorRole.PROVIDER
_S = RequestStatus

_NEW_JOB = Notification(_P, "New Job Assigned", "You have been assigned a new service request.")
_PROVIDER_ASSIGNED = Notification(
    _C, "Provider Assigned", "A provider has been assigned to your request."
)
_CANCELLED_FOR_CUSTOMER = Notification(
    _C, "Request Cancelled", "Your service request was cancelled."
)
_CANCELLED_FOR_PROVIDER = Notification(
    _P, "Job Cancelled", "A service request assigned to you was cancelled."
)

Key = tuple[RequestStatus, RequestStatus, ActorRole]

NOTIFICATION_TABLE: dict[Key, tuple[Notification, ...]] = {
    # A customer choosing a provider already knows; only the provider is told.
    (_S.PENDING, _S.ASSIGNED, ActorRole.CUSTOMER): (_NEW_JOB,),
    (_S.PENDING, _S.ASSIGNED, ActorRole.SYSTEM): (_NEW_JOB, _PROVIDER_ASSIGNED),
    (_S.PENDING, _S.ASSIGNED, ActorRole.ADMIN): (_NEW_JOB, _PROVIDER_ASSIGNED),
    (_S.ASSIGNED, _S.QUOTED, ActorRole.PROVIDER): (
        Notification(_C, "Quote Received", "Your provider has submitted a quote. Check it now."),
    ),
    (_S.QUOTED, _S.ACCEPTED, ActorRole.CUSTOMER): (
        Notification(_P, "Quote Accepted", "The customer accepted your quote."),
    ),
    (_S.AWAITING_PAYMENT, _S.PAID, ActorRole.SYSTEM): (
        Notification(_P, "Payment Received", "Payment is held in escrow. You can head out."),
        Notification(_C, "Payment Confirmed", "Your payment was received and is held securely."),
    ),
    (_S.PAID, _S.EN_ROUTE, ActorRole.PROVIDER): (
        Notification(_C, "Provider En Route", "Your provider is on the way to your location."),
    ),
    (_S.EN_ROUTE, _S.IN_PROGRESS, ActorRole.PROVIDER): (
        Notification(_C, "Service Started", "The provider has arrived and started working."),
    ),
    (_S.IN_PROGRESS, _S.COMPLETED, ActorRole.PROVIDER): (
        Notification(
            _C, "Service Completed", "Your service is complete. Please confirm to release payment."
        ),
    ),
    (_S.IN_PROGRESS, _S.COMPLETED, ActorRole.CUSTOMER): (
        Notification(_P, "Job Confirmed", "The customer confirmed the job is complete."),
    ),
}

for _status in RequestStatus:
    if _status.is_terminal:
        continue
    NOTIFICATION_TABLE[(_status, _S.CANCELLED, ActorRole.CUSTOMER)] = (_CANCELLED_FOR_PROVIDER,)
    NOTIFICATION_TABLE[(_status, _S.CANCELLED, ActorRole.PROVIDER)] = (_CANCELLED_FOR_CUSTOMER,)
    NOTIFICATION_TABLE[(_status, _S.CANCELLED, ActorRole.ADMIN)] = (
        _CANCELLED_FOR_CUSTOMER,
        _CANCELLED_FOR_PROVIDER,
    )

# Nobody to tell when no provider was ever assigned.
NOTIFICATION_TABLE.pop((_S.PENDING, _S.CANCELLED, ActorRole.CUSTOMER))
NOTIFICATION_TABLE[(_S.PENDING, _S.CANCELLED, ActorRole.ADMIN)] = (_CANCELLED_FOR_CUSTOMER,)


def resolve_notifications(
    old: RequestStatus, new: RequestStatus, driver: ActorRole
) -> tuple[Notification, ...]:
    """Notifications for a transition; empty for unmapped triples."""
    return NOTIFICATION_TABLE.get((old, new, driver), ())
