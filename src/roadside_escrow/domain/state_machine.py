"""Service Request Lifecycle Guard.

Uses python-statemachine to enforce legal status transitions at the domain
level, plus an explicit edge table that says which actor roles may drive each
edge. No matter what the API or the settlement engine does, an illegal edge
(e.g. pending -> paid) or an unauthorised actor raises IllegalTransitionError.

Transition table:
    pending           -> assigned          (assign)           customer, system, admin
    assigned          -> quoted            (submit_quote)     provider
    quoted            -> accepted          (accept_quote)     customer
    accepted          -> awaiting_payment  (request_payment)  system
    awaiting_payment  -> paid              (confirm_payment)  system
    paid              -> en_route          (depart)           provider
    en_route          -> in_progress       (arrive)           provider
    in_progress       -> completed         (complete_job)     provider, customer
    <non-terminal>    -> cancelled         (cancel_request)   customer, provider, admin
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from roadside_escrow.domain.enums import ActorRole, RequestStatus
from roadside_escrow.domain.exceptions import AuthError, IllegalTransitionError


class RequestLifecycle(StateMachine):
    """State machine that guards service request status transitions.

    Usage:
        sm = RequestLifecycle(current_status="quoted")
        sm.accept_quote()   # transitions to accepted
        sm.status           # "accepted"
    """

    # --- States ---
    pending = State("Pending", value="pending", initial=True)
    assigned = State("Assigned", value="assigned")
    quoted = State("Quoted", value="quoted")
    accepted = State("Accepted", value="accepted")
    awaiting_payment = State("Awaiting payment", value="awaiting_payment")
    paid = State("Paid", value="paid")
    en_route = State("En route", value="en_route")
    in_progress = State("In progress", value="in_progress")
    completed = State("Completed", value="completed", final=True)
    cancelled = State("Cancelled", value="cancelled", final=True)

    # --- Events / Transitions ---
    assign = pending.to(assigned)
    submit_quote = assigned.to(quoted)
    accept_quote = quoted.to(accepted)

    # Settlement
    request_payment = accepted.to(awaiting_payment)
    confirm_payment = awaiting_payment.to(paid)

    # Job execution
    depart = paid.to(en_route)
    arrive = en_route.to(in_progress)
    complete_job = in_progress.to(completed)

    cancel_request = (
        pending.to(cancelled)
        | assigned.to(cancelled)
        | quoted.to(cancelled)
        | accepted.to(cancelled)
        | awaiting_payment.to(cancelled)
        | paid.to(cancelled)
        | en_route.to(cancelled)
        | in_progress.to(cancelled)
    )

    def __init__(self, current_status: str = "pending") -> None:
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(f"Unknown status '{current_status}'. Valid states: {valid}")
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value (matches RequestStatus)."""
        return str(self.current_state.value)


@dataclass(frozen=True)
class Edge:
    event: str
    roles: frozenset[ActorRole]


@dataclass(frozen=True)
class Actor:
    """The identity driving an operation. SYSTEM actors carry no id."""

    role: ActorRole
    id: uuid.UUID | None = None

    @classmethod
    def system(cls) -> Actor:
        return cls(role=ActorRole.SYSTEM)


_CANCELLERS = frozenset({ActorRole.CUSTOMER, ActorRole.PROVIDER, ActorRole.ADMIN})

_S = RequestStatus
EDGES: dict[tuple[RequestStatus, RequestStatus], Edge] = {
    (_S.PENDING, _S.ASSIGNED): Edge(
        "assign", frozenset({ActorRole.CUSTOMER, ActorRole.SYSTEM, ActorRole.ADMIN})
    ),
    (_S.ASSIGNED, _S.QUOTED): Edge("submit_quote", frozenset({ActorRole.PROVIDER})),
    (_S.QUOTED, _S.ACCEPTED): Edge("accept_quote", frozenset({ActorRole.CUSTOMER})),
    (_S.ACCEPTED, _S.AWAITING_PAYMENT): Edge("request_payment", frozenset({ActorRole.SYSTEM})),
    (_S.AWAITING_PAYMENT, _S.PAID): Edge("confirm_payment", frozenset({ActorRole.SYSTEM})),
    (_S.PAID, _S.EN_ROUTE): Edge("depart", frozenset({ActorRole.PROVIDER})),
    (_S.EN_ROUTE, _S.IN_PROGRESS): Edge("arrive", frozenset({ActorRole.PROVIDER})),
    (_S.IN_PROGRESS, _S.COMPLETED): Edge(
        "complete_job", frozenset({ActorRole.PROVIDER, ActorRole.CUSTOMER})
    ),
    **{
        (status, _S.CANCELLED): Edge("cancel_request", _CANCELLERS)
        for status in RequestStatus
        if not status.is_terminal
    },
}


def allowed_successors(status: RequestStatus) -> frozenset[RequestStatus]:
    """Statuses reachable from `status` in one step."""
    return frozenset(target for source, target in EDGES if source == status)


def _entry_roles(status: RequestStatus) -> frozenset[ActorRole]:
    """Roles that may drive at least one edge ending in `status`."""
    return frozenset().union(
        *(edge.roles for (_, target), edge in EDGES.items() if target == status)
    )


def check_transition(
    current: RequestStatus, target: RequestStatus, role: ActorRole
) -> Edge | None:
    """Validate `current -> target` for an actor role.

    Returns the edge to apply, or None when current == target. Re-applying is
    a no-op success only for a role that may drive some edge into `current`.

    Raises:
        IllegalTransitionError: If the edge does not exist or the role lacks
            authority for it.
    """
    if current == target:
        if role not in _entry_roles(current):
            raise IllegalTransitionError(
                current, target, f"role '{role}' may not drive this edge"
            )
        return None

    edge = EDGES.get((current, target))
    if edge is None:
        raise IllegalTransitionError(current, target)

    sm = RequestLifecycle(current_status=current.value)
    try:
        getattr(sm, edge.event)()
    except TransitionNotAllowed as exc:
        raise IllegalTransitionError(current, target) from exc
    if sm.status != target.value:
        raise IllegalTransitionError(current, target, "edge table out of sync")

    if role not in edge.roles:
        raise IllegalTransitionError(current, target, f"role '{role}' may not drive this edge")
    return edge


def check_actor_identity(
    actor: Actor, customer_id: uuid.UUID, provider_id: uuid.UUID | None
) -> None:
    """Customers and providers may only act on their own requests."""
    if actor.role == ActorRole.CUSTOMER and actor.id != customer_id:
        raise AuthError("Actor is not the customer on this request")
    if actor.role == ActorRole.PROVIDER and (provider_id is None or actor.id != provider_id):
        raise AuthError("Actor is not the provider assigned to this request")
