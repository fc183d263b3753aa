"""Lifecycle Service: every status change of a service request goes through here.

This is the application layer that coordinates between:
    - Domain lifecycle guard (edge table + actor authority)
    - Repositories (data access)
    - Event log (audit trail)
    - Transition observers (notifications, live tracking)

Routes, the matching service and the settlement engine all call into this
service, so there is a single place where statuses are written.
"""

from __future__ import annotations

import secrets
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from roadside_escrow.domain.enums import (
    ActorRole,
    EventType,
    PaymentStatus,
    ProfileRole,
    RequestStatus,
    ServiceType,
)
from roadside_escrow.domain.events import TransitionEvent
from roadside_escrow.domain.exceptions import (
    AuthError,
    IllegalTransitionError,
    PreconditionError,
    ProfileNotFoundError,
    RequestNotFoundError,
    ValidationError,
)
from roadside_escrow.domain.state_machine import (
    Actor,
    Edge,
    check_actor_identity,
    check_transition,
)
from roadside_escrow.infrastructure.database.orm_models import Rating, ServiceRequest
from roadside_escrow.infrastructure.database.repositories import (
    EventRepository,
    ProfileRepository,
    RatingRepository,
    RequestRepository,
)
from roadside_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from roadside_escrow.domain.events import TransitionObserver
    from roadside_escrow.infrastructure.database.orm_models import RequestEvent

logger = get_logger(__name__)

TRACKING_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
TRACKING_CODE_LENGTH = 8


def generate_tracking_code() -> str:
    return "".join(secrets.choice(TRACKING_CODE_ALPHABET) for _ in range(TRACKING_CODE_LENGTH))


class LifecycleService:
    """Manages the service request lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        observers: Sequence[TransitionObserver] = (),
    ) -> None:
        self._session = session
        self._observers = tuple(observers)
        self._request_repo = RequestRepository(session)
        self._profile_repo = ProfileRepository(session)
        self._event_repo = EventRepository(session)
        self._rating_repo = RatingRepository(session)

    # ------------------------------------------------------------------
    # Transition core
    # ------------------------------------------------------------------

    def ensure_identity(self, actor: Actor, request: ServiceRequest) -> None:
        check_actor_identity(actor, request.customer_id, request.provider_id)

    def ensure_can_transition(
        self,
        request: ServiceRequest,
        target: RequestStatus,
        actor: Actor,
    ) -> Edge | None:
        """Raise unless `actor` may move `request` to `target`. None means no-op."""
        check_actor_identity(actor, request.customer_id, request.provider_id)
        return check_transition(RequestStatus(request.status), target, actor.role)

    async def apply_transition(
        self,
        request: ServiceRequest,
        target: RequestStatus,
        actor: Actor,
        *,
        changes: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TransitionEvent | None:
        """Validate and persist a transition without notifying observers.

        `changes` are column updates written together with the status. Returns
        None when the request is already in `target`.
        """
        edge = self.ensure_can_transition(request, target, actor)
        if edge is None:
            logger.debug(
                "lifecycle.transition_noop",
                request_id=str(request.id),
                status=request.status,
            )
            return None

        old_status = RequestStatus(request.status)
        for column, value in (changes or {}).items():
            setattr(request, column, value)
        await self._request_repo.update_status(request, target, actor.role)

        await self._event_repo.record(
            request_id=request.id,
            event_type=EventType.STATUS_CHANGED,
            old_status=old_status,
            new_status=target,
            actor_role=actor.role,
            actor_id=actor.id,
            metadata={"event": edge.event, **(metadata or {})},
        )

        logger.info(
            "lifecycle.transitioned",
            request_id=str(request.id),
            old_status=old_status.value,
            new_status=target.value,
            actor_role=actor.role.value,
        )
        return TransitionEvent(
            request_id=request.id,
            tracking_code=request.tracking_code,
            customer_id=request.customer_id,
            provider_id=request.provider_id,
            old_status=old_status,
            new_status=target,
            actor=actor,
            customer_lat=request.customer_lat,
            customer_lng=request.customer_lng,
        )

    async def publish(self, event: TransitionEvent | None) -> None:
        """Fan a transition out to observers. Observer failures are logged only."""
        if event is None:
            return
        for observer in self._observers:
            try:
                await observer.on_transition(event)
            except Exception:
                logger.exception(
                    "lifecycle.observer_failed",
                    observer=type(observer).__name__,
                    request_id=str(event.request_id),
                )

    async def transition(
        self,
        request_id: uuid.UUID,
        target: RequestStatus,
        actor: Actor,
        *,
        changes: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ServiceRequest:
        """Apply a transition and notify observers."""
        request = await self._get_request_or_raise(request_id)
        event = await self.apply_transition(
            request, target, actor, changes=changes, metadata=metadata
        )
        await self.publish(event)
        return request

    # ------------------------------------------------------------------
    # Request creation
    # ------------------------------------------------------------------

    async def create_request(
        self,
        customer_id: uuid.UUID,
        service_type: ServiceType,
        customer_lat: float | None = None,
        customer_lng: float | None = None,
        description: str | None = None,
        location: str | None = None,
    ) -> ServiceRequest:
        """Create a request in `pending` with a fresh tracking code."""
        customer = await self._profile_repo.get_by_id(customer_id)
        if customer is None:
            raise ProfileNotFoundError(str(customer_id))

        tracking_code = await self._unique_tracking_code()
        request = ServiceRequest(
            tracking_code=tracking_code,
            service_type=service_type.value,
            description=description,
            location=location,
            customer_id=customer_id,
            customer_lat=customer_lat,
            customer_lng=customer_lng,
            status=RequestStatus.PENDING.value,
            payment_status=PaymentStatus.UNPAID.value,
            last_actor_role=ActorRole.CUSTOMER.value,
        )
        request = await self._request_repo.create(request)

        await self._event_repo.record(
            request_id=request.id,
            event_type=EventType.REQUEST_CREATED,
            old_status=None,
            new_status=RequestStatus.PENDING,
            actor_role=ActorRole.CUSTOMER,
            actor_id=customer_id,
            metadata={"service_type": service_type.value},
        )

        logger.info(
            "lifecycle.request_created",
            request_id=str(request.id),
            tracking_code=tracking_code,
            service_type=service_type.value,
        )
        return request

    # ------------------------------------------------------------------
    # Assignment and quoting
    # ------------------------------------------------------------------

    async def assign_provider(
        self,
        request_id: uuid.UUID,
        provider_id: uuid.UUID,
        actor: Actor,
    ) -> ServiceRequest:
        """pending -> assigned. Customers pick, the system assigns on fallback."""
        request = await self._get_request_or_raise(request_id)
        if request.status == RequestStatus.ASSIGNED:
            self.ensure_identity(actor, request)
            if request.provider_id == provider_id:
                return request
            raise IllegalTransitionError(
                RequestStatus.ASSIGNED,
                RequestStatus.ASSIGNED,
                f"already assigned to provider {request.provider_id}",
            )

        provider = await self._profile_repo.get_by_id(provider_id)
        if provider is None or provider.role != ProfileRole.PROVIDER:
            raise ProfileNotFoundError(str(provider_id))

        event = await self.apply_transition(
            request,
            RequestStatus.ASSIGNED,
            actor,
            changes={
                "provider_id": provider_id,
                "assigned_at": datetime.now(UTC),
                "assigned_by": actor.role.value,
            },
            metadata={"provider_id": str(provider_id)},
        )
        await self.publish(event)
        return request

    async def submit_quote(
        self,
        request_id: uuid.UUID,
        actor: Actor,
        amount: Decimal,
        description: str | None = None,
    ) -> ServiceRequest:
        """assigned -> quoted (provider)."""
        if amount <= 0:
            raise ValidationError(f"Quote amount must be positive, got {amount}")
        amount = amount.quantize(Decimal("0.01"))
        return await self.transition(
            request_id,
            RequestStatus.QUOTED,
            actor,
            changes={
                "quoted_amount": amount,
                "quote_description": description,
                "quoted_at": datetime.now(UTC),
            },
            metadata={"quoted_amount": str(amount)},
        )

    async def accept_quote(self, request_id: uuid.UUID, actor: Actor) -> ServiceRequest:
        """quoted -> accepted (customer)."""
        return await self.transition(
            request_id,
            RequestStatus.ACCEPTED,
            actor,
            changes={"quote_approved_at": datetime.now(UTC)},
        )

    # ------------------------------------------------------------------
    # Job execution
    # ------------------------------------------------------------------

    async def depart(self, request_id: uuid.UUID, actor: Actor) -> ServiceRequest:
        """paid -> en_route (provider). Starts live tracking via observers."""
        return await self.transition(request_id, RequestStatus.EN_ROUTE, actor)

    async def start_work(self, request_id: uuid.UUID, actor: Actor) -> ServiceRequest:
        """en_route -> in_progress (provider)."""
        return await self.transition(request_id, RequestStatus.IN_PROGRESS, actor)

    async def complete(self, request_id: uuid.UUID, actor: Actor) -> ServiceRequest:
        """in_progress -> completed (provider or customer)."""
        return await self.transition(
            request_id,
            RequestStatus.COMPLETED,
            actor,
            changes={"completed_at": datetime.now(UTC)},
        )

    async def confirm_completion(
        self,
        request_id: uuid.UUID,
        actor: Actor,
        rating: int | None = None,
        review: str | None = None,
    ) -> ServiceRequest:
        """Customer confirms the job; this is the escrow release condition.

        Stamps customer_confirmed_at, completes the request if the provider
        has not already done so, and stores an optional rating.
        """
        if actor.role != ActorRole.CUSTOMER:
            raise AuthError("Only the customer can confirm completion")
        if rating is not None and not 1 <= rating <= 5:
            raise ValidationError(f"Rating must be between 1 and 5, got {rating}")

        request = await self._get_request_or_raise(request_id)
        check_actor_identity(actor, request.customer_id, request.provider_id)

        status = RequestStatus(request.status)
        if status not in (RequestStatus.IN_PROGRESS, RequestStatus.COMPLETED):
            raise PreconditionError(
                f"Request {request_id} cannot be confirmed while '{status.value}'"
            )

        event = None
        if request.customer_confirmed_at is None:
            now = datetime.now(UTC)
            request.customer_confirmed_at = now
            if status == RequestStatus.IN_PROGRESS:
                event = await self.apply_transition(
                    request,
                    RequestStatus.COMPLETED,
                    actor,
                    changes={"completed_at": now},
                )
            else:
                await self._request_repo.save(request)

            await self._event_repo.record(
                request_id=request.id,
                event_type=EventType.CUSTOMER_CONFIRMED,
                old_status=RequestStatus.COMPLETED,
                new_status=RequestStatus.COMPLETED,
                actor_role=actor.role,
                actor_id=actor.id,
            )
            logger.info("lifecycle.customer_confirmed", request_id=str(request.id))

        if rating is not None and request.provider_id is not None:
            existing = await self._rating_repo.get_for_request(request.id)
            if existing is None:
                await self._rating_repo.create(
                    Rating(
                        service_request_id=request.id,
                        provider_id=request.provider_id,
                        customer_id=request.customer_id,
                        rating=rating,
                        review=review,
                    )
                )

        await self.publish(event)
        return request

    async def cancel(
        self,
        request_id: uuid.UUID,
        actor: Actor,
        reason: str | None = None,
    ) -> ServiceRequest:
        """Any non-terminal status -> cancelled."""
        return await self.transition(
            request_id,
            RequestStatus.CANCELLED,
            actor,
            metadata={"reason": reason} if reason else None,
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_request(self, request_id: uuid.UUID) -> ServiceRequest:
        return await self._get_request_or_raise(request_id)

    async def get_by_tracking_code(self, tracking_code: str) -> ServiceRequest:
        request = await self._request_repo.get_by_tracking_code(tracking_code.strip().upper())
        if request is None:
            raise RequestNotFoundError(tracking_code)
        return request

    async def get_events(self, request_id: uuid.UUID) -> list[RequestEvent]:
        await self._get_request_or_raise(request_id)
        return await self._event_repo.get_by_request(request_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_request_or_raise(self, request_id: uuid.UUID) -> ServiceRequest:
        request = await self._request_repo.get_by_id(request_id)
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return request

    async def _unique_tracking_code(self, attempts: int = 5) -> str:
        for _ in range(attempts):
            code = generate_tracking_code()
            if not await self._request_repo.tracking_code_exists(code):
                return code
        raise RuntimeError("Could not generate a unique tracking code")
