"""Tests for the LifecycleService.

These tests verify that:
    1. Requests are created pending with an audit event and a tracking code.
    2. Each transition writes exactly one STATUS_CHANGED event and notifies observers.
    3. Illegal edges and foreign actors leave the request untouched.
    4. Re-applying a transition is a no-op (no event, no notification).
    5. Customer confirmation completes the job and stores one rating.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest

from roadside_escrow.domain.enums import (
    ActorRole,
    EventType,
    ProfileRole,
    RequestStatus,
    ServiceType,
)
from roadside_escrow.domain.exceptions import (
    AuthError,
    IllegalTransitionError,
    PreconditionError,
    ProfileNotFoundError,
    RequestNotFoundError,
    ValidationError,
)
from roadside_escrow.domain.state_machine import Actor
from roadside_escrow.infrastructure.database.repositories import RatingRepository
from roadside_escrow.services.lifecycle_service import (
    TRACKING_CODE_ALPHABET,
    TRACKING_CODE_LENGTH,
)
from tests.helpers import CUSTOMER_POINT, advance_to, make_profile


def status_events(events) -> list:  # noqa: ANN001
    return [e for e in events if e.event_type == EventType.STATUS_CHANGED]


class TestCreateRequest:
    @pytest.mark.asyncio
    async def test_creates_pending_request(self, lifecycle, customer) -> None:  # noqa: ANN001
        request = await lifecycle.create_request(
            customer.id, ServiceType.TOWING, *CUSTOMER_POINT, description="Flat on N1"
        )

        assert request.status == RequestStatus.PENDING
        assert request.payment_status == "unpaid"
        assert request.provider_id is None
        assert len(request.tracking_code) == TRACKING_CODE_LENGTH
        assert set(request.tracking_code) <= set(TRACKING_CODE_ALPHABET)

        events = await lifecycle.get_events(request.id)
        assert [e.event_type for e in events] == [EventType.REQUEST_CREATED]
        assert events[0].new_status == "pending"

    @pytest.mark.asyncio
    async def test_unknown_customer_rejected(self, lifecycle) -> None:  # noqa: ANN001
        with pytest.raises(ProfileNotFoundError):
            await lifecycle.create_request(uuid.uuid4(), ServiceType.TOWING, *CUSTOMER_POINT)

    @pytest.mark.asyncio
    async def test_lookup_by_tracking_code(self, lifecycle, customer) -> None:  # noqa: ANN001
        request = await lifecycle.create_request(customer.id, ServiceType.TOWING, *CUSTOMER_POINT)
        found = await lifecycle.get_by_tracking_code(f" {request.tracking_code.lower()} ")
        assert found.id == request.id

    @pytest.mark.asyncio
    async def test_missing_request(self, lifecycle) -> None:  # noqa: ANN001
        with pytest.raises(RequestNotFoundError):
            await lifecycle.get_request(uuid.uuid4())


class TestTransitions:
    @pytest.mark.asyncio
    async def test_assign_quote_accept(
        self, lifecycle, observer, customer_actor, provider_actor, provider  # noqa: ANN001
    ) -> None:
        request = await advance_to(
            lifecycle, customer_actor, provider_actor, RequestStatus.ACCEPTED, Decimal("120.5")
        )

        assert request.status == RequestStatus.ACCEPTED
        assert request.provider_id == provider.id
        assert request.assigned_by == "customer"
        assert request.quoted_amount == Decimal("120.50")
        assert request.quote_approved_at is not None
        assert request.last_actor_role == "customer"

        events = status_events(await lifecycle.get_events(request.id))
        assert [(e.old_status, e.new_status) for e in events] == [
            ("pending", "assigned"),
            ("assigned", "quoted"),
            ("quoted", "accepted"),
        ]
        assert [e.actor_role for e in events] == ["customer", "provider", "customer"]
        assert [e.new_status for e in observer.events] == [
            RequestStatus.ASSIGNED,
            RequestStatus.QUOTED,
            RequestStatus.ACCEPTED,
        ]
        assert observer.events[0].customer_lat == CUSTOMER_POINT[0]

    @pytest.mark.asyncio
    async def test_reapplying_is_a_noop(
        self, lifecycle, observer, customer_actor, provider_actor  # noqa: ANN001
    ) -> None:
        request = await advance_to(
            lifecycle, customer_actor, provider_actor, RequestStatus.QUOTED
        )
        before = len(await lifecycle.get_events(request.id))

        again = await lifecycle.submit_quote(request.id, provider_actor, Decimal("100.00"))
        assert again.status == RequestStatus.QUOTED
        assert len(await lifecycle.get_events(request.id)) == before
        assert len(observer.events) == 2

    @pytest.mark.asyncio
    async def test_skipping_payment_is_illegal(
        self, lifecycle, customer_actor, provider_actor  # noqa: ANN001
    ) -> None:
        request = await advance_to(
            lifecycle, customer_actor, provider_actor, RequestStatus.ACCEPTED
        )
        with pytest.raises(IllegalTransitionError):
            await lifecycle.depart(request.id, provider_actor)

        request = await lifecycle.get_request(request.id)
        assert request.status == RequestStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_customer_cannot_quote(
        self, lifecycle, customer_actor, provider_actor  # noqa: ANN001
    ) -> None:
        request = await advance_to(
            lifecycle, customer_actor, provider_actor, RequestStatus.ASSIGNED
        )
        with pytest.raises(IllegalTransitionError):
            await lifecycle.submit_quote(request.id, customer_actor, Decimal("50"))

    @pytest.mark.asyncio
    async def test_other_provider_cannot_quote(
        self, session, lifecycle, customer_actor, provider_actor  # noqa: ANN001
    ) -> None:
        request = await advance_to(
            lifecycle, customer_actor, provider_actor, RequestStatus.ASSIGNED
        )
        stranger = await make_profile(session, ProfileRole.PROVIDER, "Yaw Boateng")
        with pytest.raises(AuthError):
            await lifecycle.submit_quote(
                request.id, Actor(ActorRole.PROVIDER, stranger.id), Decimal("50")
            )
        request = await lifecycle.get_request(request.id)
        assert request.quoted_amount is None

    @pytest.mark.asyncio
    async def test_non_positive_quote_rejected(
        self, lifecycle, customer_actor, provider_actor  # noqa: ANN001
    ) -> None:
        request = await advance_to(
            lifecycle, customer_actor, provider_actor, RequestStatus.ASSIGNED
        )
        with pytest.raises(ValidationError):
            await lifecycle.submit_quote(request.id, provider_actor, Decimal("0"))

    @pytest.mark.asyncio
    async def test_reassigning_another_provider_is_illegal(
        self, session, lifecycle, observer, customer_actor, provider_actor, provider  # noqa: ANN001
    ) -> None:
        request = await advance_to(
            lifecycle, customer_actor, provider_actor, RequestStatus.ASSIGNED
        )
        other = await make_profile(session, ProfileRole.PROVIDER, "Yaw Boateng")
        before = len(await lifecycle.get_events(request.id))

        with pytest.raises(IllegalTransitionError, match="already assigned"):
            await lifecycle.assign_provider(request.id, other.id, customer_actor)

        request = await lifecycle.get_request(request.id)
        assert request.provider_id == provider.id
        assert len(await lifecycle.get_events(request.id)) == before
        assert len(observer.events) == 1

    @pytest.mark.asyncio
    async def test_reassigning_same_provider_is_a_noop(
        self, lifecycle, observer, customer_actor, provider_actor, provider  # noqa: ANN001
    ) -> None:
        request = await advance_to(
            lifecycle, customer_actor, provider_actor, RequestStatus.ASSIGNED
        )
        again = await lifecycle.assign_provider(request.id, provider.id, customer_actor)
        assert again.provider_id == provider.id
        assert len(observer.events) == 1

    @pytest.mark.asyncio
    async def test_assigning_a_customer_profile_fails(
        self, lifecycle, customer, customer_actor  # noqa: ANN001
    ) -> None:
        request = await lifecycle.create_request(customer.id, ServiceType.TOWING, *CUSTOMER_POINT)
        with pytest.raises(ProfileNotFoundError):
            await lifecycle.assign_provider(request.id, customer.id, customer_actor)


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_records_reason(
        self, lifecycle, customer_actor, provider_actor  # noqa: ANN001
    ) -> None:
        request = await advance_to(
            lifecycle, customer_actor, provider_actor, RequestStatus.QUOTED
        )
        request = await lifecycle.cancel(request.id, customer_actor, reason="Too expensive")
        assert request.status == RequestStatus.CANCELLED

        last = (await lifecycle.get_events(request.id))[-1]
        assert last.metadata_json["reason"] == "Too expensive"
        assert last.metadata_json["event"] == "cancel_request"

    @pytest.mark.asyncio
    async def test_cancelled_is_terminal(
        self, lifecycle, customer_actor, provider_actor  # noqa: ANN001
    ) -> None:
        request = await advance_to(
            lifecycle, customer_actor, provider_actor, RequestStatus.ASSIGNED
        )
        await lifecycle.cancel(request.id, provider_actor)
        with pytest.raises(IllegalTransitionError):
            await lifecycle.submit_quote(request.id, provider_actor, Decimal("10"))


class TestConfirmCompletion:
    async def _in_progress(self, session, lifecycle, customer_actor, provider_actor):  # noqa: ANN001
        request = await advance_to(
            lifecycle, customer_actor, provider_actor, RequestStatus.ACCEPTED
        )
        # Payment edges belong to the settlement engine; drive them as the system.
        system = Actor.system()
        await lifecycle.transition(request.id, RequestStatus.AWAITING_PAYMENT, system)
        await lifecycle.transition(
            request.id,
            RequestStatus.PAID,
            system,
            changes={"payment_status": "paid", "amount": Decimal("100.00")},
        )
        await lifecycle.depart(request.id, provider_actor)
        return await lifecycle.start_work(request.id, provider_actor)

    @pytest.mark.asyncio
    async def test_confirm_completes_and_rates(
        self, session, lifecycle, customer_actor, provider_actor, provider  # noqa: ANN001
    ) -> None:
        request = await self._in_progress(session, lifecycle, customer_actor, provider_actor)

        request = await lifecycle.confirm_completion(
            request.id, customer_actor, rating=4, review="Quick"
        )
        assert request.status == RequestStatus.COMPLETED
        assert request.customer_confirmed_at is not None
        assert request.completed_at is not None

        rating = await RatingRepository(session).get_for_request(request.id)
        assert rating is not None
        assert rating.rating == 4
        assert rating.provider_id == provider.id

        types = [e.event_type for e in await lifecycle.get_events(request.id)]
        assert types.count(EventType.CUSTOMER_CONFIRMED) == 1

    @pytest.mark.asyncio
    async def test_confirm_after_provider_completion(
        self, session, lifecycle, customer_actor, provider_actor  # noqa: ANN001
    ) -> None:
        request = await self._in_progress(session, lifecycle, customer_actor, provider_actor)
        await lifecycle.complete(request.id, provider_actor)

        request = await lifecycle.confirm_completion(request.id, customer_actor)
        assert request.status == RequestStatus.COMPLETED
        assert request.customer_confirmed_at is not None

    @pytest.mark.asyncio
    async def test_confirm_twice_is_idempotent(
        self, session, lifecycle, customer_actor, provider_actor  # noqa: ANN001
    ) -> None:
        request = await self._in_progress(session, lifecycle, customer_actor, provider_actor)
        first = await lifecycle.confirm_completion(request.id, customer_actor, rating=5)
        stamp = first.customer_confirmed_at

        second = await lifecycle.confirm_completion(request.id, customer_actor, rating=1)
        assert second.customer_confirmed_at == stamp
        rating = await RatingRepository(session).get_for_request(request.id)
        assert rating.rating == 5

    @pytest.mark.asyncio
    async def test_provider_cannot_confirm(
        self, session, lifecycle, customer_actor, provider_actor  # noqa: ANN001
    ) -> None:
        request = await self._in_progress(session, lifecycle, customer_actor, provider_actor)
        with pytest.raises(AuthError):
            await lifecycle.confirm_completion(request.id, provider_actor)

    @pytest.mark.asyncio
    async def test_confirm_before_work_starts(
        self, lifecycle, customer_actor, provider_actor  # noqa: ANN001
    ) -> None:
        request = await advance_to(
            lifecycle, customer_actor, provider_actor, RequestStatus.ACCEPTED
        )
        with pytest.raises(PreconditionError):
            await lifecycle.confirm_completion(request.id, customer_actor)

    @pytest.mark.asyncio
    async def test_rating_out_of_range(
        self, session, lifecycle, customer_actor, provider_actor  # noqa: ANN001
    ) -> None:
        request = await self._in_progress(session, lifecycle, customer_actor, provider_actor)
        with pytest.raises(ValidationError):
            await lifecycle.confirm_completion(request.id, customer_actor, rating=6)
