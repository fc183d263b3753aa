"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select, update

from roadside_escrow.domain.geo import ProviderSnapshot
from roadside_escrow.infrastructure.database.orm_models import (
    Profile,
    Rating,
    RequestEvent,
    ServiceRequest,
    Transaction,
)

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from roadside_escrow.domain.enums import ActorRole, EventType, RequestStatus


class RequestRepository:
    """Data access for service requests."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, request: ServiceRequest) -> ServiceRequest:
        self._session.add(request)
        await self._session.flush()
        return request

    async def get_by_id(self, request_id: uuid.UUID) -> ServiceRequest | None:
        result = await self._session.execute(
            select(ServiceRequest).where(ServiceRequest.id == request_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, request_id: uuid.UUID) -> ServiceRequest | None:
        """Fetch a request with a row lock (no-op on SQLite)."""
        result = await self._session.execute(
            select(ServiceRequest)
            .where(ServiceRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_tracking_code(self, tracking_code: str) -> ServiceRequest | None:
        result = await self._session.execute(
            select(ServiceRequest).where(ServiceRequest.tracking_code == tracking_code)
        )
        return result.scalar_one_or_none()

    async def get_by_reference(self, reference: str) -> ServiceRequest | None:
        result = await self._session.execute(
            select(ServiceRequest).where(ServiceRequest.gateway_reference == reference)
        )
        return result.scalar_one_or_none()

    async def tracking_code_exists(self, tracking_code: str) -> bool:
        result = await self._session.execute(
            select(ServiceRequest.id).where(ServiceRequest.tracking_code == tracking_code)
        )
        return result.first() is not None

    async def update_status(
        self,
        request: ServiceRequest,
        new_status: RequestStatus,
        actor_role: ActorRole,
    ) -> ServiceRequest:
        """Update the status (call AFTER lifecycle validation)."""
        request.status = new_status.value
        request.last_actor_role = actor_role.value
        request.updated_at = datetime.now(UTC)
        await self._session.flush()
        return request

    async def save(self, request: ServiceRequest) -> ServiceRequest:
        await self._session.flush()
        return request

    async def update_provider_position(
        self,
        request_id: uuid.UUID,
        lat: float,
        lng: float,
        at: datetime,
    ) -> bool:
        """Overwrite the provider coordinates unless a newer sample is stored."""
        result = await self._session.execute(
            update(ServiceRequest)
            .where(
                ServiceRequest.id == request_id,
                or_(
                    ServiceRequest.provider_location_at.is_(None),
                    ServiceRequest.provider_location_at <= at,
                ),
            )
            .values(provider_lat=lat, provider_lng=lng, provider_location_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def update_customer_position(
        self, request_id: uuid.UUID, lat: float, lng: float
    ) -> None:
        await self._session.execute(
            update(ServiceRequest)
            .where(ServiceRequest.id == request_id)
            .values(customer_lat=lat, customer_lng=lng)
            .execution_options(synchronize_session=False)
        )


class ProfileRepository:
    """Data access for profiles and the provider location snapshot."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, profile: Profile) -> Profile:
        self._session.add(profile)
        await self._session.flush()
        return profile

    async def get_by_id(self, profile_id: uuid.UUID) -> Profile | None:
        result = await self._session.execute(select(Profile).where(Profile.id == profile_id))
        return result.scalar_one_or_none()

    async def update_position(
        self,
        profile_id: uuid.UUID,
        lat: float | None,
        lng: float | None,
        at: datetime,
    ) -> bool:
        """Last-write-wins by sample timestamp: older samples are dropped."""
        result = await self._session.execute(
            update(Profile)
            .where(
                Profile.id == profile_id,
                or_(Profile.location_updated_at.is_(None), Profile.location_updated_at <= at),
            )
            .values(current_lat=lat, current_lng=lng, location_updated_at=at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0

    async def set_availability(
        self,
        profile: Profile,
        is_available: bool,
        lat: float | None,
        lng: float | None,
        at: datetime,
    ) -> Profile:
        """Toggle availability and overwrite the snapshot in one flush."""
        profile.is_available = is_available
        profile.current_lat = lat
        profile.current_lng = lng
        profile.location_updated_at = at
        await self._session.flush()
        return profile

    async def save_payout_details(
        self,
        profile: Profile,
        payout_details: dict[str, Any],
        subaccount_code: str | None = None,
    ) -> Profile:
        # Reassign (not mutate) so the JSON column is marked dirty.
        profile.payout_details = dict(payout_details)
        if subaccount_code is not None:
            profile.gateway_subaccount_code = subaccount_code
        await self._session.flush()
        return profile

    async def available_provider_snapshots(self) -> list[ProviderSnapshot]:
        """All available providers with a position, plus their rating aggregate."""
        ratings = (
            select(
                Rating.provider_id.label("provider_id"),
                func.avg(Rating.rating).label("avg_rating"),
                func.count(Rating.id).label("total_reviews"),
            )
            .group_by(Rating.provider_id)
            .subquery()
        )
        result = await self._session.execute(
            select(Profile, ratings.c.avg_rating, ratings.c.total_reviews)
            .outerjoin(ratings, ratings.c.provider_id == Profile.id)
            .where(
                Profile.role == "provider",
                Profile.is_available.is_(True),
                Profile.current_lat.is_not(None),
                Profile.current_lng.is_not(None),
            )
        )
        return [
            ProviderSnapshot(
                provider_id=profile.id,
                full_name=profile.full_name,
                lat=profile.current_lat,
                lng=profile.current_lng,
                located_at=profile.location_updated_at,
                is_available=profile.is_available,
                avg_rating=float(avg_rating or 0.0),
                total_reviews=int(total_reviews or 0),
                phone_number=profile.phone_number,
                avatar_url=profile.avatar_url,
                years_experience=profile.years_experience,
            )
            for profile, avg_rating, total_reviews in result.all()
        ]


class TransactionRepository:
    """Data access for settlement transactions."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, txn: Transaction) -> Transaction:
        """Insert a transaction. A duplicate reference raises IntegrityError."""
        self._session.add(txn)
        await self._session.flush()
        return txn

    async def get_by_transfer_code(self, transfer_code: str) -> Transaction | None:
        result = await self._session.execute(
            select(Transaction).where(Transaction.transfer_code == transfer_code)
        )
        return result.scalar_one_or_none()

    async def get_by_transfer_reference(self, transfer_reference: str) -> Transaction | None:
        result = await self._session.execute(
            select(Transaction).where(Transaction.transfer_reference == transfer_reference)
        )
        return result.scalar_one_or_none()

    async def get_for_request(
        self, request_id: uuid.UUID, transaction_type: str = "customer_to_business"
    ) -> Transaction | None:
        result = await self._session.execute(
            select(Transaction).where(
                Transaction.service_request_id == request_id,
                Transaction.transaction_type == transaction_type,
            )
        )
        return result.scalar_one_or_none()

    async def count_for_request(self, request_id: uuid.UUID) -> int:
        result = await self._session.execute(
            select(func.count(Transaction.id)).where(
                Transaction.service_request_id == request_id
            )
        )
        return int(result.scalar_one())

    async def save(self, txn: Transaction) -> Transaction:
        await self._session.flush()
        return txn


class EventRepository:
    """Data access for the append-only audit event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        request_id: uuid.UUID,
        event_type: EventType,
        old_status: RequestStatus | None,
        new_status: RequestStatus,
        actor_role: ActorRole,
        actor_id: uuid.UUID | None = None,
        metadata: dict | None = None,
    ) -> RequestEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = RequestEvent(
            service_request_id=request_id,
            event_type=event_type.value,
            old_status=old_status.value if old_status else None,
            new_status=new_status.value,
            actor_role=actor_role.value,
            actor_id=str(actor_id) if actor_id else None,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_request(self, request_id: uuid.UUID) -> list[RequestEvent]:
        result = await self._session.execute(
            select(RequestEvent)
            .where(RequestEvent.service_request_id == request_id)
            .order_by(RequestEvent.created_at.asc())
        )
        return list(result.scalars().all())


class RatingRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, rating: Rating) -> Rating:
        self._session.add(rating)
        await self._session.flush()
        return rating

    async def get_for_request(self, request_id: uuid.UUID) -> Rating | None:
        result = await self._session.execute(
            select(Rating).where(Rating.service_request_id == request_id)
        )
        return result.scalar_one_or_none()
