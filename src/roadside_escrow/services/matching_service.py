"""Matching Service: finds providers for a pending request.

Loads available provider snapshots from the ledger and ranks them with the
pure functions in domain/geo.py. When nobody is within the search radius the
single closest provider is assigned automatically by the system actor.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from roadside_escrow.config import get_settings
from roadside_escrow.domain.enums import RequestStatus
from roadside_escrow.domain.exceptions import (
    PreconditionError,
    ProfileNotFoundError,
    ValidationError,
)
from roadside_escrow.domain.geo import MatchMode, MatchResult, match_providers
from roadside_escrow.domain.state_machine import Actor
from roadside_escrow.infrastructure.database.repositories import ProfileRepository
from roadside_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from roadside_escrow.infrastructure.database.orm_models import Profile, ServiceRequest
    from roadside_escrow.services.lifecycle_service import LifecycleService

logger = get_logger(__name__)


class MatchingService:
    def __init__(
        self,
        session: AsyncSession,
        lifecycle: LifecycleService,
        radius_km: float | None = None,
        max_age: timedelta | None = None,
    ) -> None:
        settings = get_settings()
        self._profile_repo = ProfileRepository(session)
        self._lifecycle = lifecycle
        self.radius_km = radius_km if radius_km is not None else settings.match_radius_km
        self.max_age = max_age or timedelta(seconds=settings.provider_location_max_age_seconds)

    async def find_nearby(
        self,
        lat: float,
        lng: float,
        radius_km: float | None = None,
        now: datetime | None = None,
    ) -> MatchResult:
        """Ranked providers within the radius, or the closest-provider fallback."""
        snapshots = await self._profile_repo.available_provider_snapshots()
        result = match_providers(
            snapshots,
            lat,
            lng,
            radius_km=radius_km if radius_km is not None else self.radius_km,
            now=now or datetime.now(UTC),
            max_age=self.max_age,
        )
        logger.info(
            "matching.searched",
            mode=result.mode.value,
            candidates=len(result.candidates),
            considered=len(snapshots),
        )
        return result

    async def candidates_for_request(
        self,
        request_id: uuid.UUID,
        radius_km: float | None = None,
    ) -> MatchResult:
        request = await self._lifecycle.get_request(request_id)
        lat, lng = self._customer_point(request)
        return await self.find_nearby(lat, lng, radius_km=radius_km)

    async def auto_assign(self, request_id: uuid.UUID) -> tuple[MatchResult, ServiceRequest]:
        """Assign a provider without customer choice.

        Used when no provider is within the radius: the closest available
        provider anywhere is assigned by the system actor. If providers are
        within the radius the best-ranked one is used.
        """
        request = await self._lifecycle.get_request(request_id)
        if request.status != RequestStatus.PENDING:
            raise PreconditionError(f"Request {request_id} is '{request.status}', not pending")

        lat, lng = self._customer_point(request)
        result = await self.find_nearby(lat, lng)
        if result.mode is MatchMode.NONE:
            logger.warning("matching.no_provider_available", request_id=str(request_id))
            return result, request

        chosen = result.candidates[0]
        request = await self._lifecycle.assign_provider(
            request_id, chosen.provider_id, Actor.system()
        )
        logger.info(
            "matching.auto_assigned",
            request_id=str(request_id),
            provider_id=str(chosen.provider_id),
            distance_km=round(chosen.distance_km, 3),
            mode=result.mode.value,
        )
        return result, request

    # ------------------------------------------------------------------
    # Provider availability
    # ------------------------------------------------------------------

    async def set_availability(
        self,
        provider_id: uuid.UUID,
        is_available: bool,
        lat: float | None = None,
        lng: float | None = None,
        at: datetime | None = None,
    ) -> Profile:
        """Go online with a fresh snapshot, or offline (clears the snapshot)."""
        provider = await self._profile_repo.get_by_id(provider_id)
        if provider is None or provider.role != "provider":
            raise ProfileNotFoundError(str(provider_id))

        at = at or datetime.now(UTC)
        if is_available and (lat is None or lng is None):
            raise ValidationError("Going online requires the current position")
        if not is_available:
            lat = lng = None
        await self._profile_repo.set_availability(provider, is_available, lat, lng, at)

        logger.info(
            "matching.availability_changed",
            provider_id=str(provider_id),
            online=is_available,
        )
        return provider

    @staticmethod
    def _customer_point(request: ServiceRequest) -> tuple[float, float]:
        if request.customer_lat is None or request.customer_lng is None:
            raise ValidationError(f"Request {request.id} has no customer coordinates")
        return request.customer_lat, request.customer_lng
