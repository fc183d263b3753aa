"""Live Tracker: periodic position persistence and ETA for active requests.

One TrackingLoop per (role, subject):
    - provider loops are keyed by request id and run while the request is
      en_route or in_progress
    - customer loops are keyed by customer id and run while a request is
      being created

Each loop keeps only the most recent sample and flushes it on a fixed
cadence. Samples arrive either from an async position source (sampling task)
or pushed from the HTTP API. Stopping a loop cancels both tasks; nothing is
written after stop() returns.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from roadside_escrow.config import get_settings
from roadside_escrow.domain.enums import ActorRole, RequestStatus
from roadside_escrow.domain.eta import EtaEstimate, EtaEstimator, PositionSample
from roadside_escrow.domain.exceptions import PreconditionError
from roadside_escrow.domain.geo import as_utc
from roadside_escrow.infrastructure.database.repositories import (
    ProfileRepository,
    RequestRepository,
)
from roadside_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from roadside_escrow.config import Settings
    from roadside_escrow.domain.events import TransitionEvent

logger = get_logger(__name__)

Sink = Callable[[PositionSample], Awaitable[None]]
LoopKey = tuple[ActorRole, uuid.UUID]


class TrackingLoop:
    """Latest-sample buffer plus a periodic flush task."""

    def __init__(
        self,
        name: str,
        interval: float,
        sink: Sink,
        on_sample: Callable[[PositionSample], None] | None = None,
    ) -> None:
        self.name = name
        self.interval = interval
        self.active = False
        self._sink = sink
        self._on_sample = on_sample
        self._latest: PositionSample | None = None
        self._flushed: PositionSample | None = None
        self._flush_task: asyncio.Task | None = None
        self._sample_task: asyncio.Task | None = None

    @property
    def latest(self) -> PositionSample | None:
        return self._latest

    def start(self, source: AsyncIterator[PositionSample] | None = None) -> None:
        if self.active:
            return
        self.active = True
        self._flush_task = asyncio.create_task(self._flush_forever(), name=f"{self.name}:flush")
        if source is not None:
            self._sample_task = asyncio.create_task(
                self._consume(source), name=f"{self.name}:sample"
            )

    def offer(self, sample: PositionSample) -> bool:
        """Buffer a sample. Out-of-order samples and samples after stop are dropped."""
        if not self.active:
            return False
        if self._latest is not None and sample.at < self._latest.at:
            return False
        self._latest = sample
        if self._on_sample is not None:
            self._on_sample(sample)
        return True

    async def flush(self) -> bool:
        """Persist the latest sample if it has not been written yet."""
        sample = self._latest
        if not self.active or sample is None or sample is self._flushed:
            return False
        await self._sink(sample)
        self._flushed = sample
        return True

    async def stop(self) -> None:
        self.active = False
        tasks = [t for t in (self._flush_task, self._sample_task) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._flush_task = self._sample_task = None

    async def _flush_forever(self) -> None:
        while self.active:
            await asyncio.sleep(self.interval)
            try:
                await self.flush()
            except Exception:
                logger.exception("tracking.flush_failed", loop=self.name)

    async def _consume(self, source: AsyncIterator[PositionSample]) -> None:
        async for sample in source:
            if not self.active:
                break
            self.offer(sample)


class LiveTracker:
    """Owns every tracking loop and the per-request ETA estimators."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._loops: dict[LoopKey, TrackingLoop] = {}
        self._estimators: dict[uuid.UUID, EtaEstimator] = {}
        self._destinations: dict[uuid.UUID, tuple[float, float]] = {}

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------

    def is_active(self, role: ActorRole, subject: uuid.UUID) -> bool:
        loop = self._loops.get((role, subject))
        return loop is not None and loop.active

    @property
    def active_count(self) -> int:
        return len(self._loops)

    async def activate_provider(
        self,
        request_id: uuid.UUID,
        provider_id: uuid.UUID,
        destination: tuple[float, float] | None = None,
        source: AsyncIterator[PositionSample] | None = None,
    ) -> TrackingLoop:
        if destination is not None:
            self._destinations[request_id] = destination
        key = (ActorRole.PROVIDER, request_id)
        loop = self._loops.get(key)
        if loop is not None:
            return loop

        estimator = self._estimators.setdefault(request_id, self._new_estimator())

        async def sink(sample: PositionSample) -> None:
            await self._persist_provider(request_id, provider_id, sample)

        loop = TrackingLoop(
            name=f"provider:{request_id}",
            interval=self._settings.provider_flush_interval_seconds,
            sink=sink,
            on_sample=lambda s: estimator.observe(s.lat, s.lng, s.at),
        )
        self._loops[key] = loop
        loop.start(source)
        logger.info(
            "tracking.provider_activated",
            request_id=str(request_id),
            provider_id=str(provider_id),
        )
        return loop

    async def activate_customer(
        self,
        customer_id: uuid.UUID,
        request_id: uuid.UUID | None = None,
        source: AsyncIterator[PositionSample] | None = None,
    ) -> TrackingLoop:
        key = (ActorRole.CUSTOMER, customer_id)
        loop = self._loops.get(key)
        if loop is not None:
            return loop

        async def sink(sample: PositionSample) -> None:
            await self._persist_customer(customer_id, request_id, sample)

        loop = TrackingLoop(
            name=f"customer:{customer_id}",
            interval=self._settings.customer_flush_interval_seconds,
            sink=sink,
        )
        self._loops[key] = loop
        loop.start(source)
        logger.info("tracking.customer_activated", customer_id=str(customer_id))
        return loop

    async def deactivate(self, role: ActorRole, subject: uuid.UUID) -> bool:
        loop = self._loops.pop((role, subject), None)
        if loop is None:
            return False
        await loop.stop()
        if role is ActorRole.PROVIDER:
            self._estimators.pop(subject, None)
            self._destinations.pop(subject, None)
        logger.info("tracking.deactivated", role=role.value, subject=str(subject))
        return True

    async def shutdown(self) -> None:
        for role, subject in list(self._loops):
            await self.deactivate(role, subject)

    # ------------------------------------------------------------------
    # Pushed samples
    # ------------------------------------------------------------------

    def offer_provider_sample(
        self,
        request_id: uuid.UUID,
        lat: float,
        lng: float,
        at: datetime | None = None,
    ) -> EtaEstimate | None:
        loop = self._loops.get((ActorRole.PROVIDER, request_id))
        if loop is None:
            raise PreconditionError(f"Provider tracking is not active for request {request_id}")
        loop.offer(PositionSample(lat=lat, lng=lng, at=_utc(at)))
        return self.eta(request_id)

    def offer_customer_sample(
        self,
        customer_id: uuid.UUID,
        lat: float,
        lng: float,
        at: datetime | None = None,
    ) -> None:
        loop = self._loops.get((ActorRole.CUSTOMER, customer_id))
        if loop is None:
            raise PreconditionError(f"Customer tracking is not active for {customer_id}")
        loop.offer(PositionSample(lat=lat, lng=lng, at=_utc(at)))

    def eta(self, request_id: uuid.UUID) -> EtaEstimate | None:
        """Current ETA to the customer; None until a provider sample is seen."""
        estimator = self._estimators.get(request_id)
        destination = self._destinations.get(request_id)
        if estimator is None or destination is None:
            return None
        return estimator.estimate(*destination)

    # ------------------------------------------------------------------
    # Lifecycle observer
    # ------------------------------------------------------------------

    async def on_transition(self, event: TransitionEvent) -> None:
        if event.old_status == RequestStatus.PENDING:
            await self.deactivate(ActorRole.CUSTOMER, event.customer_id)

        if event.new_status.is_tracking and event.provider_id is not None:
            destination = None
            if event.customer_lat is not None and event.customer_lng is not None:
                destination = (event.customer_lat, event.customer_lng)
            await self.activate_provider(event.request_id, event.provider_id, destination)
        else:
            await self.deactivate(ActorRole.PROVIDER, event.request_id)

    # ------------------------------------------------------------------
    # Sinks
    # ------------------------------------------------------------------

    async def _persist_provider(
        self, request_id: uuid.UUID, provider_id: uuid.UUID, sample: PositionSample
    ) -> None:
        async with self._session_factory() as session:
            written = await RequestRepository(session).update_provider_position(
                request_id, sample.lat, sample.lng, sample.at
            )
            await ProfileRepository(session).update_position(
                provider_id, sample.lat, sample.lng, sample.at
            )
            await session.commit()
        logger.debug("tracking.provider_flushed", request_id=str(request_id), written=written)

    async def _persist_customer(
        self, customer_id: uuid.UUID, request_id: uuid.UUID | None, sample: PositionSample
    ) -> None:
        async with self._session_factory() as session:
            await ProfileRepository(session).update_position(
                customer_id, sample.lat, sample.lng, sample.at
            )
            if request_id is not None:
                await RequestRepository(session).update_customer_position(
                    request_id, sample.lat, sample.lng
                )
            await session.commit()
        logger.debug("tracking.customer_flushed", customer_id=str(customer_id))

    def _new_estimator(self) -> EtaEstimator:
        return EtaEstimator(
            window_size=self._settings.eta_window_size,
            default_speed_kmh=self._settings.eta_default_speed_kmh,
            min_move_km=self._settings.eta_min_move_km,
            max_gap_seconds=self._settings.eta_max_gap_seconds,
        )


def _utc(at: datetime | None) -> datetime:
    return as_utc(at) if at is not None else datetime.now(UTC)
