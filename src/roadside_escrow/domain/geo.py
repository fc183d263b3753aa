"""Provider matching by great-circle distance.

Pure functions over provider location snapshots; the repository layer loads
the snapshots, this module ranks them.
"""

from __future__ import annotations

import enum
import math
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points, in kilometres."""
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(dlng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@dataclass(frozen=True)
class ProviderSnapshot:
    """A provider's single authoritative position, as stored on the profile."""

    provider_id: uuid.UUID
    full_name: str
    lat: float | None
    lng: float | None
    located_at: datetime | None
    is_available: bool = True
    avg_rating: float = 0.0
    total_reviews: int = 0
    phone_number: str | None = None
    avatar_url: str | None = None
    years_experience: int | None = None

    def is_fresh(self, now: datetime, max_age: timedelta) -> bool:
        if self.lat is None or self.lng is None or self.located_at is None:
            return False
        return now - as_utc(self.located_at) <= max_age


@dataclass(frozen=True)
class Candidate:
    snapshot: ProviderSnapshot
    distance_km: float

    @property
    def provider_id(self) -> uuid.UUID:
        return self.snapshot.provider_id


class MatchMode(enum.StrEnum):
    RANKED = "ranked"  # customer picks from the list
    FALLBACK = "fallback"  # system assigns the single closest provider
    NONE = "none"


@dataclass(frozen=True)
class MatchResult:
    mode: MatchMode
    candidates: tuple[Candidate, ...] = field(default_factory=tuple)

    @property
    def fallback(self) -> Candidate | None:
        if self.mode is MatchMode.FALLBACK:
            return self.candidates[0]
        return None


def _eligible(
    snapshots: Iterable[ProviderSnapshot],
    lat: float,
    lng: float,
    now: datetime,
    max_age: timedelta,
) -> list[Candidate]:
    eligible = []
    for snap in snapshots:
        if not snap.is_available or not snap.is_fresh(now, max_age):
            continue
        distance = haversine_km(lat, lng, snap.lat, snap.lng)  # type: ignore[arg-type]
        eligible.append(Candidate(snapshot=snap, distance_km=distance))
    return eligible


def _rank_key(candidate: Candidate) -> tuple[float, float, str]:
    return (candidate.distance_km, -candidate.snapshot.avg_rating, str(candidate.provider_id))


def rank_nearby(
    snapshots: Iterable[ProviderSnapshot],
    lat: float,
    lng: float,
    radius_km: float,
    now: datetime,
    max_age: timedelta,
) -> list[Candidate]:
    """Available, fresh providers within `radius_km`.

    Ordered by distance ascending, then average rating descending, then
    provider id so the order is deterministic.
    """
    within = [c for c in _eligible(snapshots, lat, lng, now, max_age) if c.distance_km <= radius_km]
    return sorted(within, key=_rank_key)


def closest_fallback(
    snapshots: Iterable[ProviderSnapshot],
    lat: float,
    lng: float,
    now: datetime,
    max_age: timedelta,
) -> Candidate | None:
    """The single globally closest available, fresh provider. Radius is ignored."""
    eligible = _eligible(snapshots, lat, lng, now, max_age)
    if not eligible:
        return None
    return min(eligible, key=_rank_key)


def match_providers(
    snapshots: Iterable[ProviderSnapshot],
    lat: float,
    lng: float,
    radius_km: float,
    now: datetime,
    max_age: timedelta,
) -> MatchResult:
    """Rank nearby providers, or fall back to the closest one anywhere."""
    snapshots = list(snapshots)
    ranked = rank_nearby(snapshots, lat, lng, radius_km, now, max_age)
    if ranked:
        return MatchResult(mode=MatchMode.RANKED, candidates=tuple(ranked))

    closest = closest_fallback(snapshots, lat, lng, now, max_age)
    if closest is None:
        return MatchResult(mode=MatchMode.NONE)
    return MatchResult(mode=MatchMode.FALLBACK, candidates=(closest,))
