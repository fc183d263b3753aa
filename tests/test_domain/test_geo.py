"""Tests for provider matching.

These tests verify that:
    1. Haversine distances are correct on a known north-south offset.
    2. Providers inside the radius are ranked by distance, then rating.
    3. Stale, unavailable and unlocated providers are never matched.
    4. When nobody is inside the radius, the closest provider is the fallback.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest

from roadside_escrow.domain.geo import (
    MatchMode,
    ProviderSnapshot,
    closest_fallback,
    haversine_km,
    match_providers,
    rank_nearby,
)
from tests.helpers import CUSTOMER_POINT, north_of

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
MAX_AGE = timedelta(minutes=5)
LAT, LNG = CUSTOMER_POINT


def snapshot(
    km: float,
    avg_rating: float = 0.0,
    age: timedelta = timedelta(seconds=30),
    is_available: bool = True,
    name: str = "Provider",
) -> ProviderSnapshot:
    lat, lng = north_of(LAT, LNG, km)
    return ProviderSnapshot(
        provider_id=uuid.uuid4(),
        full_name=name,
        lat=lat,
        lng=lng,
        located_at=NOW - age,
        is_available=is_available,
        avg_rating=avg_rating,
    )


class TestHaversine:
    def test_zero_distance(self) -> None:
        assert haversine_km(LAT, LNG, LAT, LNG) == 0.0

    def test_north_offset(self) -> None:
        lat, lng = north_of(LAT, LNG, 3.4)
        assert haversine_km(LAT, LNG, lat, lng) == pytest.approx(3.4, abs=1e-6)

    def test_symmetric(self) -> None:
        a = haversine_km(5.6, -0.19, 6.69, -1.62)
        b = haversine_km(6.69, -1.62, 5.6, -0.19)
        assert a == pytest.approx(b)
        # Accra to Kumasi is roughly 200 km as the crow flies.
        assert 190 < a < 210


class TestRankNearby:
    def test_ranked_by_distance_within_radius(self) -> None:
        far, near, mid = snapshot(8.0), snapshot(1.2), snapshot(3.4)
        ranked = rank_nearby([far, near, mid], LAT, LNG, 5.0, NOW, MAX_AGE)

        assert [c.provider_id for c in ranked] == [near.provider_id, mid.provider_id]
        assert ranked[0].distance_km == pytest.approx(1.2, abs=1e-6)
        assert ranked[1].distance_km == pytest.approx(3.4, abs=1e-6)

    def test_rating_breaks_distance_ties(self) -> None:
        low, high = snapshot(2.0, avg_rating=3.5), snapshot(2.0, avg_rating=4.8)
        ranked = rank_nearby([low, high], LAT, LNG, 5.0, NOW, MAX_AGE)
        assert [c.provider_id for c in ranked] == [high.provider_id, low.provider_id]

    def test_stale_provider_excluded(self) -> None:
        stale = snapshot(1.0, age=timedelta(minutes=6))
        assert rank_nearby([stale], LAT, LNG, 5.0, NOW, MAX_AGE) == []

    def test_unavailable_provider_excluded(self) -> None:
        offline = snapshot(1.0, is_available=False)
        assert rank_nearby([offline], LAT, LNG, 5.0, NOW, MAX_AGE) == []

    def test_unlocated_provider_excluded(self) -> None:
        ghost = ProviderSnapshot(
            provider_id=uuid.uuid4(), full_name="Ghost", lat=None, lng=None, located_at=NOW
        )
        assert rank_nearby([ghost], LAT, LNG, 5.0, NOW, MAX_AGE) == []

    def test_naive_timestamp_treated_as_utc(self) -> None:
        snap = snapshot(1.0)
        naive = ProviderSnapshot(
            provider_id=snap.provider_id,
            full_name=snap.full_name,
            lat=snap.lat,
            lng=snap.lng,
            located_at=(NOW - timedelta(seconds=10)).replace(tzinfo=None),
        )
        assert len(rank_nearby([naive], LAT, LNG, 5.0, NOW, MAX_AGE)) == 1


class TestFallback:
    def test_closest_provider_outside_radius(self) -> None:
        far, farther = snapshot(8.0), snapshot(12.0)
        closest = closest_fallback([farther, far], LAT, LNG, NOW, MAX_AGE)
        assert closest is not None
        assert closest.provider_id == far.provider_id

    def test_no_eligible_provider(self) -> None:
        assert closest_fallback([snapshot(1.0, is_available=False)], LAT, LNG, NOW, MAX_AGE) is None


class TestMatchProviders:
    def test_ranked_mode_when_someone_is_near(self) -> None:
        result = match_providers(
            [snapshot(1.2), snapshot(3.4), snapshot(8.0)], LAT, LNG, 5.0, NOW, MAX_AGE
        )
        assert result.mode is MatchMode.RANKED
        assert len(result.candidates) == 2
        assert result.fallback is None

    def test_fallback_mode_when_nobody_in_radius(self) -> None:
        far = snapshot(8.0)
        result = match_providers([far, snapshot(15.0)], LAT, LNG, 5.0, NOW, MAX_AGE)
        assert result.mode is MatchMode.FALLBACK
        assert result.fallback is not None
        assert result.fallback.provider_id == far.provider_id

    def test_none_mode_without_providers(self) -> None:
        result = match_providers([], LAT, LNG, 5.0, NOW, MAX_AGE)
        assert result.mode is MatchMode.NONE
        assert result.candidates == ()
