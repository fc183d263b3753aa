"""Smoothed speed and arrival-time estimation from provider position samples."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime

from roadside_escrow.domain.geo import as_utc, haversine_km


@dataclass(frozen=True)
class PositionSample:
    lat: float
    lng: float
    at: datetime


@dataclass(frozen=True)
class EtaEstimate:
    distance_km: float
    speed_kmh: float
    eta_minutes: float
    samples_in_window: int


class EtaEstimator:
    """Keeps a bounded window of instantaneous speeds between consecutive samples.

    A pair of samples contributes a speed only if the provider moved more than
    `min_move_km` and the gap is strictly between zero and `max_gap_seconds`;
    anything else is GPS jitter or a stale pair. Until a pair is accepted the
    estimator assumes `default_speed_kmh`.
    """

    def __init__(
        self,
        window_size: int = 10,
        default_speed_kmh: float = 40.0,
        min_move_km: float = 0.01,
        max_gap_seconds: float = 180.0,
    ) -> None:
        self.default_speed_kmh = default_speed_kmh
        self.min_move_km = min_move_km
        self.max_gap_seconds = max_gap_seconds
        self._speeds: deque[float] = deque(maxlen=window_size)
        self._last: PositionSample | None = None

    @property
    def last_sample(self) -> PositionSample | None:
        return self._last

    @property
    def speed_kmh(self) -> float:
        if not self._speeds:
            return self.default_speed_kmh
        return sum(self._speeds) / len(self._speeds)

    def observe(self, lat: float, lng: float, at: datetime) -> bool:
        """Record a provider position. Returns True if it produced a speed sample."""
        sample = PositionSample(lat=lat, lng=lng, at=as_utc(at))
        previous, self._last = self._last, sample
        if previous is None:
            return False

        moved_km = haversine_km(previous.lat, previous.lng, sample.lat, sample.lng)
        elapsed_s = (sample.at - previous.at).total_seconds()
        if moved_km <= self.min_move_km or not 0 < elapsed_s < self.max_gap_seconds:
            return False

        self._speeds.append(moved_km / (elapsed_s / 3600))
        return True

    def estimate(self, dest_lat: float, dest_lng: float) -> EtaEstimate | None:
        """ETA from the last observed position to the destination."""
        if self._last is None:
            return None
        return self.estimate_from(self._last.lat, self._last.lng, dest_lat, dest_lng)

    def estimate_from(
        self, lat: float, lng: float, dest_lat: float, dest_lng: float
    ) -> EtaEstimate:
        distance = haversine_km(lat, lng, dest_lat, dest_lng)
        speed = self.speed_kmh
        return EtaEstimate(
            distance_km=distance,
            speed_kmh=speed,
            eta_minutes=distance / speed * 60,
            samples_in_window=len(self._speeds),
        )

    def reset(self) -> None:
        self._speeds.clear()
        self._last = None
