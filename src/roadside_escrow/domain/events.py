"""Lifecycle transition events and the observer interface that consumes them."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from roadside_escrow.domain.enums import RequestStatus
from roadside_escrow.domain.state_machine import Actor


@dataclass(frozen=True)
class TransitionEvent:
    """Published after a status change has been persisted."""

    request_id: uuid.UUID
    tracking_code: str
    customer_id: uuid.UUID
    provider_id: uuid.UUID | None
    old_status: RequestStatus
    new_status: RequestStatus
    actor: Actor
    customer_lat: float | None = None
    customer_lng: float | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@runtime_checkable
class TransitionObserver(Protocol):
    async def on_transition(self, event: TransitionEvent) -> None:
        """React to a persisted transition. Failures must not propagate."""
        ...
