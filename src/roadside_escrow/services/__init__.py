"""Application services: use case orchestration."""

from roadside_escrow.services.lifecycle_service import LifecycleService
from roadside_escrow.services.matching_service import MatchingService
from roadside_escrow.services.notification_service import NotificationDispatcher
from roadside_escrow.services.settlement_service import SettlementService
from roadside_escrow.services.tracking_service import LiveTracker

__all__ = [
    "LifecycleService",
    "LiveTracker",
    "MatchingService",
    "NotificationDispatcher",
    "SettlementService",
]
