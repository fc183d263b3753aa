"""Notification dispatch for lifecycle transitions.

Two delivery paths share one resolver:
    - inline: the dispatcher is a TransitionObserver on the lifecycle service
    - datastore: the dispatcher receives row-change events posted by the
      database (`{type, table, record, old_record}`)

Only the path selected by `notification_source` is active, so a transition is
never announced twice. Push failures are logged and swallowed here; they must
never roll back a lifecycle change.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from roadside_escrow.config import get_settings
from roadside_escrow.domain.enums import ActorRole, RequestStatus
from roadside_escrow.domain.exceptions import ExternalServiceError
from roadside_escrow.domain.notifications import Notification, resolve_notifications
from roadside_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from roadside_escrow.config import Settings
    from roadside_escrow.domain.events import TransitionEvent
    from roadside_escrow.infrastructure.push import PushSender

logger = get_logger(__name__)

REQUESTS_TABLE = "service_requests"


class NotificationDispatcher:
    def __init__(self, sender: PushSender, settings: Settings | None = None) -> None:
        self._sender = sender
        self._settings = settings or get_settings()

    @property
    def source(self) -> str:
        return self._settings.notification_source

    async def on_transition(self, event: TransitionEvent) -> None:
        if self.source != "inline":
            return
        await self.dispatch(
            old=event.old_status,
            new=event.new_status,
            driver=event.actor.role,
            customer_id=event.customer_id,
            provider_id=event.provider_id,
            request_id=event.request_id,
            tracking_code=event.tracking_code,
        )

    async def handle_db_change(self, payload: dict[str, Any]) -> int:
        """Dispatch from a datastore row-change event. Returns notifications sent."""
        if self.source != "datastore":
            logger.debug("notify.db_change_ignored", reason="inline_source")
            return 0
        if payload.get("table") != REQUESTS_TABLE or payload.get("type") != "UPDATE":
            return 0

        record = payload.get("record") or {}
        old_record = payload.get("old_record") or {}
        try:
            old = RequestStatus(old_record.get("status"))
            new = RequestStatus(record.get("status"))
            driver = ActorRole(record.get("last_actor_role"))
        except ValueError:
            logger.warning("notify.db_change_unparseable", record_id=record.get("id"))
            return 0
        if old == new:
            return 0

        return await self.dispatch(
            old=old,
            new=new,
            driver=driver,
            customer_id=_as_uuid(record.get("customer_id")),
            provider_id=_as_uuid(record.get("provider_id")),
            request_id=_as_uuid(record.get("id")),
            tracking_code=record.get("tracking_code") or "",
        )

    async def dispatch(
        self,
        old: RequestStatus,
        new: RequestStatus,
        driver: ActorRole,
        customer_id: uuid.UUID | None,
        provider_id: uuid.UUID | None,
        request_id: uuid.UUID | None,
        tracking_code: str,
    ) -> int:
        notifications = resolve_notifications(old, new, driver)
        sent = 0
        for notification in notifications:
            recipient = customer_id if notification.recipient == ActorRole.CUSTOMER else provider_id
            if recipient is None:
                logger.debug("notify.no_recipient", recipient=notification.recipient.value)
                continue
            if await self._deliver(recipient, notification, request_id, tracking_code):
                sent += 1
        return sent

    async def _deliver(
        self,
        recipient: uuid.UUID,
        notification: Notification,
        request_id: uuid.UUID | None,
        tracking_code: str,
    ) -> bool:
        data = {
            "requestId": str(request_id) if request_id else None,
            "trackingCode": tracking_code,
            "url": f"/track/{tracking_code}",
        }
        try:
            await self._sender.send(recipient, notification.title, notification.body, data)
        except ExternalServiceError as exc:
            logger.warning(
                "notify.delivery_failed",
                recipient=str(recipient),
                title=notification.title,
                error=exc.message,
            )
            return False
        return True


def _as_uuid(value: Any) -> uuid.UUID | None:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None
