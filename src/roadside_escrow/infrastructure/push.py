"""OneSignal push sender.

Targets users by external id (the profile UUID). A sender built without
credentials is disabled and only logs what it would have sent.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx

from roadside_escrow.domain.exceptions import ExternalServiceError
from roadside_escrow.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from roadside_escrow.config import Settings

logger = get_logger(__name__)


class PushSender:
    def __init__(
        self,
        app_id: str,
        api_key: str,
        api_url: str = "https://onesignal.com/api/v1/notifications",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.app_id = app_id
        self.enabled = bool(app_id and api_key)
        self._api_url = api_url
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"Basic {api_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> PushSender:
        return cls(
            app_id=settings.onesignal_app_id,
            api_key=settings.onesignal_rest_api_key,
            api_url=settings.onesignal_api_url,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def send(
        self,
        user_id: uuid.UUID | str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        if not self.enabled:
            logger.info("push.disabled_skip", user_id=str(user_id), title=title)
            return None

        payload = {
            "app_id": self.app_id,
            "include_aliases": {"external_id": [str(user_id)]},
            "target_channel": "push",
            "headings": {"en": title},
            "contents": {"en": body},
            "data": data or {},
        }
        try:
            response = await self._client.post(self._api_url, json=payload)
        except httpx.HTTPError as exc:
            raise ExternalServiceError("onesignal", str(exc)) from exc
        if response.is_error:
            raise ExternalServiceError(
                "onesignal", response.text[:200], status_code=response.status_code
            )

        result = response.json()
        logger.info("push.sent", user_id=str(user_id), title=title, id=result.get("id"))
        return result
