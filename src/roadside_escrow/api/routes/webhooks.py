"""Inbound webhook routes.

Routes:
    POST   /api/v1/webhooks/paystack   - Gateway events (charge / transfer)
    POST   /api/v1/webhooks/db-change  - Datastore row-change events

The gateway retries any non-2xx response, so only a bad signature or a
malformed body is rejected. Every other failure is logged, rolled back and
acknowledged; redelivery would fail the same way.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from roadside_escrow.api.deps import get_db_session, get_dispatcher, get_settlement_service
from roadside_escrow.api.middleware import error_response
from roadside_escrow.domain.exceptions import AuthError, ValidationError
from roadside_escrow.logging_config import get_logger
from roadside_escrow.schemas.common import Envelope, ok
from roadside_escrow.schemas.payments import WebhookAck
from roadside_escrow.services.notification_service import NotificationDispatcher
from roadside_escrow.services.settlement_service import SettlementService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/api/v1/webhooks", tags=["Webhooks"])
logger = get_logger(__name__)


@router.post(
    "/paystack",
    response_model=Envelope[WebhookAck],
    summary="Paystack webhook",
)
async def paystack_webhook(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
    svc: SettlementService = Depends(get_settlement_service),
) -> Envelope[WebhookAck] | JSONResponse:
    raw_body = await request.body()
    signature = request.headers.get("X-Signature") or request.headers.get(
        "X-Paystack-Signature"
    )
    try:
        outcome = await svc.handle_webhook(raw_body, signature)
    except (AuthError, ValidationError) as exc:
        return error_response(400, exc.code, exc.message)
    except Exception as exc:
        logger.exception("webhook.processing_failed", error=str(exc))
        await session.rollback()
        return ok(WebhookAck(outcome="failed"))
    return ok(WebhookAck(outcome=outcome.value))


@router.post(
    "/db-change",
    response_model=Envelope[WebhookAck],
    summary="Datastore change event",
)
async def db_change_webhook(
    payload: dict[str, Any],
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> Envelope[WebhookAck]:
    sent = await dispatcher.handle_db_change(payload)
    return ok(WebhookAck(outcome=f"notified:{sent}"))
