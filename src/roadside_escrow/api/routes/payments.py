"""Escrow payment REST API routes.

Routes:
    POST   /api/v1/payments/initialize      - Open a gateway charge
    POST   /api/v1/payments/verify          - Poll a charge by reference
    POST   /api/v1/payments/transfer        - Release the provider share
    POST   /api/v1/payments/transfer/retry  - Retry a failed/reversed payout
    POST   /api/v1/payments/payout-account  - Register provider payout account
    GET    /api/v1/payments/banks           - Banks and mobile-money operators
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from roadside_escrow.api.deps import get_actor, get_settlement_service
from roadside_escrow.domain.enums import ActorRole
from roadside_escrow.domain.exceptions import AuthError
from roadside_escrow.domain.state_machine import Actor
from roadside_escrow.logging_config import get_logger
from roadside_escrow.schemas.common import Envelope, ok
from roadside_escrow.schemas.payments import (
    BankResponse,
    InitializePaymentRequest,
    InitializePaymentResponse,
    PayoutAccountRequest,
    PayoutAccountResponse,
    TransferRequest,
    TransferResponse,
    VerifyPaymentRequest,
    VerifyPaymentResponse,
)
from roadside_escrow.services.settlement_service import SettlementService, TransferResult

router = APIRouter(prefix="/api/v1/payments", tags=["Payments"])
logger = get_logger(__name__)

# Who may release escrow: the customer (by confirming first) or an operator.
_RELEASERS = frozenset({ActorRole.CUSTOMER, ActorRole.ADMIN})


def _transfer_response(result: TransferResult) -> TransferResponse:
    return TransferResponse(
        transfer_code=result.transfer_code,
        status=result.status,
        amount=result.amount,
    )


@router.post(
    "/initialize",
    response_model=Envelope[InitializePaymentResponse],
    summary="Initialize payment for an accepted quote",
)
async def initialize_payment(
    body: InitializePaymentRequest,
    actor: Actor = Depends(get_actor),
    svc: SettlementService = Depends(get_settlement_service),
) -> Envelope[InitializePaymentResponse]:
    charge = await svc.initialize_payment(
        request_id=body.service_request_id,
        email=body.email,
        callback_url=body.callback_url,
        actor=actor,
    )
    return ok(
        InitializePaymentResponse(
            authorization_url=charge.authorization_url,
            access_code=charge.access_code,
            reference=charge.reference,
        )
    )


@router.post(
    "/verify",
    response_model=Envelope[VerifyPaymentResponse],
    summary="Verify a charge with the gateway",
)
async def verify_payment(
    body: VerifyPaymentRequest,
    svc: SettlementService = Depends(get_settlement_service),
) -> Envelope[VerifyPaymentResponse]:
    """Fallback for a missed webhook; records the charge exactly like the webhook."""
    result = await svc.verify_payment(body.reference)
    return ok(
        VerifyPaymentResponse(
            success=result.success,
            status=result.status,
            amount=result.amount,
            currency=result.currency,
            reference=result.reference,
            paid_at=result.paid_at,
            channel=result.channel,
            metadata=result.metadata,
        )
    )


@router.post(
    "/transfer",
    response_model=Envelope[TransferResponse],
    summary="Transfer the provider share",
)
async def transfer_to_provider(
    body: TransferRequest,
    actor: Actor = Depends(get_actor),
    svc: SettlementService = Depends(get_settlement_service),
) -> Envelope[TransferResponse]:
    if actor.role not in _RELEASERS:
        raise AuthError("Only the customer or an operator can release escrow")
    result = await svc.transfer_to_provider(body.service_request_id, actor=actor)
    return ok(_transfer_response(result))


@router.post(
    "/transfer/retry",
    response_model=Envelope[TransferResponse],
    summary="Retry a failed or reversed transfer",
)
async def retry_transfer(
    body: TransferRequest,
    actor: Actor = Depends(get_actor),
    svc: SettlementService = Depends(get_settlement_service),
) -> Envelope[TransferResponse]:
    if actor.role != ActorRole.ADMIN:
        raise AuthError("Only an operator can retry a transfer")
    result = await svc.retry_transfer(body.service_request_id, actor=actor)
    return ok(_transfer_response(result))


@router.post(
    "/payout-account",
    response_model=Envelope[PayoutAccountResponse],
    summary="Register the acting provider's payout account",
)
async def setup_payout_account(
    body: PayoutAccountRequest,
    actor: Actor = Depends(get_actor),
    svc: SettlementService = Depends(get_settlement_service),
) -> Envelope[PayoutAccountResponse]:
    if actor.role != ActorRole.PROVIDER:
        raise AuthError("Only providers have payout accounts")
    account = await svc.setup_payout_account(
        profile_id=actor.id,  # type: ignore[arg-type]
        business_name=body.business_name,
        account_number=body.account_number,
        bank_code=body.bank_code,
        account_type=body.account_type,
    )
    return ok(
        PayoutAccountResponse(
            subaccount_code=account.subaccount_code,
            account_name=account.account_name,
        )
    )


@router.get(
    "/banks",
    response_model=Envelope[list[BankResponse]],
    summary="List banks and mobile-money operators",
)
async def list_banks(
    country: str | None = Query(default=None),
    mobile_money: bool = Query(default=False),
    svc: SettlementService = Depends(get_settlement_service),
) -> Envelope[list[BankResponse]]:
    banks = await svc.list_banks(country=country, mobile_money=mobile_money)
    return ok([BankResponse.model_validate(bank) for bank in banks])
