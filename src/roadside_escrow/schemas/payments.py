"""Pydantic schemas for escrow payments, payouts and webhooks."""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any, Literal

from pydantic import Field

from roadside_escrow.schemas.common import ApiModel


class InitializePaymentRequest(ApiModel):
    """Request body for opening a gateway charge for the quoted amount."""

    service_request_id: uuid.UUID
    email: str = Field(
        ...,
        min_length=3,
        max_length=255,
        description="Customer email, required by the gateway",
        examples=["ama@example.com"],
    )
    callback_url: str | None = Field(
        default=None,
        description="Where the gateway redirects after checkout. "
        "Defaults to the public tracking page.",
    )


class InitializePaymentResponse(ApiModel):
    authorization_url: str
    access_code: str
    reference: str


class VerifyPaymentRequest(ApiModel):
    reference: str = Field(..., min_length=1, max_length=100)


class VerifyPaymentResponse(ApiModel):
    success: bool
    status: str
    amount: Decimal
    currency: str
    reference: str
    paid_at: str | None
    channel: str | None
    metadata: dict[str, Any]


class TransferRequest(ApiModel):
    service_request_id: uuid.UUID


class TransferResponse(ApiModel):
    transfer_code: str
    status: str
    amount: Decimal


class PayoutAccountRequest(ApiModel):
    """Request body for a provider registering where payouts go."""

    business_name: str | None = Field(default=None, max_length=120)
    account_number: str = Field(..., min_length=6, max_length=20, examples=["0241234567"])
    bank_code: str = Field(
        ...,
        min_length=2,
        max_length=10,
        description="Bank or mobile-money operator code from /payments/banks",
        examples=["MTN"],
    )
    account_type: Literal["mobile_money", "bank"] = "mobile_money"


class PayoutAccountResponse(ApiModel):
    subaccount_code: str
    account_name: str


class BankResponse(ApiModel):
    id: int
    name: str
    code: str
    type: str | None
    is_mobile_money: bool


class WebhookAck(ApiModel):
    received: bool = True
    outcome: str
