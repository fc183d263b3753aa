"""Paystack REST client.

Thin async wrapper over the endpoints the settlement engine needs. Every call
has a bounded timeout; any non-success answer becomes ExternalServiceError.
Read-only calls (verify, bank list, account resolve) are retried on transport
errors. Charge initialization, transfers and recipient/subaccount creation
are never retried here: a retried transfer could pay a provider twice.

Usage:
    client = PaystackClient.from_settings(get_settings())
    charge = await client.initialize_transaction(
        email="ama@example.com", amount_minor=25000, metadata={...}
    )
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from roadside_escrow.domain.exceptions import ExternalServiceError
from roadside_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from roadside_escrow.config import Settings

logger = get_logger(__name__)

SERVICE_NAME = "paystack"


# ---------------------------------------------------------------------------
# Webhook signatures
# ---------------------------------------------------------------------------
def compute_signature(body: bytes, secret: str) -> str:
    """HMAC-SHA512 hex digest of the raw request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()


def verify_signature(body: bytes, signature: str, secret: str) -> bool:
    """Constant-time comparison of a received signature with the expected one."""
    if not secret or not signature:
        return False
    return hmac.compare_digest(compute_signature(body, secret), signature.strip().lower())


# ---------------------------------------------------------------------------
# Response types
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class ChargeInitialization:
    authorization_url: str
    access_code: str
    reference: str


@dataclass(frozen=True)
class ChargeVerification:
    status: str
    reference: str
    amount_minor: int
    currency: str
    paid_at: str | None
    channel: str | None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True)
class TransferInitiation:
    transfer_code: str
    status: str
    reference: str


@dataclass(frozen=True)
class Bank:
    id: int
    name: str
    code: str
    type: str | None
    is_mobile_money: bool


class PaystackClient:
    """Async client for the Paystack API."""

    def __init__(
        self,
        secret_key: str,
        base_url: str = "https://api.paystack.co",
        timeout: float = 15.0,
        currency: str = "GHS",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.secret_key = secret_key
        self.currency = currency
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {secret_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> PaystackClient:
        return cls(
            secret_key=settings.paystack_secret_key,
            base_url=settings.paystack_base_url,
            timeout=settings.paystack_timeout_seconds,
            currency=settings.paystack_currency,
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self._client.request(method, path, **kwargs)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _send_idempotent(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await self._send(method, path, **kwargs)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        idempotent: bool = False,
        **kwargs: Any,
    ) -> Any:
        send = self._send_idempotent if idempotent else self._send
        try:
            response = await send(method, path, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("paystack.transport_error", path=path, error=str(exc))
            raise ExternalServiceError(SERVICE_NAME, f"{method} {path} failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise ExternalServiceError(
                SERVICE_NAME,
                f"non-JSON response from {path}",
                status_code=response.status_code,
            ) from exc

        if response.is_error or not body.get("status"):
            message = body.get("message") or f"HTTP {response.status_code}"
            logger.warning(
                "paystack.request_rejected",
                path=path,
                status_code=response.status_code,
                message=message,
            )
            raise ExternalServiceError(SERVICE_NAME, message, status_code=response.status_code)
        return body.get("data")

    # ------------------------------------------------------------------
    # Charges
    # ------------------------------------------------------------------

    async def initialize_transaction(
        self,
        email: str,
        amount_minor: int,
        metadata: dict[str, Any],
        callback_url: str | None = None,
    ) -> ChargeInitialization:
        payload: dict[str, Any] = {
            "email": email,
            "amount": amount_minor,
            "currency": self.currency,
            "metadata": metadata,
        }
        if callback_url:
            payload["callback_url"] = callback_url

        data = await self._request("POST", "/transaction/initialize", json=payload)
        return ChargeInitialization(
            authorization_url=data["authorization_url"],
            access_code=data["access_code"],
            reference=data["reference"],
        )

    async def verify_transaction(self, reference: str) -> ChargeVerification:
        data = await self._request("GET", f"/transaction/verify/{reference}", idempotent=True)
        return ChargeVerification(
            status=data.get("status", ""),
            reference=data.get("reference", reference),
            amount_minor=int(data.get("amount") or 0),
            currency=data.get("currency", self.currency),
            paid_at=data.get("paid_at"),
            channel=data.get("channel"),
            metadata=data.get("metadata") or {},
        )

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    async def create_transfer_recipient(
        self,
        name: str,
        account_number: str,
        bank_code: str,
        recipient_type: str = "mobile_money",
    ) -> str:
        """Register a payout destination and return its recipient code."""
        data = await self._request(
            "POST",
            "/transferrecipient",
            json={
                "type": recipient_type,
                "name": name,
                "account_number": account_number,
                "bank_code": bank_code,
                "currency": self.currency,
            },
        )
        return data["recipient_code"]

    async def initiate_transfer(
        self,
        amount_minor: int,
        recipient_code: str,
        reference: str,
        reason: str,
    ) -> TransferInitiation:
        data = await self._request(
            "POST",
            "/transfer",
            json={
                "source": "balance",
                "amount": amount_minor,
                "recipient": recipient_code,
                "reason": reason,
                "reference": reference,
            },
        )
        return TransferInitiation(
            transfer_code=data["transfer_code"],
            status=data.get("status", "pending"),
            reference=data.get("reference", reference),
        )

    # ------------------------------------------------------------------
    # Payout accounts
    # ------------------------------------------------------------------

    async def resolve_account(self, account_number: str, bank_code: str) -> str:
        """Confirm account ownership; returns the registered account name."""
        data = await self._request(
            "GET",
            "/bank/resolve",
            params={"account_number": account_number, "bank_code": bank_code},
            idempotent=True,
        )
        return data["account_name"]

    async def create_subaccount(
        self,
        business_name: str,
        bank_code: str,
        account_number: str,
        percentage_charge: int,
        email: str | None,
        phone: str | None,
        metadata: dict[str, Any],
    ) -> str:
        data = await self._request(
            "POST",
            "/subaccount",
            json={
                "business_name": business_name,
                "settlement_bank": bank_code,
                "account_number": account_number,
                "percentage_charge": percentage_charge,
                "primary_contact_email": email,
                "primary_contact_phone": phone,
                "metadata": metadata,
            },
        )
        return data["subaccount_code"]

    async def list_banks(self, country: str, mobile_money: bool = False) -> list[Bank]:
        params: dict[str, Any] = {"country": country, "perPage": 100}
        if mobile_money:
            params["type"] = "mobile_money"
        data = await self._request("GET", "/bank", params=params, idempotent=True)
        return [
            Bank(
                id=bank["id"],
                name=bank["name"],
                code=bank["code"],
                type=bank.get("type"),
                is_mobile_money=bank.get("type") == "mobile_money",
            )
            for bank in data
        ]
