"""In-process Paystack sandbox.

An httpx.MockTransport handler that answers the endpoints PaystackClient
uses, keeps the charges and transfers it has seen, and builds signed webhook
bodies for them. Used by the simulation script, the test suite, and local
development when PAYSTACK_SANDBOX=true (no network, no real money).
"""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from typing import Any

import httpx

from roadside_escrow.infrastructure.paystack import compute_signature
from roadside_escrow.logging_config import get_logger

logger = get_logger(__name__)

SANDBOX_SECRET = "sk_test_sandbox"

_BANKS = [
    {"id": 1, "name": "MTN Mobile Money", "code": "MTN", "type": "mobile_money"},
    {"id": 2, "name": "Vodafone Cash", "code": "VOD", "type": "mobile_money"},
    {"id": 3, "name": "AirtelTigo Money", "code": "ATL", "type": "mobile_money"},
    {"id": 4, "name": "GCB Bank", "code": "GCB", "type": "ghipss"},
    {"id": 5, "name": "Ecobank Ghana", "code": "ECO", "type": "ghipss"},
]


class PaystackSandbox:
    """Stateful fake of the Paystack REST API."""

    def __init__(self, secret_key: str = SANDBOX_SECRET, account_name: str = "KOFI MENSAH") -> None:
        self.secret_key = secret_key
        self.account_name = account_name
        self.charges: dict[str, dict[str, Any]] = {}
        self.transfers: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_paths: set[str] = set()

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls_to(self, path_prefix: str) -> int:
        return sum(1 for _, path in self.calls if path.startswith(path_prefix))

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))
        if path in self.fail_paths:
            return _reply(400, {"status": False, "message": f"Sandbox rejected {path}"})

        body = json.loads(request.content) if request.content else {}
        if request.method == "POST" and path == "/transaction/initialize":
            return self._initialize(body)
        if request.method == "GET" and path.startswith("/transaction/verify/"):
            return self._verify(path.rsplit("/", 1)[-1])
        if request.method == "POST" and path == "/transferrecipient":
            return _ok({"recipient_code": f"RCP_{uuid.uuid4().hex[:12]}"})
        if request.method == "POST" and path == "/transfer":
            return self._transfer(body)
        if request.method == "GET" and path == "/bank/resolve":
            return _ok(
                {
                    "account_number": request.url.params.get("account_number"),
                    "account_name": self.account_name,
                }
            )
        if request.method == "POST" and path == "/subaccount":
            return _ok({"subaccount_code": f"ACCT_{uuid.uuid4().hex[:10]}", **body})
        if request.method == "GET" and path == "/bank":
            banks = _BANKS
            if request.url.params.get("type") == "mobile_money":
                banks = [b for b in banks if b["type"] == "mobile_money"]
            return _ok(banks)
        return _reply(404, {"status": False, "message": f"Unknown sandbox route {path}"})

    def _initialize(self, body: dict[str, Any]) -> httpx.Response:
        reference = f"ref_{uuid.uuid4().hex[:16]}"
        self.charges[reference] = {
            "reference": reference,
            "amount": body["amount"],
            "currency": body.get("currency", "GHS"),
            "metadata": body.get("metadata") or {},
            "status": "pending",
        }
        return _ok(
            {
                "authorization_url": f"https://checkout.paystack.com/{reference}",
                "access_code": uuid.uuid4().hex[:12],
                "reference": reference,
            }
        )

    def _verify(self, reference: str) -> httpx.Response:
        charge = self.charges.get(reference)
        if charge is None:
            return _reply(404, {"status": False, "message": "Transaction reference not found"})
        return _ok({**charge, "channel": "mobile_money", "paid_at": charge.get("paid_at")})

    def _transfer(self, body: dict[str, Any]) -> httpx.Response:
        transfer_code = f"TRF_{uuid.uuid4().hex[:12]}"
        self.transfers[transfer_code] = {
            "transfer_code": transfer_code,
            "reference": body["reference"],
            "amount": body["amount"],
            "recipient": body["recipient"],
            "status": "pending",
        }
        return _ok(self.transfers[transfer_code])

    # ------------------------------------------------------------------
    # Customer / gateway actions
    # ------------------------------------------------------------------

    def pay(self, reference: str) -> None:
        """The customer completes checkout for a charge."""
        charge = self.charges[reference]
        charge["status"] = "success"
        charge["paid_at"] = datetime.now(UTC).isoformat()

    def charge_event(self, reference: str) -> bytes:
        charge = self.charges[reference]
        return _event_body(
            "charge.success",
            {
                "reference": reference,
                "amount": charge["amount"],
                "currency": charge["currency"],
                "channel": "mobile_money",
                "status": "success",
                "metadata": charge["metadata"],
            },
        )

    def transfer_event(self, event: str, transfer_code: str, reason: str | None = None) -> bytes:
        transfer = self.transfers[transfer_code]
        transfer["status"] = event.split(".", 1)[1]
        data = {"transfer_code": transfer_code, "reference": transfer["reference"]}
        if reason:
            data["reason"] = reason
        return _event_body(event, data)

    def sign(self, body: bytes) -> str:
        return compute_signature(body, self.secret_key)


def _event_body(event: str, data: dict[str, Any]) -> bytes:
    return json.dumps({"event": event, "data": data}).encode()


def _ok(data: Any) -> httpx.Response:
    return _reply(200, {"status": True, "message": "ok", "data": data})


def _reply(status_code: int, payload: dict[str, Any]) -> httpx.Response:
    return httpx.Response(status_code, json=payload)
