"""HTTP tests for the REST surface.

The app is driven in-process through httpx's ASGI transport. The lifespan
does not run: app.state is wired by hand with the SQLite session, the
Paystack sandbox and a tracker whose flush loops never fire.
"""

from __future__ import annotations

import json
import uuid

import httpx
import pytest
import pytest_asyncio

from roadside_escrow.api.deps import get_db_session
from roadside_escrow.domain.enums import ProfileRole
from roadside_escrow.infrastructure.push import PushSender
from roadside_escrow.main import create_app
from roadside_escrow.services.notification_service import NotificationDispatcher
from roadside_escrow.services.tracking_service import LiveTracker
from tests.helpers import CUSTOMER_POINT, make_profile, north_of

API = "/api/v1"


def as_actor(role: str, actor_id: uuid.UUID | None = None) -> dict[str, str]:
    headers = {"X-Actor-Role": role}
    if actor_id is not None:
        headers["X-Actor-Id"] = str(actor_id)
    return headers


@pytest_asyncio.fixture
async def client(session, session_factory, settings, gateway):  # noqa: ANN001, ANN201
    app = create_app()

    async def override_session():  # noqa: ANN202
        yield session

    app.dependency_overrides[get_db_session] = override_session

    push = PushSender("", "")
    dispatcher = NotificationDispatcher(push, settings)
    tracker = LiveTracker(
        session_factory,
        settings.model_copy(
            update={"provider_flush_interval_seconds": 60, "customer_flush_interval_seconds": 60}
        ),
    )
    app.state.gateway = gateway
    app.state.dispatcher = dispatcher
    app.state.tracker = tracker
    app.state.observers = (dispatcher, tracker)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    await tracker.shutdown()
    await push.close()


@pytest.fixture
def customer_headers(customer) -> dict[str, str]:  # noqa: ANN001
    return as_actor("customer", customer.id)


@pytest.fixture
def provider_headers(provider) -> dict[str, str]:  # noqa: ANN001
    return as_actor("provider", provider.id)


async def create_request(client: httpx.AsyncClient, headers: dict[str, str]) -> dict:
    response = await client.post(
        f"{API}/requests",
        json={
            "serviceType": "tire_change",
            "customerLat": CUSTOMER_POINT[0],
            "customerLng": CUSTOMER_POINT[1],
            "location": "Spintex Road",
        },
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def accepted_request(
    client: httpx.AsyncClient,
    customer_headers: dict[str, str],
    provider_headers: dict[str, str],
    provider_id: uuid.UUID,
) -> str:
    request_id = (await create_request(client, customer_headers))["id"]
    steps = [
        ("assign", {"providerId": str(provider_id)}, customer_headers),
        ("quote", {"amount": "100.00", "description": "Spare fitted"}, provider_headers),
        ("accept", None, customer_headers),
    ]
    for action, body, headers in steps:
        response = await client.post(
            f"{API}/requests/{request_id}/{action}", json=body, headers=headers
        )
        assert response.status_code == 200, response.text
    return request_id


class TestRequests:
    @pytest.mark.asyncio
    async def test_create_returns_camel_case(self, client, customer_headers) -> None:  # noqa: ANN001
        data = await create_request(client, customer_headers)
        assert data["status"] == "pending"
        assert data["paymentStatus"] == "unpaid"
        assert len(data["trackingCode"]) == 8
        assert data["providerId"] is None

    @pytest.mark.asyncio
    async def test_public_tracking_view(self, client, customer_headers) -> None:  # noqa: ANN001
        data = await create_request(client, customer_headers)
        response = await client.get(f"{API}/track/{data['trackingCode'].lower()}")

        assert response.status_code == 200
        view = response.json()["data"]
        assert view["status"] == "pending"
        assert "customerId" not in view

    @pytest.mark.asyncio
    async def test_quote_flow_and_audit_trail(
        self, client, customer_headers, provider_headers, provider  # noqa: ANN001
    ) -> None:
        request_id = await accepted_request(client, customer_headers, provider_headers, provider.id)

        data = (await client.get(f"{API}/requests/{request_id}")).json()["data"]
        assert data["status"] == "accepted"
        assert data["quotedAmount"] == "100.00"

        events = (await client.get(f"{API}/requests/{request_id}/events")).json()["data"]
        assert [e["newStatus"] for e in events] == ["pending", "assigned", "quoted", "accepted"]
        assert events[0]["eventType"] == "REQUEST_CREATED"

    @pytest.mark.asyncio
    async def test_cancel_with_reason(
        self, client, customer_headers, provider_headers, provider  # noqa: ANN001
    ) -> None:
        request_id = (await create_request(client, customer_headers))["id"]
        response = await client.post(
            f"{API}/requests/{request_id}/cancel",
            json={"reason": "Fixed it myself"},
            headers=customer_headers,
        )
        assert response.json()["data"]["status"] == "cancelled"

        events = (await client.get(f"{API}/requests/{request_id}/events")).json()["data"]
        assert events[-1]["metadata"]["reason"] == "Fixed it myself"


class TestErrorEnvelope:
    @pytest.mark.asyncio
    async def test_missing_actor_is_unauthorized(self, client) -> None:  # noqa: ANN001
        response = await client.post(
            f"{API}/requests",
            json={"serviceType": "towing", "customerLat": 5.6, "customerLng": -0.19},
        )
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": {"code": "AUTH_ERROR", "message": "Missing X-Actor-Role header"},
        }

    @pytest.mark.asyncio
    async def test_system_role_cannot_be_claimed(self, client, customer) -> None:  # noqa: ANN001
        response = await client.post(
            f"{API}/requests",
            json={"serviceType": "towing", "customerLat": 5.6, "customerLng": -0.19},
            headers=as_actor("system", customer.id),
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_request_is_not_found(self, client) -> None:  # noqa: ANN001
        response = await client.get(f"{API}/requests/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["success"] is False

    @pytest.mark.asyncio
    async def test_illegal_transition_is_conflict(
        self, client, customer_headers, provider_headers  # noqa: ANN001
    ) -> None:
        request_id = (await create_request(client, customer_headers))["id"]
        response = await client.post(
            f"{API}/requests/{request_id}/depart", headers=provider_headers
        )
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "ILLEGAL_TRANSITION"

    @pytest.mark.asyncio
    async def test_invalid_body_is_validation_error(self, client, customer_headers) -> None:  # noqa: ANN001
        response = await client.post(
            f"{API}/requests",
            json={"serviceType": "teleport", "customerLat": 5.6, "customerLng": -0.19},
            headers=customer_headers,
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert "serviceType" in body["error"]["message"]


class TestMatching:
    @pytest.mark.asyncio
    async def test_candidates_ranked_inside_radius(
        self, client, customer_headers, provider  # noqa: ANN001
    ) -> None:
        request_id = (await create_request(client, customer_headers))["id"]
        response = await client.get(f"{API}/requests/{request_id}/candidates")

        match = response.json()["data"]
        assert match["mode"] == "ranked"
        assert match["fallback"] is False
        assert [c["providerId"] for c in match["candidates"]] == [str(provider.id)]
        assert match["candidates"][0]["distanceKm"] == pytest.approx(1.0, abs=1e-3)

    @pytest.mark.asyncio
    async def test_auto_assign_falls_back_to_closest(
        self, client, session, customer_headers  # noqa: ANN001
    ) -> None:
        far = await make_profile(
            session, ProfileRole.PROVIDER, "Far Away", position=north_of(*CUSTOMER_POINT, 30.0)
        )
        request_id = (await create_request(client, customer_headers))["id"]

        response = await client.post(
            f"{API}/requests/{request_id}/auto-assign", headers=customer_headers
        )
        data = response.json()["data"]
        assert data["match"]["fallback"] is True
        assert data["request"]["status"] == "assigned"
        assert data["request"]["providerId"] == str(far.id)

    @pytest.mark.asyncio
    async def test_provider_goes_offline(self, client, provider, provider_headers) -> None:  # noqa: ANN001
        response = await client.post(
            f"{API}/providers/{provider.id}/availability",
            json={"isAvailable": False},
            headers=provider_headers,
        )
        data = response.json()["data"]
        assert data["isAvailable"] is False
        assert data["currentLat"] is None

    @pytest.mark.asyncio
    async def test_cannot_toggle_another_provider(
        self, client, provider, customer_headers  # noqa: ANN001
    ) -> None:
        response = await client.post(
            f"{API}/providers/{provider.id}/availability",
            json={"isAvailable": False},
            headers=customer_headers,
        )
        assert response.status_code == 401


class TestPaymentFlow:
    @pytest.mark.asyncio
    async def test_charge_webhook_then_payout(
        self, client, sandbox, customer_headers, provider_headers, provider  # noqa: ANN001
    ) -> None:
        request_id = await accepted_request(client, customer_headers, provider_headers, provider.id)

        response = await client.post(
            f"{API}/payments/initialize",
            json={"serviceRequestId": request_id, "email": "ama@example.com"},
            headers=customer_headers,
        )
        assert response.status_code == 200, response.text
        reference = response.json()["data"]["reference"]

        sandbox.pay(reference)
        body = sandbox.charge_event(reference)
        signed = {"X-Paystack-Signature": sandbox.sign(body), "Content-Type": "application/json"}
        first = await client.post(f"{API}/webhooks/paystack", content=body, headers=signed)
        again = await client.post(f"{API}/webhooks/paystack", content=body, headers=signed)
        assert first.json()["data"]["outcome"] == "processed"
        assert again.json()["data"]["outcome"] == "duplicate"

        data = (await client.get(f"{API}/requests/{request_id}")).json()["data"]
        assert data["status"] == "paid"
        assert data["amount"] == "100.00"

        for action in ("depart", "start"):
            await client.post(f"{API}/requests/{request_id}/{action}", headers=provider_headers)
        confirmed = await client.post(
            f"{API}/requests/{request_id}/confirm", json={"rating": 5}, headers=customer_headers
        )
        assert confirmed.json()["data"]["status"] == "completed"

        transfer = await client.post(
            f"{API}/payments/transfer",
            json={"serviceRequestId": request_id},
            headers=customer_headers,
        )
        assert transfer.status_code == 200, transfer.text
        assert transfer.json()["data"]["amount"] == "85.00"

    @pytest.mark.asyncio
    async def test_forged_webhook_rejected(
        self, client, customer_headers, provider_headers, provider  # noqa: ANN001
    ) -> None:
        body = json.dumps({"event": "charge.success", "data": {"reference": "RSA-FAKE"}}).encode()
        response = await client.post(
            f"{API}/webhooks/paystack",
            content=body,
            headers={"X-Paystack-Signature": "0" * 128},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "AUTH_ERROR"

    @pytest.mark.asyncio
    async def test_non_numeric_amount_is_bad_request(self, client, sandbox) -> None:  # noqa: ANN001
        body = json.dumps(
            {"event": "charge.success", "data": {"reference": "RSA-ANY", "amount": "abc"}}
        ).encode()
        response = await client.post(
            f"{API}/webhooks/paystack",
            content=body,
            headers={"X-Paystack-Signature": sandbox.sign(body)},
        )
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_provider_cannot_release_escrow(
        self, client, provider_headers  # noqa: ANN001
    ) -> None:
        response = await client.post(
            f"{API}/payments/transfer",
            json={"serviceRequestId": str(uuid.uuid4())},
            headers=provider_headers,
        )
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_db_change_ignored_when_inline(self, client) -> None:  # noqa: ANN001
        response = await client.post(
            f"{API}/webhooks/db-change",
            json={"type": "UPDATE", "table": "service_requests", "record": {}},
        )
        assert response.json()["data"]["outcome"] == "notified:0"


class TestTracking:
    @pytest.mark.asyncio
    async def test_departure_enables_eta(
        self, client, sandbox, customer_headers, provider_headers, provider  # noqa: ANN001
    ) -> None:
        request_id = await accepted_request(client, customer_headers, provider_headers, provider.id)
        reference = (
            await client.post(
                f"{API}/payments/initialize",
                json={"serviceRequestId": request_id, "email": "ama@example.com"},
                headers=customer_headers,
            )
        ).json()["data"]["reference"]
        sandbox.pay(reference)
        body = sandbox.charge_event(reference)
        await client.post(
            f"{API}/webhooks/paystack",
            content=body,
            headers={"X-Paystack-Signature": sandbox.sign(body)},
        )

        idle = (await client.get(f"{API}/tracking/requests/{request_id}/eta")).json()["data"]
        assert idle["active"] is False
        assert idle["etaMinutes"] is None

        await client.post(f"{API}/requests/{request_id}/depart", headers=provider_headers)
        lat, lng = north_of(*CUSTOMER_POINT, 4.0)
        response = await client.post(
            f"{API}/tracking/requests/{request_id}/provider",
            json={"lat": lat, "lng": lng},
            headers=provider_headers,
        )
        assert response.status_code == 200, response.text
        eta = response.json()["data"]
        assert eta["active"] is True
        assert eta["etaMinutes"] == pytest.approx(6.0)

        current = (await client.get(f"{API}/tracking/requests/{request_id}/eta")).json()["data"]
        assert current["distanceKm"] == pytest.approx(4.0, abs=1e-3)

    @pytest.mark.asyncio
    async def test_sample_without_tracking_is_precondition(
        self, client, provider_headers  # noqa: ANN001
    ) -> None:
        response = await client.post(
            f"{API}/tracking/requests/{uuid.uuid4()}/provider",
            json={"lat": 5.6, "lng": -0.19},
            headers=provider_headers,
        )
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_customer_streams_only_own_position(
        self, client, customer, customer_headers  # noqa: ANN001
    ) -> None:
        activated = await client.post(
            f"{API}/tracking/customers/{customer.id}/activate", headers=customer_headers
        )
        assert activated.json()["data"]["active"] is True

        sample = await client.post(
            f"{API}/tracking/customers/{customer.id}",
            json={"lat": CUSTOMER_POINT[0], "lng": CUSTOMER_POINT[1]},
            headers=customer_headers,
        )
        assert sample.status_code == 200

        other = await client.post(
            f"{API}/tracking/customers/{uuid.uuid4()}",
            json={"lat": 5.6, "lng": -0.19},
            headers=customer_headers,
        )
        assert other.status_code == 401
