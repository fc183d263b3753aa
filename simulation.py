#!/usr/bin/env python3
"""Roadside Escrow: End-to-End Simulation.

Drives service requests through the real services against a database and the
in-process Paystack sandbox (no network, no real money).

    Scenario 1: Happy Path
        - Customer requests a tire change; nearest provider is auto-assigned
        - Provider quotes, customer accepts and pays (signed charge webhook)
        - Provider departs; live samples produce an ETA and are flushed
        - Provider finishes, customer confirms with a rating
        - Provider share is transferred out and the transfer webhook settles it

    Scenario 2: Duplicate and Forged Webhooks
        - The same charge.success is delivered twice -> one Transaction
        - A webhook with a bad signature is rejected with no ledger change

    Scenario 3: Nobody Nearby
        - The closest provider is 40 km from Kumasi -> closest-provider fallback
        - The customer cancels before a quote arrives

Usage:
    # Option A: SQLite in-memory (no Docker needed):
    uv run python simulation.py --sqlite

    # Option B: PostgreSQL from DATABASE_URL:
    docker compose up -d
    uv run python simulation.py

    # Run a specific scenario:
    uv run python simulation.py --sqlite --scenario 2
"""

from __future__ import annotations

import argparse
import asyncio
import math
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from roadside_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from roadside_escrow.config import Settings  # noqa: E402
from roadside_escrow.domain.enums import (  # noqa: E402
    ActorRole,
    ProfileRole,
    ServiceType,
)
from roadside_escrow.domain.exceptions import AuthError  # noqa: E402
from roadside_escrow.domain.state_machine import Actor  # noqa: E402
from roadside_escrow.infrastructure.database.orm_models import Base, Profile  # noqa: E402
from roadside_escrow.infrastructure.database.repositories import (  # noqa: E402
    EventRepository,
    ProfileRepository,
    TransactionRepository,
)
from roadside_escrow.infrastructure.paystack import PaystackClient  # noqa: E402
from roadside_escrow.infrastructure.paystack_sandbox import PaystackSandbox  # noqa: E402
from roadside_escrow.infrastructure.push import PushSender  # noqa: E402
from roadside_escrow.services.lifecycle_service import LifecycleService  # noqa: E402
from roadside_escrow.services.matching_service import MatchingService  # noqa: E402
from roadside_escrow.services.notification_service import NotificationDispatcher  # noqa: E402
from roadside_escrow.services.settlement_service import SettlementService  # noqa: E402
from roadside_escrow.services.tracking_service import LiveTracker  # noqa: E402

ACCRA = (5.6037, -0.1870)
KUMASI = (6.6885, -1.6244)

# Module-level state
_engine = None
_session_factory = None


def offset_north(lat: float, lng: float, km: float) -> tuple[float, float]:
    """A point `km` due north of (lat, lng)."""
    return lat + math.degrees(km / 6371.0), lng


# ---------------------------------------------------------------------------
# Database lifecycle helpers
# ---------------------------------------------------------------------------
async def init_database(use_sqlite: bool = False) -> None:
    """Initialize database engine and create tables."""
    global _engine, _session_factory

    if use_sqlite:
        from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
        from sqlalchemy.pool import StaticPool

        from roadside_escrow.infrastructure.database.engine import enable_sqlite_savepoints

        _engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
        enable_sqlite_savepoints(_engine)
        _session_factory = async_sessionmaker(
            bind=_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.sqlite_initialized")
    else:
        from roadside_escrow.infrastructure.database.engine import get_session_factory, init_db

        await init_db()
        _session_factory = get_session_factory()


async def shutdown_database() -> None:
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
    else:
        from roadside_escrow.infrastructure.database.engine import close_db

        await close_db()
    _session_factory = None


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------
@dataclass
class World:
    settings: Settings
    sandbox: PaystackSandbox
    gateway: PaystackClient
    tracker: LiveTracker
    dispatcher: NotificationDispatcher
    push: PushSender

    def services(self, session: Any) -> tuple[LifecycleService, MatchingService, SettlementService]:
        lifecycle = LifecycleService(session, observers=(self.dispatcher, self.tracker))
        matching = MatchingService(session, lifecycle)
        settlement = SettlementService(session, self.gateway, lifecycle, self.settings)
        return lifecycle, matching, settlement

    async def close(self) -> None:
        await self.tracker.shutdown()
        await self.gateway.close()
        await self.push.close()


def build_world() -> World:
    settings = Settings(
        paystack_secret_key="sk_test_simulation",
        provider_flush_interval_seconds=0.05,
        customer_flush_interval_seconds=0.05,
    )
    sandbox = PaystackSandbox(secret_key=settings.paystack_secret_key)
    gateway = PaystackClient(secret_key=sandbox.secret_key, transport=sandbox.transport())
    # No OneSignal credentials: the sender logs instead of pushing.
    push = PushSender(app_id="", api_key="")
    return World(
        settings=settings,
        sandbox=sandbox,
        gateway=gateway,
        tracker=LiveTracker(_session_factory, settings),
        dispatcher=NotificationDispatcher(push, settings),
        push=push,
    )


async def seed_profile(
    full_name: str,
    role: ProfileRole,
    position: tuple[float, float] | None = None,
    **fields: Any,
) -> Profile:
    async with _session_factory() as session:
        profile = Profile(full_name=full_name, role=role.value, **fields)
        if position is not None:
            profile.is_available = True
            profile.current_lat, profile.current_lng = position
            profile.location_updated_at = datetime.now(UTC)
        await ProfileRepository(session).create(profile)
        await session.commit()
        return profile


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------
def banner(title: str) -> None:
    print("\n" + "=" * 70)
    print(f"  {title}")
    print("=" * 70)


def section(title: str) -> None:
    print(f"\n--- {title} ---")


async def print_audit_trail(request_id: Any) -> None:
    async with _session_factory() as session:
        events = await EventRepository(session).get_by_request(request_id)
    section("Audit Trail")
    for evt in events:
        transition = f"{evt.old_status or '∅'} -> {evt.new_status}"
        print(f"  📋 {evt.event_type:<20} {transition:<28} by {evt.actor_role}")


# ===========================================================================
# Scenario 1: Happy Path
# ===========================================================================
async def scenario_1_happy_path() -> None:
    banner("SCENARIO 1: HAPPY PATH (request -> pay -> track -> confirm -> payout)")
    world = build_world()
    try:
        customer = await seed_profile("Ama Owusu", ProfileRole.CUSTOMER, email="ama@example.com")
        near = await seed_profile(
            "Kofi Mensah",
            ProfileRole.PROVIDER,
            position=offset_north(*ACCRA, 1.2),
            payout_details={"bank_code": "MTN", "account_number": "0241234567",
                            "account_type": "mobile_money"},
        )
        await seed_profile("Yaw Boateng", ProfileRole.PROVIDER, position=offset_north(*ACCRA, 3.4))

        customer_actor = Actor(ActorRole.CUSTOMER, customer.id)
        provider_actor = Actor(ActorRole.PROVIDER, near.id)

        section("Step 1: Create and match")
        async with _session_factory() as session:
            lifecycle, matching, _ = world.services(session)
            request = await lifecycle.create_request(
                customer.id, ServiceType.TIRE_CHANGE, *ACCRA, location="Ring Road Central"
            )
            result, request = await matching.auto_assign(request.id)
            await session.commit()
        print(f"  🔵 Request {request.tracking_code} -> {result.mode.value}, "
              f"{len(result.candidates)} candidates, assigned to {near.full_name}")

        section("Step 2: Quote and accept")
        async with _session_factory() as session:
            lifecycle, _, _ = world.services(session)
            await lifecycle.submit_quote(request.id, provider_actor, Decimal("150.00"), "Spare fitted")
            await lifecycle.accept_quote(request.id, customer_actor)
            await session.commit()
        print("  🟢 Quote GHS 150.00 accepted")

        section("Step 3: Pay through the sandbox")
        async with _session_factory() as session:
            _, _, settlement = world.services(session)
            charge = await settlement.initialize_payment(
                request.id, "ama@example.com", actor=customer_actor
            )
            await session.commit()
        world.sandbox.pay(charge.reference)
        body = world.sandbox.charge_event(charge.reference)
        async with _session_factory() as session:
            _, _, settlement = world.services(session)
            outcome = await settlement.handle_webhook(body, world.sandbox.sign(body))
            await session.commit()
        print(f"  💰 charge.success -> {outcome.value}")

        section("Step 4: Depart and stream positions")
        async with _session_factory() as session:
            lifecycle, _, _ = world.services(session)
            await lifecycle.depart(request.id, provider_actor)
            await session.commit()
        start = datetime.now(UTC)
        for step in range(5):
            lat, lng = offset_north(*ACCRA, 1.2 - 0.1 * step)
            eta = world.tracker.offer_provider_sample(
                request.id, lat, lng, start + timedelta(seconds=18 * step)
            )
        print(f"  🚗 ETA {eta.eta_minutes:.1f} min at {eta.speed_kmh:.1f} km/h "
              f"({eta.distance_km:.2f} km away)")
        await asyncio.sleep(0.2)

        section("Step 5: Work, complete, confirm")
        async with _session_factory() as session:
            lifecycle, _, _ = world.services(session)
            await lifecycle.start_work(request.id, provider_actor)
            await lifecycle.complete(request.id, provider_actor)
            await lifecycle.confirm_completion(request.id, customer_actor, rating=5)
            await session.commit()
        print(f"  ✅ Confirmed; tracking loops still running: {world.tracker.active_count}")

        section("Step 6: Release escrow")
        async with _session_factory() as session:
            _, _, settlement = world.services(session)
            transfer = await settlement.transfer_to_provider(request.id)
            await session.commit()
        body = world.sandbox.transfer_event("transfer.success", transfer.transfer_code)
        async with _session_factory() as session:
            _, _, settlement = world.services(session)
            await settlement.handle_webhook(body, world.sandbox.sign(body))
            txn = await TransactionRepository(session).get_for_request(request.id)
            await session.commit()
        print(f"  💸 Provider paid GHS {txn.provider_amount} "
              f"(platform keeps GHS {txn.platform_amount}), transfer {txn.transfer_status}")

        await print_audit_trail(request.id)
    finally:
        await world.close()


# ===========================================================================
# Scenario 2: Duplicate and Forged Webhooks
# ===========================================================================
async def scenario_2_webhook_replays() -> None:
    banner("SCENARIO 2: DUPLICATE AND FORGED WEBHOOKS")
    world = build_world()
    try:
        customer = await seed_profile("Efua Asante", ProfileRole.CUSTOMER)
        provider = await seed_profile(
            "Kwame Darko", ProfileRole.PROVIDER, position=offset_north(*ACCRA, 0.8)
        )
        customer_actor = Actor(ActorRole.CUSTOMER, customer.id)
        provider_actor = Actor(ActorRole.PROVIDER, provider.id)

        async with _session_factory() as session:
            lifecycle, _, settlement = world.services(session)
            request = await lifecycle.create_request(customer.id, ServiceType.BATTERY_JUMP, *ACCRA)
            await lifecycle.assign_provider(request.id, provider.id, customer_actor)
            await lifecycle.submit_quote(request.id, provider_actor, Decimal("80.00"))
            await lifecycle.accept_quote(request.id, customer_actor)
            charge = await settlement.initialize_payment(request.id, "efua@example.com")
            await session.commit()

        world.sandbox.pay(charge.reference)
        body = world.sandbox.charge_event(charge.reference)

        section("Forged delivery")
        async with _session_factory() as session:
            _, _, settlement = world.services(session)
            try:
                await settlement.handle_webhook(body, "0" * 128)
            except AuthError as exc:
                print(f"  🛡️  Rejected: {exc.message}")
            await session.rollback()

        section("Same event delivered twice")
        for attempt in (1, 2):
            async with _session_factory() as session:
                _, _, settlement = world.services(session)
                outcome = await settlement.handle_webhook(body, world.sandbox.sign(body))
                await session.commit()
            print(f"  📨 Delivery {attempt}: {outcome.value}")

        async with _session_factory() as session:
            count = await TransactionRepository(session).count_for_request(request.id)
        print(f"  🧾 Transactions recorded: {count}")
    finally:
        await world.close()


# ===========================================================================
# Scenario 3: Nobody Nearby
# ===========================================================================
async def scenario_3_fallback_and_cancel() -> None:
    banner("SCENARIO 3: NOBODY NEARBY (fallback match, then cancel)")
    world = build_world()
    try:
        customer = await seed_profile("Akosua Frimpong", ProfileRole.CUSTOMER)
        far = await seed_profile(
            "Nii Lartey", ProfileRole.PROVIDER, position=offset_north(*KUMASI, 40.0)
        )
        customer_actor = Actor(ActorRole.CUSTOMER, customer.id)

        async with _session_factory() as session:
            lifecycle, matching, _ = world.services(session)
            request = await lifecycle.create_request(customer.id, ServiceType.TOWING, *KUMASI)
            result, request = await matching.auto_assign(request.id)
            await session.commit()
        print(f"  🔍 Match mode: {result.mode.value}; "
              f"assigned {far.full_name} {result.candidates[0].distance_km:.1f} km away")

        async with _session_factory() as session:
            lifecycle, _, _ = world.services(session)
            request = await lifecycle.cancel(request.id, customer_actor, reason="Too far")
            await session.commit()
        print(f"  ❌ Request {request.tracking_code} is {request.status}")

        await print_audit_trail(request.id)
    finally:
        await world.close()


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_webhook_replays,
    3: scenario_3_fallback_and_cancel,
}


async def run(scenarios: list[int], use_sqlite: bool = False) -> None:
    await init_database(use_sqlite=use_sqlite)
    try:
        print("\n" + "🚀" * 35)
        print("  ROADSIDE ESCROW: SIMULATION")
        print(f"  Database: {'SQLite (in-memory)' if use_sqlite else 'PostgreSQL'}")
        print("🚀" * 35)
        for num in scenarios:
            await SCENARIOS[num]()
        print("\n" + "=" * 70)
        print("  ✅ SIMULATION FINISHED")
        print("=" * 70 + "\n")
    finally:
        await shutdown_database()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Roadside Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        choices=[0, *SCENARIOS],
        help="Run a specific scenario (1, 2, or 3). Default: run all.",
    )
    parser.add_argument(
        "--sqlite",
        action="store_true",
        help="Use SQLite in-memory instead of PostgreSQL (no Docker needed).",
    )
    args = parser.parse_args()

    selected = list(SCENARIOS) if args.scenario == 0 else [args.scenario]
    asyncio.run(run(selected, use_sqlite=args.sqlite))
