"""Settlement Service: escrow collection and release through Paystack.

The full quoted amount is collected to the platform account. Once the
customer confirms the job, the provider's share is transferred out.

Entry points:
    - initialize_payment: open a charge and move the request to awaiting_payment
    - handle_webhook / verify_payment: record a successful charge exactly once
    - transfer_to_provider / retry_transfer: release the provider share
    - setup_payout_account / list_banks: provider payout destination

Gateway deliveries are at-least-once. The payment_status guard short-circuits
redeliveries, and the UNIQUE constraint on transactions.reference decides the
winner when two deliveries race; the loser is reported as a duplicate.
"""

from __future__ import annotations

import enum
import json
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError

from roadside_escrow.config import get_settings
from roadside_escrow.domain.enums import (
    EventType,
    GatewayEvent,
    PaymentStatus,
    ProfileRole,
    RequestStatus,
    TransactionType,
    TransferStatus,
)
from roadside_escrow.domain.exceptions import (
    AuthError,
    DuplicateEventError,
    MissingQuoteError,
    PreconditionError,
    ProfileNotFoundError,
    RequestNotFoundError,
    ValidationError,
)
from roadside_escrow.domain.money import from_minor_units, split_amount, to_minor_units
from roadside_escrow.domain.state_machine import Actor, check_actor_identity
from roadside_escrow.infrastructure.database.orm_models import Transaction
from roadside_escrow.infrastructure.database.repositories import (
    EventRepository,
    ProfileRepository,
    RequestRepository,
    TransactionRepository,
)
from roadside_escrow.infrastructure.paystack import verify_signature
from roadside_escrow.infrastructure.redis_client import cached_json
from roadside_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from roadside_escrow.config import Settings
    from roadside_escrow.infrastructure.database.orm_models import ServiceRequest
    from roadside_escrow.infrastructure.paystack import ChargeInitialization, PaystackClient
    from roadside_escrow.services.lifecycle_service import LifecycleService

logger = get_logger(__name__)


class EventOutcome(enum.StrEnum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    UNMATCHED = "unmatched"


@dataclass(frozen=True)
class PaymentVerification:
    success: bool
    status: str
    amount: Decimal
    currency: str
    reference: str
    paid_at: str | None
    channel: str | None
    metadata: dict[str, Any]
    outcome: EventOutcome | None = None


@dataclass(frozen=True)
class TransferResult:
    transfer_code: str
    status: str
    amount: Decimal
    reference: str


@dataclass(frozen=True)
class PayoutAccount:
    subaccount_code: str
    account_name: str


class SettlementService:
    """Escrow settlement engine."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: PaystackClient,
        lifecycle: LifecycleService,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._gateway = gateway
        self._lifecycle = lifecycle
        self._settings = settings or get_settings()
        self._request_repo = RequestRepository(session)
        self._profile_repo = ProfileRepository(session)
        self._txn_repo = TransactionRepository(session)
        self._event_repo = EventRepository(session)

    # ------------------------------------------------------------------
    # Charge initialization
    # ------------------------------------------------------------------

    async def initialize_payment(
        self,
        request_id: uuid.UUID,
        email: str,
        callback_url: str | None = None,
        actor: Actor | None = None,
    ) -> ChargeInitialization:
        """Open a gateway charge for the quoted amount.

        Every precondition is checked before the gateway is called, so a
        rejected request never leaves an orphan charge behind. Calling this
        again while awaiting payment issues a fresh reference.
        """
        if not email:
            raise ValidationError("A customer email is required to initialize payment")

        request = await self._get_request_or_raise(request_id, lock=True)
        if actor is not None:
            check_actor_identity(actor, request.customer_id, request.provider_id)
        if request.payment_status == PaymentStatus.PAID:
            raise PreconditionError(f"Request {request_id} is already paid")
        if request.quoted_amount is None:
            raise MissingQuoteError(str(request_id))

        system = Actor.system()
        self._lifecycle.ensure_can_transition(request, RequestStatus.AWAITING_PAYMENT, system)

        charge = await self._gateway.initialize_transaction(
            email=email,
            amount_minor=to_minor_units(request.quoted_amount),
            metadata=self._charge_metadata(request),
            callback_url=callback_url
            or f"{self._settings.public_base_url.rstrip('/')}/track/{request.tracking_code}",
        )

        changes = {
            "gateway_reference": charge.reference,
            "payment_status": PaymentStatus.AWAITING_PAYMENT.value,
        }
        event = await self._lifecycle.apply_transition(
            request,
            RequestStatus.AWAITING_PAYMENT,
            system,
            changes=changes,
            metadata={"reference": charge.reference},
        )
        if event is None:
            for column, value in changes.items():
                setattr(request, column, value)
            await self._request_repo.save(request)

        await self._event_repo.record(
            request_id=request.id,
            event_type=EventType.PAYMENT_INITIALIZED,
            old_status=RequestStatus(request.status),
            new_status=RequestStatus(request.status),
            actor_role=system.role,
            metadata={"reference": charge.reference, "amount": str(request.quoted_amount)},
        )
        await self._lifecycle.publish(event)

        logger.info(
            "settlement.payment_initialized",
            request_id=str(request.id),
            reference=charge.reference,
            amount=str(request.quoted_amount),
        )
        return charge

    # ------------------------------------------------------------------
    # Webhook ingestion
    # ------------------------------------------------------------------

    async def handle_webhook(self, raw_body: bytes, signature: str | None) -> EventOutcome:
        """Verify and apply one gateway event.

        Raises:
            AuthError: The signature is wrong, or missing while required.
            ValidationError: The body is not a JSON event object.
        """
        if signature:
            if not verify_signature(raw_body, signature, self._gateway.secret_key):
                logger.warning("settlement.webhook_bad_signature")
                raise AuthError("Invalid webhook signature")
        elif self._settings.webhook_require_signature:
            raise AuthError("Missing webhook signature")

        try:
            payload = json.loads(raw_body)
        except ValueError as exc:
            raise ValidationError("Malformed webhook body") from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("event"), str):
            raise ValidationError("Webhook body must be an object with an 'event' field")

        data = payload.get("data") or {}
        if not isinstance(data, dict):
            raise ValidationError("Webhook 'data' must be an object")

        event_name = payload["event"]
        logger.info("settlement.webhook_received", gateway_event=event_name)

        if event_name == GatewayEvent.CHARGE_SUCCESS:
            reference = data.get("reference")
            if not reference:
                raise ValidationError("charge.success without a reference")
            try:
                amount_minor = int(data.get("amount") or 0)
            except (TypeError, ValueError) as exc:
                raise ValidationError(
                    f"charge.success for {reference} has a non-numeric amount"
                ) from exc
            return await self.record_successful_charge(
                reference=reference,
                amount_minor=amount_minor,
                channel=data.get("channel"),
                metadata=data.get("metadata"),
            )
        if event_name in (
            GatewayEvent.TRANSFER_SUCCESS,
            GatewayEvent.TRANSFER_FAILED,
            GatewayEvent.TRANSFER_REVERSED,
        ):
            return await self.apply_transfer_update(GatewayEvent(event_name), data)

        logger.info("settlement.webhook_ignored", gateway_event=event_name)
        return EventOutcome.IGNORED

    # ------------------------------------------------------------------
    # Direct verification
    # ------------------------------------------------------------------

    async def verify_payment(self, reference: str) -> PaymentVerification:
        """Poll the gateway for a charge and record it if it succeeded."""
        result = await self._gateway.verify_transaction(reference)
        outcome = None
        if result.succeeded:
            outcome = await self.record_successful_charge(
                reference=result.reference,
                amount_minor=result.amount_minor,
                channel=result.channel,
                metadata=result.metadata,
            )
        return PaymentVerification(
            success=result.succeeded,
            status=result.status,
            amount=from_minor_units(result.amount_minor),
            currency=result.currency,
            reference=result.reference,
            paid_at=result.paid_at,
            channel=result.channel,
            metadata=result.metadata,
            outcome=outcome,
        )

    # ------------------------------------------------------------------
    # Charge recording (shared by webhook and direct verify)
    # ------------------------------------------------------------------

    async def record_successful_charge(
        self,
        reference: str,
        amount_minor: int,
        channel: str | None,
        metadata: dict[str, Any] | None,
    ) -> EventOutcome:
        """Mark the request paid and insert its Transaction, exactly once."""
        request = await self._resolve_charge_request(reference, metadata)
        if request is None:
            logger.warning("settlement.charge_unmatched", reference=reference)
            return EventOutcome.UNMATCHED

        # A rolled-back savepoint expires `request`; never touch it for logging.
        request_id = request.id
        try:
            await self._record_charge(request, reference, amount_minor, channel)
        except DuplicateEventError:
            logger.info(
                "settlement.charge_duplicate",
                request_id=str(request_id),
                reference=reference,
            )
            return EventOutcome.DUPLICATE
        return EventOutcome.PROCESSED

    async def _record_charge(
        self,
        request: ServiceRequest,
        reference: str,
        amount_minor: int,
        channel: str | None,
    ) -> None:
        if request.payment_status == PaymentStatus.PAID:
            raise DuplicateEventError(reference)

        amount = from_minor_units(amount_minor)
        if amount <= 0:
            raise ValidationError(f"Charge {reference} has a non-positive amount")
        split = split_amount(amount, self._settings.platform_percentage)
        now = datetime.now(UTC)

        try:
            async with self._session.begin_nested():
                event = await self._lifecycle.apply_transition(
                    request,
                    RequestStatus.PAID,
                    Actor.system(),
                    changes={
                        "payment_status": PaymentStatus.PAID.value,
                        "amount": split.amount,
                        "paid_at": now,
                    },
                    metadata={"reference": reference},
                )
                await self._txn_repo.create(
                    Transaction(
                        service_request_id=request.id,
                        transaction_type=TransactionType.CUSTOMER_TO_BUSINESS.value,
                        reference=reference,
                        amount=split.amount,
                        currency=self._settings.paystack_currency,
                        provider_percentage=split.provider_percentage,
                        platform_percentage=split.platform_percentage,
                        provider_amount=split.provider_amount,
                        platform_amount=split.platform_amount,
                        payment_method=channel or "mobile_money",
                        channel=channel,
                        status="confirmed",
                        confirmed_at=now,
                        notes=f"Paystack payment - Channel: {channel or 'unknown'}",
                    )
                )
                await self._event_repo.record(
                    request_id=request.id,
                    event_type=EventType.PAYMENT_CONFIRMED,
                    old_status=RequestStatus.PAID,
                    new_status=RequestStatus.PAID,
                    actor_role=Actor.system().role,
                    metadata={"reference": reference, "amount": str(split.amount)},
                )
        except IntegrityError as exc:
            # A concurrent delivery of the same reference committed first.
            await self._session.refresh(request)
            raise DuplicateEventError(reference) from exc

        await self._lifecycle.publish(event)
        logger.info(
            "settlement.charge_recorded",
            request_id=str(request.id),
            reference=reference,
            amount=str(split.amount),
            provider_amount=str(split.provider_amount),
            platform_amount=str(split.platform_amount),
        )

    async def _resolve_charge_request(
        self, reference: str, metadata: dict[str, Any] | None
    ) -> ServiceRequest | None:
        raw_id = (metadata or {}).get("service_request_id")
        if raw_id:
            try:
                request = await self._request_repo.get_for_update(uuid.UUID(str(raw_id)))
            except ValueError:
                logger.warning("settlement.bad_metadata_id", value=str(raw_id))
                request = None
            if request is not None:
                return request
        return await self._request_repo.get_by_reference(reference)

    # ------------------------------------------------------------------
    # Transfer events
    # ------------------------------------------------------------------

    async def apply_transfer_update(
        self, event: GatewayEvent, data: dict[str, Any]
    ) -> EventOutcome:
        """Update the payout leg of a Transaction. Request fields never change."""
        txn = None
        if data.get("transfer_code"):
            txn = await self._txn_repo.get_by_transfer_code(data["transfer_code"])
        if txn is None and data.get("reference"):
            txn = await self._txn_repo.get_by_transfer_reference(data["reference"])
        if txn is None:
            logger.warning(
                "settlement.transfer_unmatched",
                transfer_code=data.get("transfer_code"),
                reference=data.get("reference"),
            )
            return EventOutcome.UNMATCHED

        new_status = {
            GatewayEvent.TRANSFER_SUCCESS: TransferStatus.SUCCESS,
            GatewayEvent.TRANSFER_FAILED: TransferStatus.FAILED,
            GatewayEvent.TRANSFER_REVERSED: TransferStatus.REVERSED,
        }[event]
        if txn.transfer_status == new_status:
            return EventOutcome.DUPLICATE
        # A settled payout only moves on to reversed; a late failure is stale.
        if txn.transfer_status == TransferStatus.SUCCESS and new_status is TransferStatus.FAILED:
            logger.warning(
                "settlement.transfer_stale_failure",
                transfer_code=txn.transfer_code,
                reference=data.get("reference"),
            )
            return EventOutcome.IGNORED

        now = datetime.now(UTC)
        txn.transfer_status = new_status.value
        if new_status is TransferStatus.SUCCESS:
            txn.transfer_completed_at = now
        else:
            reason = data.get("reason") or data.get("failures") or "unknown"
            note = f"Transfer {new_status.value}: {reason}"
            txn.notes = f"{txn.notes}\n{note}" if txn.notes else note
        await self._txn_repo.save(txn)

        request = await self._request_repo.get_by_id(txn.service_request_id)
        if request is not None:
            status = RequestStatus(request.status)
            await self._event_repo.record(
                request_id=request.id,
                event_type=EventType.TRANSFER_SETTLED,
                old_status=status,
                new_status=status,
                actor_role=Actor.system().role,
                metadata={"transfer_code": txn.transfer_code, "transfer_status": new_status.value},
            )

        logger.info(
            "settlement.transfer_updated",
            transfer_code=txn.transfer_code,
            transfer_status=new_status.value,
        )
        return EventOutcome.PROCESSED

    # ------------------------------------------------------------------
    # Release to provider
    # ------------------------------------------------------------------

    async def transfer_to_provider(
        self, request_id: uuid.UUID, actor: Actor | None = None
    ) -> TransferResult:
        """Pay the provider share once the customer has confirmed the job.

        Raises PreconditionError (before any gateway call) unless the request
        is paid, confirmed, has a provider with a payout destination, and no
        transfer has been initiated yet.
        """
        request, txn = await self._check_release(request_id, actor)
        if txn.transfer_status is not None:
            raise PreconditionError(
                f"Transfer already initiated for request {request_id} "
                f"(status: {txn.transfer_status})"
            )
        return await self._initiate_transfer(request, txn)

    async def retry_transfer(
        self, request_id: uuid.UUID, actor: Actor | None = None
    ) -> TransferResult:
        """Explicit operator retry after a failed or reversed transfer."""
        request, txn = await self._check_release(request_id, actor)
        if txn.transfer_status is None:
            raise PreconditionError(f"No transfer to retry for request {request_id}")
        if not TransferStatus(txn.transfer_status).allows_retry:
            raise PreconditionError(
                f"Transfer for request {request_id} is '{txn.transfer_status}' and cannot be retried"
            )
        logger.info(
            "settlement.transfer_retry",
            request_id=str(request_id),
            previous_code=txn.transfer_code,
        )
        return await self._initiate_transfer(request, txn)

    async def _check_release(
        self, request_id: uuid.UUID, actor: Actor | None
    ) -> tuple[ServiceRequest, Transaction]:
        request = await self._get_request_or_raise(request_id, lock=True)
        if actor is not None:
            check_actor_identity(actor, request.customer_id, request.provider_id)
        if request.payment_status != PaymentStatus.PAID:
            raise PreconditionError(f"Request {request_id} has not been paid")
        if request.customer_confirmed_at is None:
            raise PreconditionError(f"Customer has not confirmed completion of {request_id}")
        if request.provider_id is None:
            raise PreconditionError(f"Request {request_id} has no provider")

        txn = await self._txn_repo.get_for_request(request.id)
        if txn is None:
            raise PreconditionError(f"No recorded payment for request {request_id}")
        return request, txn

    async def _initiate_transfer(
        self, request: ServiceRequest, txn: Transaction
    ) -> TransferResult:
        provider = await self._profile_repo.get_by_id(request.provider_id)  # type: ignore[arg-type]
        if provider is None:
            raise ProfileNotFoundError(str(request.provider_id))

        payout = dict(provider.payout_details or {})
        recipient_code = payout.get("recipient_code")
        if not recipient_code and not (payout.get("bank_code") and payout.get("account_number")):
            raise PreconditionError(f"Provider {provider.id} has no payout account set up")

        if not recipient_code:
            recipient_code = await self._gateway.create_transfer_recipient(
                name=payout.get("account_name") or provider.full_name,
                account_number=payout["account_number"],
                bank_code=payout["bank_code"],
                recipient_type="ghipss" if payout.get("account_type") == "bank" else "mobile_money",
            )
            payout["recipient_code"] = recipient_code
            await self._profile_repo.save_payout_details(provider, payout)
            logger.info("settlement.recipient_created", provider_id=str(provider.id))

        reference = f"transfer_{request.id}_{int(time.time() * 1000)}"
        result = await self._gateway.initiate_transfer(
            amount_minor=to_minor_units(txn.provider_amount),
            recipient_code=recipient_code,
            reference=reference,
            reason=f"Payment for service request {request.tracking_code}",
        )

        now = datetime.now(UTC)
        txn.transfer_reference = result.reference
        txn.transfer_code = result.transfer_code
        txn.transfer_status = result.status
        txn.transfer_initiated_at = now
        txn.transfer_completed_at = now if result.status == TransferStatus.SUCCESS else None
        await self._txn_repo.save(txn)

        status = RequestStatus(request.status)
        await self._event_repo.record(
            request_id=request.id,
            event_type=EventType.TRANSFER_INITIATED,
            old_status=status,
            new_status=status,
            actor_role=Actor.system().role,
            metadata={"transfer_code": result.transfer_code, "amount": str(txn.provider_amount)},
        )

        logger.info(
            "settlement.transfer_initiated",
            request_id=str(request.id),
            transfer_code=result.transfer_code,
            amount=str(txn.provider_amount),
        )
        return TransferResult(
            transfer_code=result.transfer_code,
            status=result.status,
            amount=txn.provider_amount,
            reference=result.reference,
        )

    # ------------------------------------------------------------------
    # Payout accounts
    # ------------------------------------------------------------------

    async def setup_payout_account(
        self,
        profile_id: uuid.UUID,
        business_name: str | None,
        account_number: str,
        bank_code: str,
        account_type: str = "mobile_money",
    ) -> PayoutAccount:
        """Verify account ownership, then register a gateway subaccount."""
        if not account_number or not bank_code:
            raise ValidationError("account_number and bank_code are required")

        profile = await self._profile_repo.get_by_id(profile_id)
        if profile is None or profile.role != ProfileRole.PROVIDER:
            raise ProfileNotFoundError(str(profile_id))

        account_name = await self._gateway.resolve_account(account_number, bank_code)
        subaccount_code = await self._gateway.create_subaccount(
            business_name=business_name or profile.full_name,
            bank_code=bank_code,
            account_number=account_number,
            percentage_charge=self._settings.provider_percentage,
            email=profile.email,
            phone=profile.phone_number,
            metadata={"user_id": str(profile.id), "account_type": account_type},
        )

        # A new destination invalidates any cached transfer recipient.
        await self._profile_repo.save_payout_details(
            profile,
            {
                "bank_code": bank_code,
                "account_number": account_number,
                "account_name": account_name,
                "account_type": account_type,
                "subaccount_code": subaccount_code,
                "created_at": datetime.now(UTC).isoformat(),
            },
            subaccount_code=subaccount_code,
        )
        logger.info("settlement.payout_account_saved", profile_id=str(profile.id))
        return PayoutAccount(subaccount_code=subaccount_code, account_name=account_name)

    async def list_banks(
        self, country: str | None = None, mobile_money: bool = False
    ) -> list[dict[str, Any]]:
        country = country or self._settings.paystack_country

        async def load() -> list[dict[str, Any]]:
            banks = await self._gateway.list_banks(country, mobile_money=mobile_money)
            return [asdict(bank) for bank in banks]

        kind = "mobile_money" if mobile_money else "all"
        return await cached_json(
            f"banks:{country}:{kind}",
            ttl=self._settings.bank_cache_ttl_seconds,
            loader=load,
        )

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_request_or_raise(
        self, request_id: uuid.UUID, lock: bool = False
    ) -> ServiceRequest:
        if lock:
            request = await self._request_repo.get_for_update(request_id)
        else:
            request = await self._request_repo.get_by_id(request_id)
        if request is None:
            raise RequestNotFoundError(str(request_id))
        return request

    @staticmethod
    def _charge_metadata(request: ServiceRequest) -> dict[str, Any]:
        return {
            "service_request_id": str(request.id),
            "tracking_code": request.tracking_code,
            "custom_fields": [
                {
                    "display_name": "Service Type",
                    "variable_name": "service_type",
                    "value": request.service_type,
                },
                {
                    "display_name": "Tracking Code",
                    "variable_name": "tracking_code",
                    "value": request.tracking_code,
                },
            ],
        }
