"""Domain enumerations for the roadside escrow service.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class RequestStatus(enum.StrEnum):
    """Lifecycle states of a service request.

    Transitions are enforced by the lifecycle guard in domain/state_machine.py.
    """

    PENDING = "pending"
    ASSIGNED = "assigned"
    QUOTED = "quoted"
    ACCEPTED = "accepted"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    EN_ROUTE = "en_route"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.COMPLETED, RequestStatus.CANCELLED)

    @property
    def is_tracking(self) -> bool:
        """Whether the provider streams its position in this state."""
        return self in (RequestStatus.EN_ROUTE, RequestStatus.IN_PROGRESS)


class PaymentStatus(enum.StrEnum):
    UNPAID = "unpaid"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"


class ActorRole(enum.StrEnum):
    """Who drives a transition.

    SYSTEM is the service itself: the settlement engine and the automatic
    assignment fallback.
    """

    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"


class ProfileRole(enum.StrEnum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"


class ServiceType(enum.StrEnum):
    TOWING = "towing"
    TIRE_CHANGE = "tire_change"
    FUEL_DELIVERY = "fuel_delivery"
    BATTERY_JUMP = "battery_jump"
    LOCKOUT_SERVICE = "lockout_service"
    EMERGENCY_ASSISTANCE = "emergency_assistance"
    MECHANIC_FAULT = "mechanic_fault"
    ELECTRICAL_FAULT = "electrical_fault"


class TransactionType(enum.StrEnum):
    CUSTOMER_TO_BUSINESS = "customer_to_business"


class TransferStatus(enum.StrEnum):
    """Status of the payout leg, as reported by the gateway."""

    PENDING = "pending"
    OTP = "otp"
    SUCCESS = "success"
    FAILED = "failed"
    REVERSED = "reversed"

    @property
    def allows_retry(self) -> bool:
        return self in (TransferStatus.FAILED, TransferStatus.REVERSED)


class GatewayEvent(enum.StrEnum):
    """Webhook event names the settlement engine reacts to."""

    CHARGE_SUCCESS = "charge.success"
    TRANSFER_SUCCESS = "transfer.success"
    TRANSFER_FAILED = "transfer.failed"
    TRANSFER_REVERSED = "transfer.reversed"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the request_events table.

    Every lifecycle transition produces exactly one event; settlement side
    effects that do not move the status get their own event type.
    """

    # Lifecycle events
    REQUEST_CREATED = "REQUEST_CREATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    CUSTOMER_CONFIRMED = "CUSTOMER_CONFIRMED"

    # Settlement events
    PAYMENT_INITIALIZED = "PAYMENT_INITIALIZED"
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    TRANSFER_INITIATED = "TRANSFER_INITIATED"
    TRANSFER_SETTLED = "TRANSFER_SETTLED"
