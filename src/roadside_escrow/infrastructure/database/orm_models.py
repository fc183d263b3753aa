"""SQLAlchemy 2.0 ORM models for the roadside escrow service.

Five tables:
    1. profiles          - Customers, providers and admins, incl. the provider
                           location snapshot and payout destination.
    2. service_requests  - One roadside job from request through settlement.
    3. transactions      - One row per verified payment, plus its payout leg.
    4. request_events    - Append-only audit log of every lifecycle transition.
    5. ratings           - Customer rating written at completion confirmation.

Design decisions:
    - UUIDs as primary keys (tracking codes are the customer-facing handle).
    - Numeric(12, 2) for cedi amounts; gateway minor units never hit the DB.
    - transactions.reference is UNIQUE: it is the idempotency key that closes
      the race between two deliveries of the same webhook.
    - CHECK constraints mirror the ledger invariants (amount iff paid, split
      sums) so a buggy code path cannot commit an inconsistent row.
    - Generic Uuid/JSON types (JSONB on PostgreSQL) so tests run on SQLite.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. profiles
# ---------------------------------------------------------------------------
class Profile(Base):
    """A platform user. Providers carry a location snapshot and payout details."""

    __tablename__ = "profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Identity ---
    full_name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="customer",
        comment="customer | provider | admin",
    )
    avatar_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    years_experience: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # --- Location snapshot (overwritten, never appended) ---
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    current_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Device timestamp of the persisted sample (last-write-wins key)",
    )

    # --- Payout destination ---
    payout_details: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        default=None,
        comment="bank_code, account_number, account_name, account_type, recipient_code",
    )
    gateway_subaccount_code: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "role IN ('customer', 'provider', 'admin')",
            name="ck_profile_valid_role",
        ),
        Index("idx_profile_role_available", "role", "is_available"),
    )

    def __repr__(self) -> str:
        return f"<Profile id={self.id} role={self.role} available={self.is_available}>"


# ---------------------------------------------------------------------------
# 2. service_requests
# ---------------------------------------------------------------------------
class ServiceRequest(Base):
    """A roadside job. Status changes only through the lifecycle guard."""

    __tablename__ = "service_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tracking_code: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        unique=True,
        comment="Opaque customer-facing code for unauthenticated status lookup",
    )

    # --- Job ---
    service_type: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # --- Status ---
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="Current lifecycle state (guarded by RequestLifecycle)",
    )
    last_actor_role: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="Role that drove the latest transition",
    )

    # --- Participants ---
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False
    )
    provider_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=True, default=None
    )
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_by: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # --- Coordinates ---
    customer_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    customer_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    provider_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    provider_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    provider_location_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # --- Quote ---
    quoted_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    quote_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quoted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    quote_approved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # --- Payment ---
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="unpaid")
    gateway_reference: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Reference of the latest initialized charge",
    )
    amount: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Settled amount; set only once the payment is verified",
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # --- Completion ---
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    customer_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'assigned', 'quoted', 'accepted', 'awaiting_payment', "
            "'paid', 'en_route', 'in_progress', 'completed', 'cancelled')",
            name="ck_request_valid_status",
        ),
        CheckConstraint(
            "payment_status IN ('unpaid', 'awaiting_payment', 'paid')",
            name="ck_request_valid_payment_status",
        ),
        CheckConstraint(
            "(payment_status = 'paid' AND amount IS NOT NULL) "
            "OR (payment_status != 'paid' AND amount IS NULL)",
            name="ck_request_amount_iff_paid",
        ),
        CheckConstraint(
            "provider_id IS NOT NULL OR status IN ('pending', 'cancelled')",
            name="ck_request_provider_before_assigned",
        ),
        CheckConstraint(
            "quoted_amount IS NULL OR quoted_amount > 0",
            name="ck_request_positive_quote",
        ),
        Index("idx_request_status", "status"),
        Index("idx_request_customer", "customer_id"),
        Index("idx_request_provider", "provider_id"),
        Index("idx_request_gateway_reference", "gateway_reference"),
    )

    def __repr__(self) -> str:
        return (
            f"<ServiceRequest id={self.id} code={self.tracking_code} "
            f"status={self.status} payment={self.payment_status}>"
        )


# ---------------------------------------------------------------------------
# 3. transactions
# ---------------------------------------------------------------------------
class Transaction(Base):
    """A verified customer payment and the payout leg to the provider.

    Inserted once per gateway reference; afterwards only the transfer
    columns change.
    """

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    service_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("service_requests.id"), nullable=False
    )
    transaction_type: Mapped[str] = mapped_column(
        String(32), nullable=False, default="customer_to_business"
    )
    reference: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        comment="Gateway charge reference (idempotency key)",
    )

    # --- Financials ---
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="GHS")
    provider_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_percentage: Mapped[int] = mapped_column(Integer, nullable=False)
    provider_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    platform_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False, default="mobile_money")
    channel: Mapped[str | None] = mapped_column(String(32), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="confirmed")
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Payout leg ---
    transfer_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    transfer_code: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    transfer_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    transfer_initiated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    transfer_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # --- Timestamps ---
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "service_request_id", "transaction_type", name="uq_transaction_request_type"
        ),
        CheckConstraint(
            "provider_percentage + platform_percentage = 100",
            name="ck_transaction_percentages",
        ),
        CheckConstraint(
            "abs(provider_amount + platform_amount - amount) < 0.005",
            name="ck_transaction_split_reconciles",
        ),
        CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
        Index("idx_transaction_request", "service_request_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction ref={self.reference} amount={self.amount} "
            f"transfer={self.transfer_status}>"
        )


# ---------------------------------------------------------------------------
# 4. request_events (Append-Only Audit Log)
# ---------------------------------------------------------------------------
class RequestEvent(Base):
    """Immutable audit record of a lifecycle transition or settlement step.

    APPEND-ONLY: no UPDATE or DELETE at the application level.
    """

    __tablename__ = "request_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    service_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("service_requests.id"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(20), nullable=False, default="system")
    actor_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        default=None,
        comment="Context: gateway reference, transfer code, cancellation reason",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("idx_event_request", "service_request_id"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<RequestEvent type={self.event_type} "
            f"{self.old_status}->{self.new_status} by={self.actor_role}>"
        )


# ---------------------------------------------------------------------------
# 5. ratings
# ---------------------------------------------------------------------------
class Rating(Base):
    __tablename__ = "ratings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    service_request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("service_requests.id"), nullable=False, unique=True
    )
    provider_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("profiles.id"), nullable=False)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("profiles.id"), nullable=False)
    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    review: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_rating_range"),
        Index("idx_rating_provider", "provider_id"),
    )


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
for _model in (Profile, ServiceRequest, Transaction):
    event.listen(_model, "before_update", _set_updated_at)
