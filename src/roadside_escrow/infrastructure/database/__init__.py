"""Database infrastructure: engine, ORM models, and repositories."""

from roadside_escrow.infrastructure.database.engine import (
    close_db,
    enable_sqlite_savepoints,
    get_async_session,
    get_session_factory,
    init_db,
)
from roadside_escrow.infrastructure.database.orm_models import (
    Base,
    Profile,
    Rating,
    RequestEvent,
    ServiceRequest,
    Transaction,
)
from roadside_escrow.infrastructure.database.repositories import (
    EventRepository,
    ProfileRepository,
    RatingRepository,
    RequestRepository,
    TransactionRepository,
)

__all__ = [
    "Base",
    "Profile",
    "Rating",
    "RequestEvent",
    "ServiceRequest",
    "Transaction",
    "EventRepository",
    "ProfileRepository",
    "RatingRepository",
    "RequestRepository",
    "TransactionRepository",
    "get_async_session",
    "get_session_factory",
    "init_db",
    "close_db",
    "enable_sqlite_savepoints",
]
