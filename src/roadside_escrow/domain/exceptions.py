"""Domain exceptions for the roadside escrow service.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to response envelopes by the API layer's
middleware.
"""


class RoadsideError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ROADSIDE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Input Errors ---


class ValidationError(RoadsideError):
    """Raised when a required field is missing or malformed."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR") -> None:
        super().__init__(message=message, code=code)


class MissingQuoteError(ValidationError):
    """Raised when payment is initialized for a request without a quote."""

    def __init__(self, request_id: str) -> None:
        super().__init__(
            message=f"Service request {request_id} has no quoted amount",
            code="MISSING_QUOTE",
        )
        self.request_id = request_id


class AuthError(RoadsideError):
    """Raised on an invalid signature or an actor acting on someone else's request."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="AUTH_ERROR")


# --- Lookup Errors ---


class NotFoundError(RoadsideError):
    """Raised when a request, provider or gateway reference does not exist."""

    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(
            message=f"{kind} not found: {identifier}",
            code="NOT_FOUND",
        )
        self.kind = kind
        self.identifier = identifier


class RequestNotFoundError(NotFoundError):
    def __init__(self, identifier: str) -> None:
        super().__init__("Service request", identifier)


class ProfileNotFoundError(NotFoundError):
    def __init__(self, identifier: str) -> None:
        super().__init__("Profile", identifier)


class TransactionNotFoundError(NotFoundError):
    def __init__(self, identifier: str) -> None:
        super().__init__("Transaction", identifier)


# --- Lifecycle Errors ---


class IllegalTransitionError(RoadsideError):
    """Raised when a status edge does not exist or the actor lacks authority for it.

    Example: pending -> paid, or a customer moving assigned -> quoted.
    """

    def __init__(self, current_state: str, attempted_state: str, reason: str = "") -> None:
        message = f"Illegal transition: {current_state} -> {attempted_state}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message=message, code="ILLEGAL_TRANSITION")
        self.current_state = current_state
        self.attempted_state = attempted_state


class PreconditionError(RoadsideError):
    """Raised when a settlement step is attempted before its preconditions hold."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="PRECONDITION_FAILED")


# --- Settlement Errors ---


class ExternalServiceError(RoadsideError):
    """Raised when the payment gateway or push service returns a failure."""

    def __init__(self, service: str, message: str, status_code: int | None = None) -> None:
        super().__init__(
            message=f"{service}: {message}",
            code="EXTERNAL_SERVICE_ERROR",
        )
        self.service = service
        self.status_code = status_code


class DuplicateEventError(RoadsideError):
    """Raised internally when a gateway event was already recorded.

    Never surfaced to callers: the settlement engine converts it to success.
    """

    def __init__(self, reference: str) -> None:
        super().__init__(
            message=f"Duplicate gateway event for reference: {reference}",
            code="DUPLICATE_EVENT",
        )
        self.reference = reference
