"""Domain error taxonomy for the wallet ledger and order settlement."""

from decimal import Decimal
from typing import Optional


class PanelError(Exception):
    """Base error with a stable machine-readable code."""

    def __init__(self, message: str, code: str, status_code: int = 400) -> None:
        self.message = message
        self.code = code
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


class InvalidInput(PanelError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason, "INVALID_INPUT", 422)


class InvalidQuantity(PanelError):
    def __init__(self, quantity: int, min_order: int, max_order: int, reason: Optional[str] = None) -> None:
        super().__init__(
            reason or f"quantity {quantity} out of range: must be between {min_order} and {max_order}",
            "INVALID_QUANTITY",
            422,
        )


class InsufficientFunds(PanelError):
    """Raised when a ledger entry would drive an account balance below zero."""

    def __init__(self, available: Decimal, required: Decimal) -> None:
        self.available = available
        self.required = required
        super().__init__(
            f"insufficient balance: available ${available}, required ${required}",
            "INSUFFICIENT_FUNDS",
            402,
        )


class InvalidState(PanelError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason, "INVALID_STATE", 409)


class AlreadyRefunded(PanelError):
    def __init__(self, order_id: int) -> None:
        super().__init__(f"Order #{order_id} has already been refunded", "ALREADY_REFUNDED", 409)


class ConcurrentUpdateConflict(PanelError):
    """The read-modify-write on an account lost a race twice; the caller may retry."""

    def __init__(self, account_id: int) -> None:
        super().__init__(
            f"Concurrent update on account {account_id}; retry the request",
            "CONCURRENT_UPDATE",
            409,
        )


class StorageUnavailable(PanelError):
    def __init__(self, reason: str = "Storage temporarily unavailable") -> None:
        super().__init__(reason, "STORAGE_UNAVAILABLE", 503)


class NotFound(PanelError):
    def __init__(self, resource: str, code: str) -> None:
        super().__init__(f"{resource} not found", code, 404)


class AccountNotFound(NotFound):
    def __init__(self, account_id: int) -> None:
        super().__init__(f"Account {account_id}", "ACCOUNT_NOT_FOUND")


class ServiceNotFound(NotFound):
    def __init__(self, service_id: int) -> None:
        super().__init__(f"Service {service_id}", "SERVICE_NOT_FOUND")


class OrderNotFound(NotFound):
    def __init__(self, order_id: int) -> None:
        super().__init__(f"Order {order_id}", "ORDER_NOT_FOUND")


class AccountInactive(PanelError):
    def __init__(self, account_id: int, status: str) -> None:
        super().__init__(f"Account {account_id} is {status}", "ACCOUNT_INACTIVE", 403)


class ServiceInactive(PanelError):
    def __init__(self, service_id: int) -> None:
        super().__init__(f"Service {service_id} is not active", "SERVICE_INACTIVE", 409)


class DuplicateEmail(PanelError):
    def __init__(self, email: str) -> None:
        super().__init__(f"Email {email} is already registered", "DUPLICATE_EMAIL", 409)


class IdempotencyConflict(PanelError):
    def __init__(self) -> None:
        super().__init__("Idempotency-Key was used for a different request", "IDEMPOTENCY_CONFLICT", 409)


class RequestInFlight(PanelError):
    def __init__(self) -> None:
        super().__init__("Request in flight; retry shortly", "REQUEST_IN_FLIGHT", 425)
