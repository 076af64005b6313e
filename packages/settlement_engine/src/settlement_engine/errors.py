"""
Settlement errors.

Every error carries a stable code and whether retrying (or waiting for the
provider to redeliver) can succeed.
"""

from typing import Any


class SettlementError(Exception):
    """Base error for the settlement engine."""

    code = "SETTLEMENT_ERROR"

    def __init__(
        self,
        message: str,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}
        self.retryable = retryable


class AuthenticationFailure(SettlementError):
    """Bad or missing webhook signature. Rejected, nothing mutated."""

    code = "AUTHENTICATION_FAILURE"


class MalformedPayload(SettlementError):
    """Body isn't JSON or lacks the fields its event type requires."""

    code = "MALFORMED_PAYLOAD"


class LedgerApplicationFailure(SettlementError):
    """A ledger operation could not be applied. No partial state is left behind."""

    code = "LEDGER_APPLICATION_FAILURE"


class OrderNotFound(LedgerApplicationFailure):
    """The event references an order we don't (yet) know about."""

    code = "ORDER_NOT_FOUND"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        # The order may be committed after the webhook arrives; redelivery can succeed.
        super().__init__(message, details=details, retryable=True)


class StoreNotFound(LedgerApplicationFailure):
    """A split or payout references a store that isn't registered."""

    code = "STORE_NOT_FOUND"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details=details, retryable=True)


class InvalidTransition(LedgerApplicationFailure):
    """The order is in a state the event can't move it out of."""

    code = "INVALID_TRANSITION"


class PersistenceFailure(LedgerApplicationFailure):
    """Storage error mid-operation. The unit of work was rolled back."""

    code = "PERSISTENCE_FAILURE"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details=details, retryable=True)


class DispatchDeliveryFailure(SettlementError):
    """An automation endpoint didn't acknowledge a delivery attempt."""

    code = "DISPATCH_DELIVERY_FAILURE"

    def __init__(self, message: str, status_code: int | None = None, url: str | None = None):
        super().__init__(message, details={"status_code": status_code, "url": url}, retryable=True)
        self.status_code = status_code
