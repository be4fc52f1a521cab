"""
Error taxonomy and common error messages.

Every error carries a stable ``kind`` (safe to return to API callers) and a
human-readable message. Stack-level detail stays in the logs.
"""

from decimal import Decimal
from typing import Any

# Order errors
ERROR_ORDER_NOT_FOUND = "Order not found"
ERROR_ORDER_ACCESS_DENIED = "Order does not belong to user"
ERROR_ORDER_NOT_PAYABLE = "Order is not awaiting payment"
ERROR_NOTHING_TO_PAY = "Order pay amount is zero"

# Catalog errors
ERROR_DISH_NOT_FOUND = "Dish not found or not available"
ERROR_MERCHANT_UNAVAILABLE = "Merchant not found or not open"

# User errors
ERROR_USER_NOT_FOUND = "User not found"

# Payment errors
ERROR_INVALID_SIGNATURE = "Invalid signature"
ERROR_DECRYPT_FAILED = "Failed to decrypt refund payload"
ERROR_AMOUNT_MISMATCH = "Paid amount does not match order"
ERROR_REFUND_AMOUNT = "Refund amount must be positive and not exceed the paid amount"
ERROR_PROCESSING_FAILED = "Processing failed"

# Generic errors
ERROR_INVALID_REQUEST = "Invalid request"


class OrderPayError(Exception):
    """Base class for all errors raised by the reconciliation core."""

    kind = "internal_error"
    default_message = "Internal error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Public representation: stable kind plus reason, no internals."""
        return {"error": self.kind, "message": self.message}


class ValidationError(OrderPayError):
    """Malformed input, rejected before any mutation."""

    kind = "validation_error"
    default_message = ERROR_INVALID_REQUEST


class NotFoundError(OrderPayError):
    kind = "not_found"
    default_message = "Not found"


class InvalidStateTransition(OrderPayError):
    """Illegal lifecycle move; the order is left unchanged."""

    kind = "invalid_state_transition"

    def __init__(self, current: str, target: str, field: str = "status") -> None:
        self.current = current
        self.target = target
        self.field = field
        super().__init__(f"Cannot move {field} from '{current}' to '{target}'")


class InsufficientStock(OrderPayError):
    kind = "insufficient_stock"

    def __init__(self, dish_id: str, requested: int, available: int) -> None:
        self.dish_id = dish_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for dish {dish_id}: requested {requested}, available {available}"
        )


class InsufficientPoints(OrderPayError):
    kind = "insufficient_points"

    def __init__(self, user_id: str, requested: int, available: int) -> None:
        self.user_id = user_id
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient points: requested {requested}, available {available}")


class AlreadySignedInToday(OrderPayError):
    kind = "already_signed_in"
    default_message = "Already signed in today"


class SignatureMismatch(OrderPayError):
    """Untrusted inbound message. Discarded, never retried."""

    kind = "signature_mismatch"
    default_message = ERROR_INVALID_SIGNATURE


class DecryptionFailed(SignatureMismatch):
    kind = "decryption_failed"
    default_message = ERROR_DECRYPT_FAILED


class AmountMismatch(SignatureMismatch):
    kind = "amount_mismatch"

    def __init__(self, order_no: str, expected_fee: int, received_fee: int) -> None:
        self.order_no = order_no
        self.expected_fee = expected_fee
        self.received_fee = received_fee
        super().__init__(
            f"{ERROR_AMOUNT_MISMATCH}: order {order_no} expects {expected_fee}, got {received_fee}"
        )


class GatewayError(OrderPayError):
    kind = "gateway_error"
    default_message = "Payment gateway error"


class GatewayUnavailable(GatewayError):
    """Network failure or timeout talking to the gateway."""

    kind = "gateway_unavailable"
    default_message = "Payment gateway unavailable"


class GatewayRejected(GatewayError):
    """Gateway answered with a non-success return/result code."""

    kind = "gateway_rejected"

    def __init__(self, message: str, code: str | None = None) -> None:
        self.code = code
        super().__init__(message)


class SettlementIncomplete(OrderPayError):
    """Order is paid but its ledger writes did not all land; safe to retry."""

    kind = "settlement_incomplete"

    def __init__(self, order_no: str, failed: int) -> None:
        self.order_no = order_no
        self.failed = failed
        super().__init__(f"{failed} settlement write(s) failed for order {order_no}")


class ConcurrentUpdateError(OrderPayError):
    """A conditional update kept losing races for the same key."""

    kind = "concurrent_update"

    def __init__(self, table: str, key: str) -> None:
        self.table = table
        self.key = key
        super().__init__(f"Too many concurrent updates on {table} {key}")


def refund_amount_error(amount: Decimal, pay_amount: Decimal) -> ValidationError:
    """Build the error for a refund outside (0, pay_amount]."""
    return ValidationError(f"{ERROR_REFUND_AMOUNT} (requested {amount}, paid {pay_amount})")
