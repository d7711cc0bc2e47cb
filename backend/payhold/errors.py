from __future__ import annotations


class EscrowError(Exception):
    """Base class for payment-hold failures that map onto an API response."""

    code = "ESCROW_ERROR"
    http_status = 400
    default_message = "Payment hold operation failed"
    retryable = False

    def __init__(self, message: str | None = None, *, order_id: int | None = None):
        self.message = (message or self.default_message).strip()
        self.order_id = order_id
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {
            "ok": False,
            "error": self.code,
            "message": self.message,
            "status": int(self.http_status),
        }
        if self.retryable:
            payload["retryable"] = True
        return payload


class OrderNotFoundError(EscrowError):
    code = "ORDER_NOT_FOUND"
    http_status = 404
    default_message = "Order not found"


class ForbiddenError(EscrowError):
    code = "FORBIDDEN"
    http_status = 403
    default_message = "You can only confirm receipt for your own orders"


class InvalidHoldStateError(EscrowError):
    code = "INVALID_HOLD_STATE"
    http_status = 400
    default_message = "Order is not in a valid state for confirmation"

    def __init__(self, message: str | None = None, *, order_id: int | None = None, status: str = ""):
        self.status = status
        super().__init__(message, order_id=order_id)


class ConflictError(EscrowError):
    code = "TRANSFER_EXISTS"
    http_status = 409
    default_message = "Payment has already been released to the seller"


class PreconditionFailedError(EscrowError):
    code = "PRECONDITION_FAILED"
    http_status = 412
    default_message = "Order cannot be released yet"


class AlreadyClaimedError(EscrowError):
    """Another execution already claimed the order; a benign race loss."""

    code = "ALREADY_CLAIMED"
    http_status = 200
    default_message = "Payment has already been processed"


class ExternalServiceFailure(EscrowError):
    code = "EXTERNAL_SERVICE_FAILURE"
    http_status = 502
    default_message = "Payment transfer failed. Please try again or contact support."
    retryable = True


class ReleaseNotRecordedError(EscrowError):
    """The transfer went out but the order row could not be stamped with it."""

    code = "RELEASE_NOT_RECORDED"
    http_status = 500
    default_message = "Payment was sent but could not be recorded. Support has been notified."

    def __init__(self, message: str | None = None, *, order_id: int | None = None, transfer_reference: str = ""):
        self.transfer_reference = transfer_reference
        super().__init__(message, order_id=order_id)
