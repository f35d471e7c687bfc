"""
User-facing error taxonomy of the checkout flow.

Every network-facing failure is converted into one of these at the
submission service / reconciler boundary; presentation code never sees a
raw httpx exception.
"""
from typing import Optional


class CheckoutError(Exception):
    kind = "checkout_error"
    retryable = False

    def __init__(self, message: str, order_id: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.order_id = order_id


class ValidationError(CheckoutError):
    """Incomplete or malformed draft fields. Never reaches the network."""
    kind = "validation"

    def __init__(self, message: str, fields: Optional[dict] = None) -> None:
        super().__init__(message)
        self.fields = fields or {}


class NotAuthenticated(CheckoutError):
    kind = "not_authenticated"

    def __init__(self, message: str = "Please login to place an order") -> None:
        super().__init__(message)


class OrderRejected(CheckoutError):
    kind = "order_rejected"
    retryable = True


class GatewayUnavailable(CheckoutError):
    kind = "gateway_unavailable"
    retryable = True


class PaymentDeclined(CheckoutError):
    kind = "payment_declined"
    retryable = True

    def __init__(self, message: str, order_id: Optional[int] = None, code: Optional[str] = None) -> None:
        super().__init__(message, order_id)
        self.code = code


class PaymentAbandoned(CheckoutError):
    """Soft state: the buyer closed the gateway UI. The order stays pending."""
    kind = "payment_abandoned"
    retryable = True


class VerificationFailed(CheckoutError):
    """The gateway said paid but the backend did not confirm it. Fail closed."""
    kind = "verification_failed"


class DuplicateSubmission(CheckoutError):
    kind = "duplicate_submission"

    def __init__(self, message: str = "Your order is already being placed") -> None:
        super().__init__(message)
