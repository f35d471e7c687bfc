from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from bakery.schemas import Order

from .errors import CheckoutError


# ==================== GATEWAY ====================

@dataclass(frozen=True)
class PaymentProof:
    """Gateway transaction identifiers, opaque to the storefront."""
    gateway_order_id: str
    gateway_payment_id: str
    order_id: int
    gateway_signature: Optional[str] = None


@dataclass(frozen=True)
class PaymentSucceeded:
    proof: PaymentProof


@dataclass(frozen=True)
class PaymentFailed:
    reason: str
    code: Optional[str] = None


@dataclass(frozen=True)
class PaymentDismissed:
    pass


GatewayOutcome = Union[PaymentSucceeded, PaymentFailed, PaymentDismissed]


# ==================== SUBMISSION ====================

class SubmissionStatus(str, Enum):
    completed = "completed"
    payment_pending = "payment_pending"
    failed = "failed"


@dataclass
class SubmissionResult:
    status: SubmissionStatus
    order: Optional[Order] = None
    error: Optional[CheckoutError] = None
    fell_back_to_cod: bool = False

    @property
    def completed(self) -> bool:
        return self.status == SubmissionStatus.completed

    @classmethod
    def failure(cls, error: CheckoutError, order: Optional[Order] = None) -> "SubmissionResult":
        return cls(status=SubmissionStatus.failed, order=order, error=error)
