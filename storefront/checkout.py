"""
Checkout wizard: Contact -> Delivery -> Payment -> Submitting.

Step navigation and validation are pure functions of (step, draft); the
``CheckoutFlow`` controller holds the current step and draft and hands the
final confirm to the submission service.
"""
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from bakery.schemas import Order, PaymentMethod, User

from .cart import CartSnapshot, CartStore
from .draft import CheckoutDraft
from .errors import CheckoutError, DuplicateSubmission, ValidationError, VerificationFailed
from .notifications import Notifier
from .outcomes import SubmissionResult, SubmissionStatus
from .reconciler import OrderStatusReconciler
from .submission import OrderSubmissionService

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class WizardStep(str, Enum):
    contact = "contact"
    delivery = "delivery"
    payment = "payment"
    submitting = "submitting"
    completed = "completed"
    aborted = "aborted"


OPEN_STEPS = (WizardStep.contact, WizardStep.delivery, WizardStep.payment, WizardStep.submitting)


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str


# ==================== PURE TRANSITIONS ====================

def validate_step(step: WizardStep, draft: CheckoutDraft) -> List[FieldError]:
    errors: List[FieldError] = []

    if step == WizardStep.contact:
        contact = draft.contact
        if not contact.name.strip():
            errors.append(FieldError("name", "Name is required"))
        if not contact.email.strip():
            errors.append(FieldError("email", "Email is required"))
        elif not EMAIL_PATTERN.match(contact.email.strip()):
            errors.append(FieldError("email", "Please enter a valid email"))
        if not contact.phone.strip():
            errors.append(FieldError("phone", "Phone is required"))

    elif step == WizardStep.delivery:
        delivery = draft.delivery
        if not delivery.street.strip():
            errors.append(FieldError("street", "Address is required"))
        if not delivery.city.strip():
            errors.append(FieldError("city", "City is required"))
        if not delivery.pincode.strip():
            errors.append(FieldError("pincode", "Pincode is required"))

    return errors


def advance(step: WizardStep, draft: CheckoutDraft) -> Tuple[WizardStep, List[FieldError]]:
    """Next step if the current one is valid, else the same step and its errors."""
    errors = validate_step(step, draft)
    if errors:
        return step, errors
    if step == WizardStep.contact:
        return WizardStep.delivery, []
    if step == WizardStep.delivery:
        return WizardStep.payment, []
    return step, []


def go_back(step: WizardStep) -> WizardStep:
    if step == WizardStep.delivery:
        return WizardStep.contact
    if step == WizardStep.payment:
        return WizardStep.delivery
    return step


def validate_draft(draft: CheckoutDraft) -> Tuple[Optional[WizardStep], List[FieldError]]:
    """First step whose fields are invalid, with its errors."""
    for step in (WizardStep.contact, WizardStep.delivery):
        errors = validate_step(step, draft)
        if errors:
            return step, errors
    return None, []


# ==================== CONTROLLER ====================

class CheckoutFlow:
    """
    One checkout modal.

    A pending order left by a dismissed or failed payment is remembered
    together with the cart snapshot it was created from; confirming again
    with the same cart retries payment for that order instead of placing a
    second one. The pending order survives close and reopen, so an order
    whose payment verification failed stays blocked across both.
    """

    def __init__(
        self,
        submission: OrderSubmissionService,
        reconciler: OrderStatusReconciler,
        cart: CartStore,
        notifier: Notifier,
    ) -> None:
        self._submission = submission
        self._reconciler = reconciler
        self._cart = cart
        self._notifier = notifier

        self.step = WizardStep.aborted
        self.draft = CheckoutDraft()
        self.field_errors: List[FieldError] = []
        self.error: Optional[CheckoutError] = None
        self.pending_order: Optional[Order] = None
        self._pending_snapshot: Optional[CartSnapshot] = None

    @property
    def is_open(self) -> bool:
        return self.step in OPEN_STEPS

    @property
    def submitting(self) -> bool:
        return self.step == WizardStep.submitting

    def open(self, profile: Optional[User] = None) -> None:
        if self.is_open:
            return
        if self._cart.is_empty():
            raise ValidationError("Your cart is empty", {"cart": "empty"})

        self.step = WizardStep.contact
        self.draft = CheckoutDraft.for_user(profile)
        self.field_errors = []
        self.error = None

    def close(self) -> bool:
        """Aborts the wizard. Not possible while an order is being placed."""
        if self.submitting:
            return False
        if self.step != WizardStep.completed:
            self.step = WizardStep.aborted
        self.draft = CheckoutDraft()
        self.field_errors = []
        self.error = None
        return True

    # ---------- Draft edits ----------

    def update_contact(self, **fields) -> None:
        self._ensure_editable()
        self.draft = self.draft.model_copy(update={"contact": self.draft.contact.model_copy(update=fields)})

    def update_delivery(self, **fields) -> None:
        self._ensure_editable()
        self.draft = self.draft.model_copy(update={"delivery": self.draft.delivery.model_copy(update=fields)})

    def choose_payment_method(self, method: PaymentMethod) -> None:
        self._ensure_editable()
        self.draft = self.draft.model_copy(update={"payment_method": PaymentMethod(method)})

    def set_notes(self, notes: str) -> None:
        self._ensure_editable()
        self.draft = self.draft.model_copy(update={"notes": notes})

    def set_coupon_code(self, code: str) -> None:
        self._ensure_editable()
        self.draft = self.draft.model_copy(update={"coupon_code": code.strip().upper()})

    def redeem_rewards(self, points: int) -> None:
        """Points to spend on this order; capped to the balance when the order is built."""
        self._ensure_editable()
        if points < 0:
            raise ValidationError("Reward points cannot be negative", {"rewards": "negative"})
        self.draft = self.draft.model_copy(update={"rewards_to_redeem": points})

    def _ensure_editable(self) -> None:
        if self.step not in (WizardStep.contact, WizardStep.delivery, WizardStep.payment):
            raise ValidationError("Checkout is not open for editing")

    # ---------- Navigation ----------

    def next(self) -> bool:
        self._ensure_editable()
        self.step, self.field_errors = advance(self.step, self.draft)
        return not self.field_errors

    def back(self) -> None:
        self._ensure_editable()
        self.field_errors = []
        self.step = go_back(self.step)

    # ---------- Submit ----------

    async def confirm(self) -> SubmissionResult:
        if self.submitting:
            raise DuplicateSubmission()
        if self.step != WizardStep.payment:
            return self._reject(ValidationError("Please complete the previous steps first"))

        invalid_step, errors = validate_draft(self.draft)
        if invalid_step is not None:
            self.step = invalid_step
            self.field_errors = errors
            return self._reject(ValidationError("Please fill in the required fields", {e.field: e.message for e in errors}))

        snapshot = self._cart.snapshot()
        blocked = self._verification_block(snapshot)
        if blocked is not None:
            self.error = blocked
            self._notifier.error(blocked.message, order_id=blocked.order_id)
            return SubmissionResult.failure(blocked, order=self.pending_order)

        self.step = WizardStep.submitting
        self.error = None
        try:
            if self._can_resume(snapshot):
                order = self.pending_order
                logger.info(f"🔁 [CHECKOUT] Resuming payment for pending order {order.id}")
                result = await self._reconciler.retry_payment(order.id, order.total_price, clear_cart=True)
            else:
                result = await self._submission.submit_order(self.draft)
        except CheckoutError as e:
            return self._failed(e, snapshot)
        except Exception:
            self.step = WizardStep.payment
            logger.exception("❌ [CHECKOUT] Unexpected error while placing order")
            raise

        if result.status == SubmissionStatus.completed:
            self.step = WizardStep.completed
            self.draft = CheckoutDraft()
            self.field_errors = []
            self.pending_order = None
            self._pending_snapshot = None
            return result

        # Payment left pending: stay on Payment so the buyer can retry
        self.step = WizardStep.payment
        self.error = result.error
        self._remember_pending(result.order, snapshot)
        return result

    def _verification_block(self, snapshot: CartSnapshot) -> Optional[VerificationFailed]:
        """
        A pending order whose payment could not be verified is never paid
        again from this checkout while the cart still describes it.
        """
        order = self.pending_order
        if order is None or snapshot != self._pending_snapshot:
            return None
        return self._reconciler.verification_failure(order.id)

    def _can_resume(self, snapshot: CartSnapshot) -> bool:
        order = self.pending_order
        return (
            order is not None
            and not order.is_paid
            and self.draft.payment_method == PaymentMethod.online
            and snapshot == self._pending_snapshot
        )

    def _remember_pending(self, order: Optional[Order], snapshot: CartSnapshot) -> None:
        if order is None:
            return
        self.pending_order = order
        self._pending_snapshot = snapshot

    def _failed(self, error: CheckoutError, snapshot: CartSnapshot) -> SubmissionResult:
        self.step = WizardStep.payment
        self.error = error
        if error.order_id is not None:
            order = self._submission.known_order(error.order_id)
            self._remember_pending(order, snapshot)
        logger.warning(f"⚠️ [CHECKOUT] Checkout failed ({error.kind}): {error.message}")
        return SubmissionResult.failure(error, order=self.pending_order)

    def _reject(self, error: ValidationError) -> SubmissionResult:
        self.error = error
        self._notifier.error(error.message)
        return SubmissionResult.failure(error)
