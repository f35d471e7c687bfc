# bakery/payments.py
import logging
from typing import Any, Optional, Tuple

import stripe

from .config import settings
from .schemas import (
    Order,
    PaymentDetails,
    PaymentSession,
    PaymentSessionState,
    RefundDetails,
    VerifyPaymentRequest,
)

logger = logging.getLogger(__name__)

stripe.api_key = settings.stripe_secret_key

PLACEHOLDER_PREFIXES = ("YOUR_", "sk_test_YOUR", "sk_live_YOUR")


def is_gateway_configured() -> bool:
    key = stripe.api_key or ""
    return bool(key) and not key.startswith(PLACEHOLDER_PREFIXES)


def to_minor_units(amount: float) -> int:
    # Stripe amounts are in minor units (paise for INR)
    return int(round(amount * 100))


def from_minor_units(amount: Optional[int]) -> float:
    return (amount or 0) / 100


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    return getattr(obj, name, None)


def _id_of(value: Any) -> Optional[str]:
    """Expanded Stripe objects carry an id; collapsed ones are the id."""
    if value is None or isinstance(value, str):
        return value
    return getattr(value, "id", None)


def create_checkout_session(order: Order, amount: float, currency: str) -> PaymentSession:
    """
    Creates a Stripe Checkout Session for a persisted order.
    The internal order id travels as client_reference_id and metadata.
    """
    frontend_url = settings.frontend_url
    address = order.shipping_address

    checkout_session = stripe.checkout.Session.create(
        payment_method_types=["card"],
        line_items=[
            {
                "price_data": {
                    "currency": currency,
                    "product_data": {
                        "name": f"Perfect Bakery - Order #{order.order_number}",
                        "description": f"{len(order.items)} item(s)",
                    },
                    "unit_amount": to_minor_units(amount),
                },
                "quantity": 1,
            }
        ],
        mode="payment",
        success_url=f"{frontend_url}/order-success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{frontend_url}/checkout/cancel?order_id={order.id}",
        client_reference_id=str(order.id),
        customer_email=address.email or None,
        metadata={
            "order_id": str(order.id),
            "order_number": order.order_number,
            "customer_name": address.full_name,
            "customer_phone": address.phone,
        },
        payment_intent_data={
            "metadata": {"order_id": str(order.id), "order_number": order.order_number},
        },
    )

    return PaymentSession(
        id=checkout_session.id,
        url=_field(checkout_session, "url"),
        amount=amount,
        currency=currency,
    )


def expire_checkout_session(session_id: str) -> None:
    """Best-effort: a superseded session that is already closed is fine."""
    try:
        stripe.checkout.Session.expire(session_id)
        logger.info(f"⌛ [PAYMENT] Superseded session expired: {session_id}")
    except stripe.StripeError as e:
        logger.warning(f"⚠️ Could not expire session {session_id}: {str(e)}")


def get_session_state(session_id: str) -> PaymentSessionState:
    session = stripe.checkout.Session.retrieve(session_id, expand=["payment_intent"])

    payment_intent = _field(session, "payment_intent")
    last_error = _field(payment_intent, "last_payment_error") if not isinstance(payment_intent, str) else None
    metadata = _field(session, "metadata")
    order_id = _field(metadata, "order_id") or _field(session, "client_reference_id")

    return PaymentSessionState(
        session_id=session.id,
        status=_field(session, "status"),
        payment_status=_field(session, "payment_status"),
        payment_intent=_id_of(payment_intent),
        order_id=int(order_id) if order_id else None,
        failure_code=_field(last_error, "code"),
        failure_reason=_field(last_error, "message"),
    )


def verify_checkout_payment(request: VerifyPaymentRequest) -> Tuple[bool, str]:
    """
    Server-side check of a gateway-reported success. The client's claim is
    never trusted: the session is fetched from Stripe and must be paid,
    tagged with this order and settled by the reported payment intent.
    """
    session = stripe.checkout.Session.retrieve(request.gateway_order_id)

    if _field(session, "payment_status") != "paid":
        return False, f"Payment not completed (status: {_field(session, 'payment_status')})"

    metadata = _field(session, "metadata")
    tagged_order = _field(metadata, "order_id") or _field(session, "client_reference_id")
    if str(tagged_order) != str(request.order_id):
        return False, "Payment verification failed - session does not belong to this order"

    intent_id = _id_of(_field(session, "payment_intent"))
    if intent_id != request.gateway_payment_id:
        return False, "Payment verification failed - payment id mismatch"

    return True, "Payment verified successfully"


def get_payment_details(payment_id: str) -> PaymentDetails:
    intent = stripe.PaymentIntent.retrieve(payment_id)
    order_id = _field(_field(intent, "metadata"), "order_id")
    methods = _field(intent, "payment_method_types") or []

    return PaymentDetails(
        id=intent.id,
        amount=from_minor_units(_field(intent, "amount")),
        currency=_field(intent, "currency") or settings.currency,
        status=_field(intent, "status"),
        method=methods[0] if methods else None,
        email=_field(intent, "receipt_email"),
        order_id=int(order_id) if order_id else None,
        created_at=_field(intent, "created"),
    )


def refund_payment(payment_id: str, amount: Optional[float] = None, reason: Optional[str] = None) -> RefundDetails:
    """Full refund unless an amount (major units) is given."""
    params = {
        "payment_intent": payment_id,
        "metadata": {"reason": reason or "Customer requested refund"},
    }
    if amount:
        params["amount"] = to_minor_units(amount)

    refund = stripe.Refund.create(**params)
    logger.info(f"↩️ [PAYMENT] Refund {refund.id} created for {payment_id}")

    return RefundDetails(
        id=refund.id,
        amount=from_minor_units(_field(refund, "amount")),
        currency=_field(refund, "currency"),
        status=_field(refund, "status"),
    )


def construct_webhook_event(payload: bytes, signature: Optional[str]):
    return stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
