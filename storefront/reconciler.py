import logging
from typing import Callable, Dict, Optional

import httpx
from pydantic import ValidationError as SchemaError

from bakery.schemas import Order, PaymentSession, VerifyPaymentRequest

from .cart import CartStore
from .client import BakeryClient
from .errors import (
    GatewayUnavailable,
    NotAuthenticated,
    OrderRejected,
    PaymentAbandoned,
    PaymentDeclined,
    VerificationFailed,
)
from .gateway import PaymentGatewayAdapter
from .notifications import Notifier
from .order_cache import OrderCache
from .outcomes import (
    PaymentFailed,
    PaymentProof,
    PaymentSucceeded,
    SubmissionResult,
    SubmissionStatus,
)
from .session import AuthSession

logger = logging.getLogger(__name__)

CONFIRMATION_PATH = "/order-success"


def _log_navigation(path: str) -> None:
    logger.info("Navigate to %s", path)


class OrderStatusReconciler:
    """
    Turns a gateway outcome into a trusted order state.

    A gateway-reported success only counts once the backend has verified
    it; a failed verification is surfaced, never retried or assumed paid.
    Orders whose verification failed stay blocked for payment until support
    resolves them.
    """

    def __init__(
        self,
        client: BakeryClient,
        cart: CartStore,
        orders: OrderCache,
        notifier: Notifier,
        gateway: PaymentGatewayAdapter,
        session: AuthSession,
        navigate: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._client = client
        self._cart = cart
        self._orders = orders
        self._notifier = notifier
        self._gateway = gateway
        self._session = session
        self._navigate = navigate or _log_navigation
        self._unverified: Dict[int, VerificationFailed] = {}

    def complete(self, order: Order, message: str, clear_cart: bool = True) -> SubmissionResult:
        """The single place where a placed order empties the cart."""
        self._orders.remember(order)
        if clear_cart:
            self._cart.clear()
        self._notifier.success(message, order_id=order.id)
        self._navigate(CONFIRMATION_PATH)
        return SubmissionResult(status=SubmissionStatus.completed, order=order)

    async def settle(
        self,
        order: Order,
        payment_session: PaymentSession,
        key_id: Optional[str] = None,
        clear_cart: bool = True,
    ) -> SubmissionResult:
        """Runs one gateway attempt for the order and maps its outcome."""
        try:
            outcome = await self._gateway.initiate(order, payment_session, key_id)
        except GatewayUnavailable as e:
            self._notifier.error(
                f"{e.message} Your order is saved as pending.",
                retryable=True,
                order_id=order.id,
            )
            raise

        if isinstance(outcome, PaymentSucceeded):
            return await self.verify(outcome.proof, order.id, clear_cart=clear_cart)

        if isinstance(outcome, PaymentFailed):
            logger.warning(f"❌ [PAYMENT] Order {order.id} declined: {outcome.reason}")
            message = outcome.reason or "Payment failed. Please try again."
            self._notifier.error(message, retryable=True, order_id=order.id)
            raise PaymentDeclined(message, order_id=order.id, code=outcome.code)

        logger.info(f"[PAYMENT] Order {order.id} checkout dismissed; payment pending")
        message = "Payment cancelled. Your order is saved as pending."
        self._notifier.info(message, order_id=order.id)
        return SubmissionResult(
            status=SubmissionStatus.payment_pending,
            order=order,
            error=PaymentAbandoned(message, order_id=order.id),
        )

    async def verify(self, proof: PaymentProof, order_id: int, clear_cart: bool = True) -> SubmissionResult:
        request = VerifyPaymentRequest(
            gateway_order_id=proof.gateway_order_id,
            gateway_payment_id=proof.gateway_payment_id,
            gateway_signature=proof.gateway_signature,
            order_id=order_id,
        )

        try:
            data = await self._client.verify_payment(request)
        except httpx.HTTPError as e:
            logger.error(f"❌ [VERIFY] Verification request for order {order_id} failed: {str(e)}")
            raise self._verification_failed(order_id)

        if not data.get("success"):
            logger.error(f"❌ [VERIFY] Backend rejected payment for order {order_id}: {data.get('message')}")
            raise self._verification_failed(order_id)

        confirmed = None
        if data.get("order"):
            try:
                confirmed = Order.model_validate(data["order"])
            except SchemaError:
                logger.warning("Malformed order in verification response for order %s", order_id)

        order = self._orders.mark_paid(order_id, confirmed)
        logger.info(f"🎉 [VERIFY] Order {order_id} paid and verified")

        if order is None:
            # Verified but unknown locally (retry from a fresh session)
            if clear_cart:
                self._cart.clear()
            self._notifier.success("Payment successful! Order confirmed 🎉", order_id=order_id)
            self._navigate(CONFIRMATION_PATH)
            return SubmissionResult(status=SubmissionStatus.completed)

        return self.complete(order, "Payment successful! Order confirmed 🎉", clear_cart=clear_cart)

    def _verification_failed(self, order_id: int) -> VerificationFailed:
        order = self._orders.get(order_id)
        reference = order.order_number if order else str(order_id)
        message = f"Payment verification failed. Please contact support with order #{reference}."
        self._notifier.error(message, order_id=order_id)
        error = VerificationFailed(message, order_id=order_id)
        self._unverified[order_id] = error
        return error

    def verification_failure(self, order_id: int) -> Optional[VerificationFailed]:
        """The unresolved verification failure of the order, if any."""
        return self._unverified.get(order_id)

    async def retry_payment(self, order_id: int, amount: float, clear_cart: bool = False) -> SubmissionResult:
        """
        Opens a fresh gateway session for an order left pending.
        Never creates an order, and refuses orders whose verification failed.
        """
        blocked = self._unverified.get(order_id)
        if blocked is not None:
            logger.warning(f"⚠️ [PAYMENT] Retry refused for order {order_id}: verification failed earlier")
            self._notifier.error(blocked.message, order_id=order_id)
            raise VerificationFailed(blocked.message, order_id=order_id)

        try:
            await self._session.require_user()
        except NotAuthenticated as e:
            self._notifier.error("Please login to complete payment")
            raise NotAuthenticated("Please login to complete payment") from e

        order = self._orders.get(order_id) or await self._fetch_order(order_id)

        try:
            data = await self._client.create_payment_session(amount, order_id)
        except httpx.HTTPError as e:
            logger.error(f"❌ [PAYMENT] Session request for order {order_id} failed: {str(e)}")
            message = "Failed to initialize payment."
            self._notifier.error(message, retryable=True, order_id=order_id)
            raise GatewayUnavailable(message, order_id=order_id) from e

        if not data.get("success") or not data.get("session"):
            message = data.get("message") or "Failed to initialize payment."
            self._notifier.error(message, retryable=True, order_id=order_id)
            raise GatewayUnavailable(message, order_id=order_id)

        try:
            payment_session = PaymentSession.model_validate(data["session"])
        except SchemaError as e:
            logger.error(f"❌ [PAYMENT] Malformed session for order {order_id}: {str(e)}")
            message = "Failed to initialize payment."
            self._notifier.error(message, retryable=True, order_id=order_id)
            raise GatewayUnavailable(message, order_id=order_id) from e

        logger.info(f"🔁 [PAYMENT] Retrying payment for order {order_id} - Session: {payment_session.id}")
        return await self.settle(order, payment_session, data.get("key_id"), clear_cart=clear_cart)

    async def _fetch_order(self, order_id: int) -> Order:
        try:
            data = await self._client.get_order(order_id)
        except httpx.HTTPError as e:
            raise self._order_rejected("Could not load the order. Please try again.", order_id) from e

        if not data.get("success") or not data.get("order"):
            raise self._order_rejected(data.get("message") or "Order not found", order_id)

        try:
            order = Order.model_validate(data["order"])
        except SchemaError as e:
            logger.error(f"❌ [PAYMENT] Malformed order {order_id} in response: {str(e)}")
            raise self._order_rejected("Could not load the order. Please try again.", order_id) from e
        return self._orders.remember(order)

    def _order_rejected(self, message: str, order_id: int) -> OrderRejected:
        self._notifier.error(message, retryable=True, order_id=order_id)
        return OrderRejected(message, order_id=order_id)
