"""
Order submission: cart + checkout draft -> persisted order -> payment.

Steps within one submission are strictly sequential: create the order,
then (online only) create a gateway session, wait for the gateway, verify.
"""
import asyncio
import logging
import time
from typing import Optional

import httpx
from pydantic import ValidationError as SchemaError

from bakery.pricing import PricingPolicy
from bakery.schemas import Order, OrderCreate, PaymentMethod, PaymentSession, User

from .cart import CartStore
from .client import BakeryClient
from .draft import CheckoutDraft
from .errors import (
    DuplicateSubmission,
    GatewayUnavailable,
    NotAuthenticated,
    OrderRejected,
    ValidationError,
)
from .notifications import Notifier
from .order_cache import OrderCache
from .outcomes import SubmissionResult
from .reconciler import OrderStatusReconciler
from .session import AuthSession

logger = logging.getLogger(__name__)


class OrderSubmissionService:
    def __init__(
        self,
        client: BakeryClient,
        cart: CartStore,
        session: AuthSession,
        reconciler: OrderStatusReconciler,
        orders: OrderCache,
        notifier: Notifier,
        pricing: Optional[PricingPolicy] = None,
        default_state: str = "",
        default_country: str = "India",
    ) -> None:
        self._client = client
        self._cart = cart
        self._session = session
        self._reconciler = reconciler
        self._orders = orders
        self._notifier = notifier
        self._pricing = pricing or PricingPolicy()
        self._default_state = default_state
        self._default_country = default_country
        self._lock = asyncio.Lock()

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    async def submit_order(self, draft: CheckoutDraft) -> SubmissionResult:
        """
        Places the order described by the cart and the draft.

        Raises a CheckoutError subclass on failure; the cart and draft are
        left untouched on every failure path.
        """
        if self._lock.locked():
            raise DuplicateSubmission()

        async with self._lock:
            return await self._submit(draft)

    def build_order_request(self, draft: CheckoutDraft, user: Optional[User] = None) -> OrderCreate:
        lines = self._cart.lines()
        subtotal = self._cart.subtotal()
        available = user.rewards if user else 0
        points = self._pricing.redeemable_points(draft.rewards_to_redeem, available, subtotal)
        prices = self._pricing.price(subtotal, discount=self._pricing.reward_discount(points))
        return OrderCreate(
            items=[line.to_order_item() for line in lines],
            shipping_address=draft.to_shipping_address(self._default_state, self._default_country),
            payment_method=draft.payment_method,
            items_price=prices.items_price,
            tax_price=prices.tax_price,
            shipping_price=prices.shipping_price,
            discount_amount=prices.discount_amount,
            coupon_code=draft.coupon_code.strip() or None,
            rewards_used=points,
            total_price=prices.total_price,
            delivery_type="delivery",
            notes=draft.notes,
        )

    async def _submit(self, draft: CheckoutDraft) -> SubmissionResult:
        start_time = time.time()

        try:
            user = await self._session.require_user()
        except NotAuthenticated:
            self._notifier.error("Please login to place an order")
            raise

        if self._cart.is_empty():
            self._notifier.error("Your cart is empty")
            raise ValidationError("Your cart is empty", {"cart": "empty"})

        payload = self.build_order_request(draft, user)
        logger.info(
            "💳 [CHECKOUT] Placing order - "
            f"User: {user.id}, Items: {len(payload.items)}, "
            f"Total: {payload.total_price:.2f}, Method: {payload.payment_method.value}"
        )

        order = await self._create_order(payload)
        if payload.rewards_used:
            self._session.spend_rewards(payload.rewards_used)

        if payload.payment_method == PaymentMethod.cash_on_delivery:
            result = self._reconciler.complete(order, "Order placed successfully! 🎉")
            logger.info(f"✅ [CHECKOUT] COD order {order.id} placed in {time.time() - start_time:.2f}s")
            return result

        return await self._pay_online(order)

    async def _create_order(self, payload: OrderCreate) -> Order:
        try:
            data = await self._client.create_order(payload)
        except httpx.HTTPError as e:
            logger.error(f"❌ [CHECKOUT] Create order request failed: {type(e).__name__}: {str(e)}")
            message = "Failed to place order. Please try again."
            self._notifier.error(message, retryable=True)
            raise OrderRejected(message) from e

        if data.get("status_code") == 401:
            self._session.invalidate()
            self._notifier.error("Please login to place an order")
            raise NotAuthenticated()

        if not data.get("success") or not data.get("order"):
            message = data.get("message") or "Failed to place order. Please try again."
            logger.warning(f"⚠️ [CHECKOUT] Order rejected: {message}")
            self._notifier.error(message, retryable=True)
            raise OrderRejected(message)

        try:
            order = Order.model_validate(data["order"])
        except SchemaError as e:
            logger.error(f"❌ [CHECKOUT] Malformed order in response: {str(e)}")
            message = "Failed to place order. Please try again."
            self._notifier.error(message, retryable=True)
            raise OrderRejected(message) from e

        return self._orders.remember(order)

    async def _pay_online(self, order: Order) -> SubmissionResult:
        try:
            data = await self._client.create_payment_session(order.total_price, order.id)
        except httpx.HTTPError as e:
            logger.error(f"❌ [CHECKOUT] Payment session request failed for order {order.id}: {str(e)}")
            message = "Failed to initialize payment. Order saved as pending."
            self._notifier.error(message, retryable=True, order_id=order.id)
            raise GatewayUnavailable(message, order_id=order.id) from e

        if not data.get("success"):
            if data.get("configured") is False:
                # Gateway not configured server-side: the order stands as COD
                logger.info(f"[CHECKOUT] Gateway not configured; order {order.id} falls back to COD")
                self._notifier.info("Online payment not available. Switching to COD.")
                result = self._reconciler.complete(order, "Order placed successfully! 🎉")
                result.fell_back_to_cod = True
                return result

            message = data.get("message") or "Failed to initialize payment. Order saved as pending."
            self._notifier.error(message, retryable=True, order_id=order.id)
            raise GatewayUnavailable(message, order_id=order.id)

        try:
            payment_session = PaymentSession.model_validate(data["session"])
        except (KeyError, SchemaError) as e:
            message = "Failed to initialize payment. Order saved as pending."
            self._notifier.error(message, retryable=True, order_id=order.id)
            raise GatewayUnavailable(message, order_id=order.id) from e

        return await self._reconciler.settle(order, payment_session, data.get("key_id"))

    def known_order(self, order_id: int) -> Optional[Order]:
        return self._orders.get(order_id)
