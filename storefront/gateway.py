"""
Payment gateway adapter.

Bridges the checkout flow to the hosted Stripe Checkout page. A payment
attempt is a single awaitable that resolves to one of ``PaymentSucceeded``,
``PaymentFailed`` or ``PaymentDismissed``; verification of a success is the
reconciler's job, never this module's.
"""
import asyncio
import logging
import webbrowser
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

import httpx

from bakery.schemas import Order, PaymentSession

from .errors import GatewayUnavailable
from .outcomes import (
    GatewayOutcome,
    PaymentDismissed,
    PaymentFailed,
    PaymentProof,
    PaymentSucceeded,
)

logger = logging.getLogger(__name__)

PAID_STATES = ("paid", "no_payment_required")


@dataclass(frozen=True)
class GatewayConfig:
    configured: bool
    currency: str
    publishable_key: Optional[str] = None


@dataclass(frozen=True)
class GatewayCheckout:
    """Everything the payment page needs, tagged with our order id."""
    order_id: int
    order_number: str
    session_id: str
    url: Optional[str]
    amount: float
    currency: str
    key_id: Optional[str]
    name: str
    description: str
    prefill_name: str = ""
    prefill_email: str = ""
    prefill_contact: str = ""


class PaymentWidget(Protocol):
    async def open(self, checkout: GatewayCheckout) -> GatewayOutcome:
        ...


class GatewayLoader:
    """
    Loads the gateway client configuration once per process.

    Concurrent callers share the same in-flight load. A failed load is
    forgotten so that the next payment attempt can try again.
    """

    def __init__(self, fetch_status: Callable[[], Awaitable[Dict[str, Any]]]) -> None:
        self._fetch_status = fetch_status
        self._task: Optional[asyncio.Future] = None
        self._config: Optional[GatewayConfig] = None
        self.load_count = 0

    @property
    def loaded(self) -> bool:
        return self._config is not None

    async def load(self) -> GatewayConfig:
        if self._config is not None:
            return self._config

        if self._task is None:
            self._task = asyncio.ensure_future(self._load())
        task = self._task

        try:
            config = await asyncio.shield(task)
        except Exception:
            if self._task is task:
                self._task = None
            raise

        self._config = config
        return config

    async def _load(self) -> GatewayConfig:
        self.load_count += 1
        try:
            data = await self._fetch_status()
        except httpx.HTTPError as e:
            logger.error(f"❌ [GATEWAY] Failed to load payment gateway: {str(e)}")
            raise GatewayUnavailable("Failed to load payment gateway. Please try again.") from e

        if not data.get("success", False):
            raise GatewayUnavailable(data.get("message") or "Failed to load payment gateway. Please try again.")

        logger.info(f"✅ [GATEWAY] Loaded - configured: {data.get('configured')}")
        return GatewayConfig(
            configured=bool(data.get("configured")),
            currency=data.get("currency") or "inr",
            publishable_key=data.get("publishable_key"),
        )


class HostedCheckoutWidget:
    """
    Opens the hosted checkout page and watches the gateway session until
    it is paid, expires or the buyer runs out of time.

    ``fetch_state`` returns the gateway-side session state
    (status / payment_status / payment_intent / failure_reason).
    """

    def __init__(
        self,
        fetch_state: Callable[[str], Awaitable[Dict[str, Any]]],
        opener: Callable[[str], Any] = webbrowser.open,
        poll_interval: float = 2.0,
        timeout_seconds: float = 900.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._fetch_state = fetch_state
        self._opener = opener
        self.poll_interval = poll_interval
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep

    async def open(self, checkout: GatewayCheckout) -> GatewayOutcome:
        if not checkout.url:
            return PaymentFailed("Payment page is unavailable. Please try again.")

        logger.info(f"🌐 [GATEWAY] Opening checkout for order {checkout.order_id}: {checkout.url}")
        self._opener(checkout.url)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds

        while loop.time() < deadline:
            await self._sleep(self.poll_interval)
            try:
                state = await self._fetch_state(checkout.session_id)
            except httpx.HTTPError as e:
                logger.warning(f"⚠️ [GATEWAY] Could not poll session {checkout.session_id}: {str(e)}")
                continue

            status_code = state.get("status_code", 200)
            if status_code in (401, 403, 404):
                return PaymentFailed(state.get("message") or "Payment session is no longer available")
            if not state.get("success", True):
                continue

            status = state.get("status")
            if status == "complete" and state.get("payment_status") in PAID_STATES:
                return PaymentSucceeded(
                    PaymentProof(
                        gateway_order_id=checkout.session_id,
                        gateway_payment_id=state.get("payment_intent") or "",
                        order_id=checkout.order_id,
                    )
                )
            if status == "expired":
                if state.get("failure_reason"):
                    return PaymentFailed(state["failure_reason"], code=state.get("failure_code"))
                return PaymentDismissed()

        logger.info(f"⌛ [GATEWAY] Checkout for order {checkout.order_id} timed out")
        return PaymentDismissed()


class PaymentGatewayAdapter:
    """
    At most one gateway session is open per order: a second ``initiate``
    for an order whose session is still open joins that session's outcome.
    """

    def __init__(self, loader: GatewayLoader, widget: PaymentWidget, brand: str = "Perfect Bakery") -> None:
        self._loader = loader
        self._widget = widget
        self._brand = brand
        self._open_sessions: Dict[int, asyncio.Future] = {}

    def has_open_session(self, order_id: int) -> bool:
        task = self._open_sessions.get(order_id)
        return task is not None and not task.done()

    async def initiate(self, order: Order, session: PaymentSession, key_id: Optional[str] = None) -> GatewayOutcome:
        task = self._open_sessions.get(order.id)
        if task is None or task.done():
            task = asyncio.ensure_future(self._run(order, session, key_id))
            self._open_sessions[order.id] = task
            task.add_done_callback(lambda t, order_id=order.id: self._forget(order_id, t))
        else:
            logger.info(f"[GATEWAY] Order {order.id} already has an open session; joining it")
        return await asyncio.shield(task)

    def _forget(self, order_id: int, task: asyncio.Future) -> None:
        if self._open_sessions.get(order_id) is task:
            del self._open_sessions[order_id]

    async def _run(self, order: Order, session: PaymentSession, key_id: Optional[str]) -> GatewayOutcome:
        try:
            config = await self._loader.load()
        except GatewayUnavailable as e:
            raise GatewayUnavailable(e.message, order_id=order.id) from e

        address = order.shipping_address
        checkout = GatewayCheckout(
            order_id=order.id,
            order_number=order.order_number,
            session_id=session.id,
            url=session.url,
            amount=session.amount,
            currency=session.currency or config.currency,
            key_id=key_id or config.publishable_key,
            name=self._brand,
            description=f"Order #{order.order_number}",
            prefill_name=address.full_name,
            prefill_email=address.email,
            prefill_contact=address.phone,
        )
        outcome = await self._widget.open(checkout)
        logger.info(f"💳 [GATEWAY] Order {order.id} outcome: {type(outcome).__name__}")
        return outcome
