import logging
from typing import Callable, Optional

import httpx

from bakery.config import Settings, settings as default_settings
from bakery.pricing import PricingPolicy

from .cart import CartStore
from .checkout import CheckoutFlow
from .client import BakeryClient
from .errors import ValidationError
from .gateway import GatewayLoader, HostedCheckoutWidget, PaymentGatewayAdapter, PaymentWidget
from .notifications import DEFAULT_TTL_SECONDS, Notifier
from .order_cache import OrderCache
from .reconciler import OrderStatusReconciler
from .session import AuthSession
from .submission import OrderSubmissionService

logger = logging.getLogger(__name__)


class Storefront:
    """
    Application root of the storefront.

    Owns every piece of mutable state (cart, session, order cache,
    notifications, gateway loader) and injects it into the checkout
    components; nothing is reachable as a module-level global.
    """

    def __init__(
        self,
        client: BakeryClient,
        pricing: Optional[PricingPolicy] = None,
        widget: Optional[PaymentWidget] = None,
        navigate: Optional[Callable[[str], None]] = None,
        default_state: str = "Uttar Pradesh",
        default_country: str = "India",
        brand: str = "Perfect Bakery",
        notification_ttl: float = DEFAULT_TTL_SECONDS,
    ) -> None:
        self.client = client
        self.notifier = Notifier(ttl_seconds=notification_ttl)
        self.session = AuthSession(client)
        self.cart = CartStore(self.notifier)
        self.orders = OrderCache(client)

        self.gateway_loader = GatewayLoader(client.get_payment_gateway_status)
        self.widget = widget or HostedCheckoutWidget(client.get_payment_session)
        self.gateway = PaymentGatewayAdapter(self.gateway_loader, self.widget, brand=brand)

        self.reconciler = OrderStatusReconciler(
            client, self.cart, self.orders, self.notifier, self.gateway, self.session, navigate=navigate
        )
        self.submission = OrderSubmissionService(
            client,
            self.cart,
            self.session,
            self.reconciler,
            self.orders,
            self.notifier,
            pricing=pricing,
            default_state=default_state,
            default_country=default_country,
        )
        self.checkout = CheckoutFlow(self.submission, self.reconciler, self.cart, self.notifier)

    @classmethod
    def from_settings(
        cls,
        config: Settings = default_settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ) -> "Storefront":
        client = BakeryClient(
            base_url=config.api_base_url,
            timeout_seconds=config.api_timeout_seconds,
            transport=transport,
        )
        kwargs.setdefault("widget", HostedCheckoutWidget(
            client.get_payment_session,
            poll_interval=config.payment_poll_interval,
            timeout_seconds=config.payment_timeout_seconds,
        ))
        return cls(
            client,
            pricing=PricingPolicy(
                tax_rate=config.tax_rate,
                free_shipping_threshold=config.free_shipping_threshold,
                shipping_charge=config.shipping_charge,
            ),
            default_state=config.default_state,
            default_country=config.default_country,
            notification_ttl=config.notification_ttl_seconds,
            **kwargs,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        await self.client.close()

    async def open_checkout(self) -> CheckoutFlow:
        """
        Opens the checkout modal, pre-filled from the buyer's profile.
        Raises ValidationError for an empty cart.
        """
        user = await self.session.current_user()
        try:
            self.checkout.open(user)
        except ValidationError as e:
            logger.info("Checkout not opened: %s", e.message)
            self.notifier.error(e.message)
            raise
        return self.checkout

    async def logout(self) -> None:
        self.session.logout()
        self.orders.clear()
