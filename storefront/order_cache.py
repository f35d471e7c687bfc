import logging
from typing import Dict, List, Optional

import httpx
from pydantic import ValidationError as SchemaError

from bakery.schemas import Order, OrderStatus, PaymentStatus

from .client import BakeryClient

logger = logging.getLogger(__name__)


class OrderCache:
    """Locally known orders of the signed-in buyer, newest last."""

    def __init__(self, client: BakeryClient) -> None:
        self._client = client
        self._orders: Dict[int, Order] = {}
        self.last_order: Optional[Order] = None

    def remember(self, order: Order) -> Order:
        self._orders[order.id] = order
        self.last_order = order
        return order

    def get(self, order_id: int) -> Optional[Order]:
        return self._orders.get(order_id)

    def all(self) -> List[Order]:
        return list(self._orders.values())

    def mark_paid(self, order_id: int, confirmed: Optional[Order] = None) -> Optional[Order]:
        """
        Records a verified payment. Prefers the backend's copy of the order
        when the verification response carried one.
        """
        order = confirmed or self._orders.get(order_id)
        if order is None:
            return None
        if order.payment_status != PaymentStatus.paid:
            status = OrderStatus.confirmed if order.status == OrderStatus.pending else order.status
            order = order.model_copy(update={"payment_status": PaymentStatus.paid, "status": status})
        return self.remember(order)

    def clear(self) -> None:
        self._orders.clear()
        self.last_order = None

    async def refresh(self) -> List[Order]:
        """Reloads the buyer's orders. Keeps the cached ones on failure."""
        try:
            data = await self._client.get_my_orders()
        except httpx.HTTPError as e:
            logger.error("Error fetching orders: %s", str(e))
            return self.all()

        if not data.get("success"):
            logger.warning("Could not fetch orders: %s", data.get("message"))
            return self.all()

        try:
            orders = [Order.model_validate(o) for o in data.get("orders", [])]
        except SchemaError as e:
            logger.error("Malformed orders payload: %s", str(e))
            return self.all()

        self._orders = {order.id: order for order in reversed(orders)}
        return self.all()
