import logging
import threading
from collections import OrderedDict
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from bakery.pricing import round_half_up
from bakery.schemas import OrderItem

from .notifications import Notifier

logger = logging.getLogger(__name__)


class Product(BaseModel):
    id: str
    name: str
    price: float = Field(..., ge=0)
    image: Optional[str] = None
    category: Optional[str] = None

    @field_validator("price")
    @classmethod
    def price_in_whole_cents(cls, value: float) -> float:
        if round_half_up(value, 2) != value:
            raise ValueError("price must have at most 2 decimal places")
        return value


class CartLine(BaseModel):
    product_id: str
    name: str
    unit_price: float
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity

    def to_order_item(self) -> OrderItem:
        return OrderItem(
            product_id=self.product_id,
            name=self.name,
            price=self.unit_price,
            quantity=self.quantity,
            image=self.image,
        )


CartSnapshot = Tuple[Tuple[str, float, int], ...]


class CartStore:
    """
    In-memory cart for one browsing session.

    The store is the only mutator of its lines; every write holds the
    store's lock so no two mutations interleave. Totals are derived on
    every read.
    """

    def __init__(self, notifier: Optional[Notifier] = None) -> None:
        self._lines: "OrderedDict[str, CartLine]" = OrderedDict()
        self._lock = threading.RLock()
        self._notifier = notifier

    def add_item(self, product: Product) -> CartLine:
        """
        Adds one unit of the product.
        If the product is already in the cart, increments its quantity.
        """
        with self._lock:
            line = self._lines.get(product.id)
            if line:
                line = line.model_copy(update={"quantity": line.quantity + 1})
            else:
                line = CartLine(
                    product_id=product.id,
                    name=product.name,
                    unit_price=product.price,
                    quantity=1,
                    image=product.image,
                )
            self._lines[product.id] = line

        if self._notifier:
            self._notifier.success(f"{product.name} added to cart!")
        return line

    def remove_item(self, product_id: str) -> None:
        with self._lock:
            self._lines.pop(product_id, None)

    def set_quantity(self, product_id: str, quantity: int) -> None:
        """Quantity <= 0 removes the line; unknown products are ignored."""
        with self._lock:
            if quantity <= 0:
                self._lines.pop(product_id, None)
                return
            line = self._lines.get(product_id)
            if line:
                self._lines[product_id] = line.model_copy(update={"quantity": quantity})

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()
        logger.info("🗑️ Cart cleared")

    def lines(self) -> List[CartLine]:
        with self._lock:
            return [line.model_copy() for line in self._lines.values()]

    def subtotal(self) -> float:
        with self._lock:
            return round_half_up(sum(line.line_total for line in self._lines.values()), 2)

    def item_count(self) -> int:
        with self._lock:
            return sum(line.quantity for line in self._lines.values())

    def is_empty(self) -> bool:
        with self._lock:
            return not self._lines

    def snapshot(self) -> CartSnapshot:
        with self._lock:
            return tuple(
                (line.product_id, line.unit_price, line.quantity)
                for line in self._lines.values()
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)
