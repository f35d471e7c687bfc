# bakery/pricing.py
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from .config import settings


def round_half_up(value: float, places: int = 0) -> float:
    """Rounds .5 away from zero, unlike the builtin round()."""
    exp = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(exp, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PriceBreakdown:
    items_price: float
    tax_price: float
    shipping_price: float
    discount_amount: float
    total_price: float


@dataclass(frozen=True)
class PricingPolicy:
    tax_rate: float = 0.05
    free_shipping_threshold: float = 500
    shipping_charge: float = 50
    reward_point_value: float = 1

    @classmethod
    def from_settings(cls) -> "PricingPolicy":
        return cls(
            tax_rate=settings.tax_rate,
            free_shipping_threshold=settings.free_shipping_threshold,
            shipping_charge=settings.shipping_charge,
            reward_point_value=settings.reward_point_value,
        )

    def price(self, items_price: float, discount: float = 0.0) -> PriceBreakdown:
        items_price = round_half_up(items_price, 2)
        tax_price = round_half_up(items_price * self.tax_rate)
        shipping_price = 0.0 if items_price >= self.free_shipping_threshold else float(self.shipping_charge)
        total_price = round_half_up(items_price + tax_price + shipping_price - discount, 2)
        return PriceBreakdown(
            items_price=items_price,
            tax_price=tax_price,
            shipping_price=shipping_price,
            discount_amount=discount,
            total_price=total_price,
        )

    def redeemable_points(self, requested: int, available: int, items_price: float) -> int:
        """Points that can be spent on an order; the discount never exceeds the items price."""
        cap = int(items_price // self.reward_point_value) if self.reward_point_value > 0 else 0
        return max(0, min(requested, available, cap))

    def reward_discount(self, points: int) -> float:
        return round_half_up(points * self.reward_point_value, 2)


def items_total(lines: Iterable, price_attr: str = "price") -> float:
    return round_half_up(sum(getattr(line, price_attr) * line.quantity for line in lines), 2)


def breakdown_mismatch(
    items_price: float,
    tax_price: float,
    shipping_price: float,
    discount_amount: float,
    total_price: float,
    expected_items_price: float,
    expected_discount: Optional[float] = None,
    tolerance: float = 0.01,
) -> Optional[str]:
    """
    Checks a client-computed price breakdown against the order items.
    Returns a human message describing the first mismatch, or None.
    """
    if abs(items_price - expected_items_price) > tolerance:
        return f"Items price {items_price:.2f} does not match the items ({expected_items_price:.2f})"
    if expected_discount is not None and abs(discount_amount - expected_discount) > tolerance:
        return f"Discount {discount_amount:.2f} does not match the rewards used ({expected_discount:.2f})"
    expected_total = items_price + tax_price + shipping_price - discount_amount
    if abs(total_price - expected_total) > tolerance:
        return f"Total price {total_price:.2f} does not match the price breakdown ({expected_total:.2f})"
    return None
