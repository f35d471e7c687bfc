import json
import logging
import random
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fastapi import HTTPException

from .auth import add_rewards
from .db import get_connection
from .pricing import PricingPolicy, breakdown_mismatch, items_total
from .schemas import (
    Order,
    OrderCreate,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    ShippingAddress,
    User,
    Role,
)

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = (OrderStatus.pending, OrderStatus.confirmed)
ORDER_NUMBER_ATTEMPTS = 5


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_order_number() -> str:
    """PB + yymmdd + 4 random digits, e.g. PB2410180042."""
    today = datetime.now(timezone.utc).strftime("%y%m%d")
    return f"PB{today}{random.randint(0, 9999):04d}"


def _load_items(cur, order_id: int) -> List[OrderItem]:
    cur.execute(
        """
        SELECT product_id, name, price, quantity, image
        FROM order_items
        WHERE order_id = ?
        ORDER BY id ASC
        """,
        (order_id,),
    )
    return [
        OrderItem(
            product_id=row["product_id"],
            name=row["name"],
            price=row["price"],
            quantity=row["quantity"],
            image=row["image"],
        )
        for row in cur.fetchall()
    ]


def _row_to_order(cur, row) -> Order:
    payment_result = json.loads(row["payment_result"]) if row["payment_result"] else None
    return Order(
        id=row["id"],
        order_number=row["order_number"],
        user_id=row["user_id"],
        items=_load_items(cur, row["id"]),
        shipping_address=ShippingAddress(**json.loads(row["shipping_address"])),
        payment_method=row["payment_method"],
        items_price=row["items_price"],
        tax_price=row["tax_price"],
        shipping_price=row["shipping_price"],
        discount_amount=row["discount_amount"],
        coupon_code=row["coupon_code"],
        rewards_used=row["rewards_used"] or 0,
        total_price=row["total_price"],
        payment_status=row["payment_status"],
        status=row["status"],
        payment_result=payment_result,
        gateway_session_id=row["gateway_session_id"],
        delivery_type=row["delivery_type"],
        notes=row["notes"] or "",
        rewards_earned=row["rewards_earned"] or 0,
        estimated_delivery=row["estimated_delivery"],
        paid_at=row["paid_at"],
        delivered_at=row["delivered_at"],
        created_at=row["created_at"],
    )


def get_order(order_id: int) -> Optional[Order]:
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT * FROM orders WHERE id = ?", (order_id,))
    row = cur.fetchone()
    order = _row_to_order(cur, row) if row else None
    conn.close()
    return order


def get_order_for_user(order_id: int, user: User) -> Order:
    """
    Returns the order if the user owns it or is an admin.
    Raises 404 / 403 otherwise.
    """
    order = get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    if order.user_id != user.id and user.role != Role.admin:
        raise HTTPException(status_code=403, detail="Not authorized to view this order")
    return order


def create_order(user: User, payload: OrderCreate) -> Order:
    """
    Persists a new order from the client's cart snapshot.
    Each call creates a new order; there is no idempotency key.
    Reward points spent on the order are taken from the user in the same
    transaction; the discount must be exactly what they are worth.
    """
    if not payload.items:
        raise HTTPException(status_code=400, detail="No order items provided")

    mismatch = breakdown_mismatch(
        payload.items_price,
        payload.tax_price,
        payload.shipping_price,
        payload.discount_amount,
        payload.total_price,
        expected_items_price=items_total(payload.items),
        expected_discount=PricingPolicy.from_settings().reward_discount(payload.rewards_used),
    )
    if mismatch:
        logger.warning("Order rejected for user %s: %s", user.id, mismatch)
        raise HTTPException(status_code=400, detail=mismatch)

    estimated_delivery = (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()

    conn = get_connection()
    cur = conn.cursor()
    for attempt in range(ORDER_NUMBER_ATTEMPTS):
        try:
            cur.execute(
                """
                INSERT INTO orders (
                    order_number, user_id, shipping_address, payment_method,
                    items_price, tax_price, shipping_price, discount_amount, coupon_code,
                    rewards_used, total_price, delivery_type, notes, estimated_delivery, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    generate_order_number(),
                    user.id,
                    json.dumps(payload.shipping_address.model_dump()),
                    payload.payment_method.value,
                    payload.items_price,
                    payload.tax_price,
                    payload.shipping_price,
                    payload.discount_amount,
                    payload.coupon_code or None,
                    payload.rewards_used,
                    payload.total_price,
                    payload.delivery_type,
                    payload.notes,
                    estimated_delivery,
                    _now(),
                ),
            )
            break
        except sqlite3.IntegrityError:
            if attempt == ORDER_NUMBER_ATTEMPTS - 1:
                conn.close()
                raise
    order_id = cur.lastrowid

    if payload.rewards_used > 0:
        cur.execute(
            "UPDATE users SET rewards = rewards - ? WHERE id = ? AND rewards >= ?",
            (payload.rewards_used, user.id, payload.rewards_used),
        )
        if cur.rowcount == 0:
            conn.rollback()
            conn.close()
            raise HTTPException(status_code=400, detail="Not enough reward points")

    for item in payload.items:
        cur.execute(
            """
            INSERT INTO order_items (order_id, product_id, name, price, quantity, image)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (order_id, item.product_id, item.name, item.price, item.quantity, item.image),
        )

    conn.commit()
    conn.close()

    logger.info(
        f"🧾 [ORDER] Order {order_id} created - "
        f"User: {user.id}, Items: {len(payload.items)}, "
        f"Total: {payload.total_price:.2f}, Method: {payload.payment_method.value}"
    )
    return get_order(order_id)


def get_orders_for_user(user_id: int) -> List[Order]:
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        "SELECT * FROM orders WHERE user_id = ? ORDER BY created_at DESC, id DESC",
        (user_id,),
    )
    orders = [_row_to_order(cur, row) for row in cur.fetchall()]
    conn.close()
    return orders


def set_gateway_session(order_id: int, session_id: str) -> Optional[str]:
    """
    Stores the current gateway session of the order.
    Returns the id of the session it replaces, if any.
    """
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT gateway_session_id FROM orders WHERE id = ?", (order_id,))
    row = cur.fetchone()
    previous = row["gateway_session_id"] if row else None
    cur.execute(
        "UPDATE orders SET gateway_session_id = ? WHERE id = ?",
        (session_id, order_id),
    )
    conn.commit()
    conn.close()
    return previous


def mark_order_paid(order_id: int, payment_result: Dict[str, Any]) -> Optional[Order]:
    """
    Marks the order as paid and confirmed. Calling it again for a paid or
    refunded order leaves the first payment result in place.
    """
    order = get_order(order_id)
    if not order:
        return None
    if order.is_paid or order.payment_status == PaymentStatus.refunded:
        return order

    # 1 reward point per 10 spent
    rewards_earned = int(order.total_price // 10)
    status = OrderStatus.confirmed if order.status == OrderStatus.pending else order.status

    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        UPDATE orders
        SET payment_status = ?, status = ?, payment_result = ?, paid_at = ?, rewards_earned = ?
        WHERE id = ?
        """,
        (
            PaymentStatus.paid.value,
            status.value,
            json.dumps(payment_result),
            _now(),
            rewards_earned,
            order_id,
        ),
    )
    conn.commit()
    conn.close()

    logger.info(f"💰 [ORDER] Order {order_id} marked as paid")
    return get_order(order_id)


def update_order_status(order_id: int, status: OrderStatus) -> Order:
    order = get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    delivered_at = order.delivered_at
    if status == OrderStatus.delivered and not delivered_at:
        delivered_at = _now()
        if order.rewards_earned > 0:
            add_rewards(order.user_id, order.rewards_earned)

    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        "UPDATE orders SET status = ?, delivered_at = ? WHERE id = ?",
        (status.value, delivered_at, order_id),
    )
    conn.commit()
    conn.close()

    logger.info(f"📦 [ORDER] Order {order_id} status updated to {status.value}")
    return get_order(order_id)


def cancel_order(order_id: int, user: User) -> Order:
    order = get_order_for_user(order_id, user)
    if order.status not in CANCELLABLE_STATUSES:
        raise HTTPException(
            status_code=400,
            detail="Cannot cancel order that is already being prepared or delivered",
        )
    order = update_order_status(order_id, OrderStatus.cancelled)
    if order.rewards_used > 0:
        add_rewards(order.user_id, order.rewards_used)
        logger.info(f"🎁 [ORDER] {order.rewards_used} reward points returned for cancelled order {order_id}")
    return order


def mark_order_refunded(order_id: int, refund_id: str) -> Optional[Order]:
    """Records a full refund of a paid order."""
    order = get_order(order_id)
    if not order or not order.is_paid:
        return order

    payment_result = dict(order.payment_result or {})
    payment_result["refund_id"] = refund_id

    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        "UPDATE orders SET payment_status = ?, payment_result = ? WHERE id = ?",
        (PaymentStatus.refunded.value, json.dumps(payment_result), order_id),
    )
    conn.commit()
    conn.close()

    logger.info(f"↩️ [ORDER] Order {order_id} refunded - Refund: {refund_id}")
    return get_order(order_id)
