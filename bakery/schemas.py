"""Schemas/models shared by the bakery API and the storefront client."""
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class PaymentMethod(str, Enum):
    online = "online"
    cash_on_delivery = "cod"


class PaymentStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    refunded = "refunded"


class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    preparing = "preparing"
    ready = "ready"
    out_for_delivery = "out-for-delivery"
    delivered = "delivered"
    cancelled = "cancelled"


class Role(str, Enum):
    customer = "customer"
    admin = "admin"


# ==================== USERS ====================

class User(BaseModel):
    id: int
    first_name: str
    last_name: str = ""
    email: str
    phone: str = ""
    role: Role = Role.customer
    rewards: int = 0

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class RegisterRequest(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = ""
    email: str = Field(..., min_length=3)
    phone: str = ""
    password: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    email: str
    password: str


class AuthResponse(BaseModel):
    success: bool
    token: str
    user: User


# ==================== ORDERS ====================

class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


class ShippingAddress(BaseModel):
    full_name: str
    phone: str
    email: str
    street: str
    city: str
    state: str
    pincode: str
    country: str = "India"


class OrderCreate(BaseModel):
    """Payload for POST /api/orders. Prices are the client's snapshot at order time."""
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    items_price: float = Field(..., ge=0)
    tax_price: float = Field(0, ge=0)
    shipping_price: float = Field(0, ge=0)
    discount_amount: float = Field(0, ge=0)
    coupon_code: Optional[str] = None
    rewards_used: int = Field(0, ge=0)
    total_price: float = Field(..., ge=0)
    delivery_type: str = "delivery"
    notes: str = ""


class Order(BaseModel):
    id: int
    order_number: str
    user_id: int
    items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    items_price: float
    tax_price: float
    shipping_price: float
    discount_amount: float = 0.0
    coupon_code: Optional[str] = None
    rewards_used: int = 0
    total_price: float
    payment_status: PaymentStatus = PaymentStatus.pending
    status: OrderStatus = OrderStatus.pending
    payment_result: Optional[Dict[str, Any]] = None
    gateway_session_id: Optional[str] = None
    delivery_type: str = "delivery"
    notes: str = ""
    rewards_earned: int = 0
    estimated_delivery: Optional[str] = None
    paid_at: Optional[str] = None
    delivered_at: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.paid


class OrderResponse(BaseModel):
    success: bool
    message: str = ""
    order: Order


class OrdersResponse(BaseModel):
    success: bool
    count: int
    orders: List[Order]


class StatusChange(BaseModel):
    status: OrderStatus


# ==================== PAYMENTS ====================

class PaymentSessionRequest(BaseModel):
    amount: float
    order_id: int
    currency: Optional[str] = None


class PaymentSession(BaseModel):
    """Gateway-side checkout session. Amount is in major currency units."""
    id: str
    url: Optional[str] = None
    amount: float
    currency: str


class PaymentSessionResponse(BaseModel):
    success: bool
    message: str = ""
    configured: bool = True
    session: Optional[PaymentSession] = None
    key_id: Optional[str] = None


class PaymentSessionState(BaseModel):
    success: bool = True
    session_id: str
    status: Optional[str] = None
    payment_status: Optional[str] = None
    payment_intent: Optional[str] = None
    order_id: Optional[int] = None
    failure_code: Optional[str] = None
    failure_reason: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    gateway_order_id: str
    gateway_payment_id: str
    gateway_signature: Optional[str] = None
    order_id: int


class VerifyPaymentResponse(BaseModel):
    success: bool
    message: str
    payment_id: Optional[str] = None
    order: Optional[Order] = None


class GatewayStatusResponse(BaseModel):
    success: bool = True
    configured: bool
    gateway: str = "stripe"
    currency: str
    publishable_key: Optional[str] = None
    supported_methods: List[str] = Field(default_factory=lambda: ["card"])


class PaymentDetails(BaseModel):
    id: str
    amount: float
    currency: str
    status: Optional[str] = None
    method: Optional[str] = None
    email: Optional[str] = None
    order_id: Optional[int] = None
    created_at: Optional[int] = None


class PaymentDetailsResponse(BaseModel):
    success: bool = True
    payment: PaymentDetails


class RefundRequest(BaseModel):
    """Omit amount for a full refund."""
    amount: Optional[float] = Field(None, gt=0)
    reason: Optional[str] = None


class RefundDetails(BaseModel):
    id: str
    amount: float
    currency: Optional[str] = None
    status: Optional[str] = None


class RefundResponse(BaseModel):
    success: bool = True
    message: str
    refund: RefundDetails
