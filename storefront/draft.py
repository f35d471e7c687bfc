from typing import Optional

from pydantic import BaseModel, Field

from bakery.schemas import PaymentMethod, ShippingAddress, User


class ContactInfo(BaseModel):
    name: str = ""
    email: str = ""
    phone: str = ""


class DeliveryInfo(BaseModel):
    street: str = ""
    city: str = ""
    state: str = ""
    pincode: str = ""
    country: str = ""


class CheckoutDraft(BaseModel):
    """What the buyer has typed so far. Never persisted."""
    contact: ContactInfo = Field(default_factory=ContactInfo)
    delivery: DeliveryInfo = Field(default_factory=DeliveryInfo)
    payment_method: PaymentMethod = PaymentMethod.online
    notes: str = ""
    coupon_code: str = ""
    rewards_to_redeem: int = Field(0, ge=0)

    @classmethod
    def for_user(cls, user: Optional[User]) -> "CheckoutDraft":
        """A fresh draft with the contact step pre-filled from the profile."""
        if user is None:
            return cls()
        return cls(contact=ContactInfo(name=user.full_name, email=user.email, phone=user.phone))

    def to_shipping_address(self, default_state: str = "", default_country: str = "India") -> ShippingAddress:
        return ShippingAddress(
            full_name=self.contact.name.strip(),
            phone=self.contact.phone.strip(),
            email=self.contact.email.strip(),
            street=self.delivery.street.strip(),
            city=self.delivery.city.strip(),
            state=self.delivery.state.strip() or default_state,
            pincode=self.delivery.pincode.strip(),
            country=self.delivery.country.strip() or default_country,
        )
