import asyncio
from types import SimpleNamespace

import httpx
import pytest
import stripe

import bakery.db
from bakery.auth import create_access_token, create_user
from bakery.db import get_connection, init_db
from bakery.main import app
from bakery.schemas import RegisterRequest, Role
from storefront.cart import Product
from storefront.client import BakeryClient
from storefront.outcomes import PaymentDismissed, PaymentFailed, PaymentProof, PaymentSucceeded
from storefront.shop import Storefront

API_BASE_URL = "http://testserver/api"

CROISSANT = Product(id="1", name="Croissant", price=120)
SOURDOUGH = Product(id="2", name="Sourdough Loaf", price=260)


class FakeCheckoutSessions:
    """Stands in for stripe.checkout.Session, PaymentIntent and Refund; keeps everything in memory."""

    def __init__(self):
        self.sessions = {}
        self.created = []
        self.expired = []
        self.intents = {}
        self.refunds = []

    def create(self, **kwargs):
        n = len(self.created) + 1
        session = SimpleNamespace(
            id=f"cs_test_{n}",
            url=f"https://checkout.stripe.test/c/pay/cs_test_{n}",
            status="open",
            payment_status="unpaid",
            payment_intent=None,
            client_reference_id=kwargs.get("client_reference_id"),
            metadata=SimpleNamespace(**kwargs.get("metadata", {})),
            amount_total=kwargs["line_items"][0]["price_data"]["unit_amount"],
            currency=kwargs["line_items"][0]["price_data"]["currency"],
        )
        self.created.append(kwargs)
        self.sessions[session.id] = session
        return session

    def retrieve(self, session_id, **kwargs):
        if session_id not in self.sessions:
            raise stripe.InvalidRequestError(f"No such checkout.session: '{session_id}'", "id")
        return self.sessions[session_id]

    def expire(self, session_id, **kwargs):
        session = self.retrieve(session_id)
        session.status = "expired"
        self.expired.append(session_id)
        return session

    def pay(self, session_id):
        session = self.retrieve(session_id)
        session.status = "complete"
        session.payment_status = "paid"
        session.payment_intent = f"pi_{session_id}"
        created = self.created[int(session_id.rsplit("_", 1)[1]) - 1]
        self.intents[session.payment_intent] = SimpleNamespace(
            id=session.payment_intent,
            amount=session.amount_total,
            currency=session.currency,
            status="succeeded",
            payment_method_types=["card"],
            receipt_email=created.get("customer_email"),
            metadata=SimpleNamespace(**created.get("payment_intent_data", {}).get("metadata", {})),
            created=1729238400,
        )
        return session.payment_intent

    def retrieve_intent(self, payment_id, **kwargs):
        if payment_id not in self.intents:
            raise stripe.InvalidRequestError(f"No such payment_intent: '{payment_id}'", "id")
        return self.intents[payment_id]

    def create_refund(self, payment_intent, amount=None, **kwargs):
        intent = self.retrieve_intent(payment_intent)
        refund = SimpleNamespace(
            id=f"re_test_{len(self.refunds) + 1}",
            amount=amount or intent.amount,
            currency=intent.currency,
            status="succeeded",
        )
        self.refunds.append({"payment_intent": payment_intent, "amount": amount, **kwargs})
        return refund


class ScriptedWidget:
    """
    Payment widget double. ``outcome`` is one of paid, unverified,
    declined or dismissed; ``release`` lets a test hold the widget open.
    """

    def __init__(self, sessions, outcome="paid"):
        self.sessions = sessions
        self.outcome = outcome
        self.calls = []
        self.release = None

    async def open(self, checkout):
        self.calls.append(checkout)
        if self.release is not None:
            await self.release.wait()

        if self.outcome == "paid":
            intent = self.sessions.pay(checkout.session_id)
            return PaymentSucceeded(PaymentProof(checkout.session_id, intent, checkout.order_id))
        if self.outcome == "unverified":
            return PaymentSucceeded(PaymentProof(checkout.session_id, "pi_unverified", checkout.order_id))
        if self.outcome == "declined":
            return PaymentFailed("Your card was declined.", code="card_declined")
        return PaymentDismissed()


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setattr(bakery.db, "DB_PATH", str(tmp_path / "bakery-test.db"))
    init_db()


@pytest.fixture
def checkout_sessions(monkeypatch):
    sessions = FakeCheckoutSessions()
    monkeypatch.setattr(stripe, "api_key", "sk_test_bakery")
    monkeypatch.setattr(stripe.checkout.Session, "create", sessions.create)
    monkeypatch.setattr(stripe.checkout.Session, "retrieve", sessions.retrieve)
    monkeypatch.setattr(stripe.checkout.Session, "expire", sessions.expire)
    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", sessions.retrieve_intent)
    monkeypatch.setattr(stripe.Refund, "create", sessions.create_refund)
    return sessions


@pytest.fixture
def gateway_not_configured(monkeypatch):
    monkeypatch.setattr(stripe, "api_key", "")


@pytest.fixture
def customer(db):
    return create_user(
        RegisterRequest(
            first_name="Asha",
            last_name="Verma",
            email="asha@example.com",
            phone="9876543210",
            password="croissant123",
        )
    )


@pytest.fixture
def admin(db):
    return create_user(
        RegisterRequest(first_name="Admin", email="admin@example.com", password="admin12345"),
        role=Role.admin,
    )


@pytest.fixture
def widget(checkout_sessions):
    return ScriptedWidget(checkout_sessions)


@pytest.fixture
def navigations():
    return []


@pytest.fixture
async def shop(db, widget, navigations):
    client = BakeryClient(base_url=API_BASE_URL, transport=httpx.ASGITransport(app=app))
    storefront = Storefront(client, widget=widget, navigate=navigations.append, notification_ttl=60)
    yield storefront
    await storefront.close()


@pytest.fixture
def signed_in(shop, customer):
    shop.session.adopt(create_access_token(customer.id), customer)
    return customer


def fill_checkout(flow, payment_method="online"):
    flow.update_contact(name="Asha Verma", email="asha@example.com", phone="9876543210")
    assert flow.next()
    flow.update_delivery(street="12 Civil Lines", city="Lucknow", pincode="226001")
    assert flow.next()
    flow.choose_payment_method(payment_method)


def count_orders():
    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT COUNT(*) FROM orders")
    total = cur.fetchone()[0]
    conn.close()
    return total


async def wait_until(predicate, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")
