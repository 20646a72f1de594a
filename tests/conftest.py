"""Pytest fixtures for checkout service tests."""

import httpx
import pytest
from fastapi.testclient import TestClient

from checkout_service.clients import PaymentGatewayClient, compute_signature, to_minor_units
from checkout_service.errors import GatewayError
from checkout_service.identity import Actor, Role, create_token
from checkout_service.main import Services, create_app
from checkout_service.models import new_id
from checkout_service.store import MemoryStore

GATEWAY_KEY_ID = "rzp_test_key"
GATEWAY_SECRET = "test_gateway_secret"


class FakeGateway(PaymentGatewayClient):
    """Gateway double: real signature verification, in-memory remote state."""

    def __init__(self):
        super().__init__(key_id=GATEWAY_KEY_ID, key_secret=GATEWAY_SECRET, http_client=httpx.Client())
        self.intents = []
        self.remote_payments = {}
        self.refunds = []
        self.fail_fetch = False
        self.fail_refund = False

    def create_remote_intent(self, amount, currency, reference):
        intent = {
            "id": f"order_{len(self.intents) + 1}",
            "amount": to_minor_units(amount),
            "currency": currency,
            "receipt": reference,
            "status": "created",
        }
        self.intents.append(intent)
        return intent

    def fetch_remote_payment(self, gateway_payment_ref):
        if self.fail_fetch:
            raise GatewayError("Payment gateway unreachable: timed out")
        return self.remote_payments[gateway_payment_ref]

    def refund(self, gateway_payment_ref, amount):
        if self.fail_refund:
            raise GatewayError("Payment gateway error (HTTP 500)")
        refund = {"id": f"rfnd_{len(self.refunds) + 1}", "payment_id": gateway_payment_ref,
                  "amount": to_minor_units(amount), "status": "processed"}
        self.refunds.append(refund)
        return refund

    def capture(self, gateway_order_id, amount, status="captured"):
        """Simulates the customer paying; returns (gateway payment id, signature)."""
        payment_ref = f"pay_{len(self.remote_payments) + 1}"
        self.remote_payments[payment_ref] = {
            "id": payment_ref,
            "order_id": gateway_order_id,
            "amount": to_minor_units(amount),
            "status": status,
        }
        return payment_ref, compute_signature(GATEWAY_SECRET, gateway_order_id, payment_ref)


CUSTOMER = Actor("cust-1", Role.CUSTOMER)
OTHER_CUSTOMER = Actor("cust-2", Role.CUSTOMER)
SUPPLIER = Actor("sup-1", Role.SUPPLIER)
OTHER_SUPPLIER = Actor("sup-2", Role.SUPPLIER)
ADMIN = Actor("admin-1", Role.ADMIN)


def add_product(store, price, stock, discount_price=None, supplier_id="sup-1", active=True, name="Product"):
    product_id = new_id()
    store.insert_product({
        "_id": product_id,
        "name": name,
        "supplierId": supplier_id,
        "price": price,
        "discountPrice": discount_price,
        "stock": stock,
        "isActive": active,
    })
    return product_id


def add_address(store, customer_id):
    address_id = new_id()
    store.insert_address({
        "_id": address_id,
        "customerId": customer_id,
        "addressLine1": "12 Mandi Road",
        "city": "Rajkot",
        "state": "Gujarat",
        "pincode": "360001",
        "country": "India",
    })
    return address_id


def stock_of(store, product_id):
    return store.get_product(product_id)["stock"]


def auth(actor):
    return {"Authorization": f"Bearer {create_token(actor.id, actor.role.value)}"}


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def services(store, gateway):
    return Services(store, gateway)


@pytest.fixture
def catalog(store):
    """Product A (100, stock 10), product B (50, stock 5) and an address for CUSTOMER."""
    return {
        "a": add_product(store, price=100, stock=10, name="Urea 45kg"),
        "b": add_product(store, price=50, stock=5, name="Neem oil 1L"),
        "address": add_address(store, CUSTOMER.id),
    }


@pytest.fixture
def placed_order(services, catalog):
    """A pending order for CUSTOMER: 2 x A + 1 x B, paid by card."""
    services.carts.add_item(CUSTOMER.id, catalog["a"], 2)
    services.carts.add_item(CUSTOMER.id, catalog["b"], 1)
    return services.orders.create_order(CUSTOMER, catalog["address"], "card")


@pytest.fixture
def client(store, gateway):
    return TestClient(create_app(store=store, gateway=gateway))
