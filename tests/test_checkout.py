import pytest
from pymongo.errors import AutoReconnect

import cart
import checkout
from errors import CheckoutFailure, DataUnavailable, Forbidden, ValidationFailure
from payments import CardDetails, PaymentGateway, PaymentResult, SimulatedGateway

CARD = CardDetails(number="4242 4242 4242 4242", expiry="12/30", cvc="123")


class FlakyOrders:
    def __init__(self, collection, failures):
        self._collection = collection
        self.failures = failures

    def update_one(self, *args, **kwargs):
        if self.failures > 0:
            self.failures -= 1
            raise AutoReconnect("connection reset")
        return self._collection.update_one(*args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._collection, name)


class FlakyDatabase:
    def __init__(self, db, failures):
        self._db = db
        self.orders = FlakyOrders(db["orders"], failures)

    def __getitem__(self, name):
        if name == "orders":
            return self.orders
        return self._db[name]


class RecordingGateway(PaymentGateway):
    def __init__(self):
        self.charges = []

    def charge(self, user_id, lines, total, method, card=None):
        self.charges.append(total)
        return PaymentResult(reference=f"ref_{len(self.charges)}")


def test_order_keeps_price_from_cart(db, add_product):
    pid = add_product(price=10)
    cart.add_to_cart(db, "u1", pid)
    db["products"].update_one({}, {"$set": {"price": 20}})

    order = checkout.checkout(db, "u1", "card", SimulatedGateway(), CARD)

    assert order["items"][0]["price"] == 10
    assert order["total"] == 10
    assert order["status"] == "paid"
    assert order["payment_id"].startswith("sim_")
    assert cart.list_cart(db, "u1") == []


def test_total_is_sum_of_lines(db, add_product):
    a, b = add_product(price=10), add_product(price=2.5)
    cart.add_to_cart(db, "u1", a, 2)
    cart.add_to_cart(db, "u1", b, 3)
    gateway = RecordingGateway()
    order = checkout.checkout(db, "u1", "paypal", gateway)
    assert order["total"] == 27.5
    assert gateway.charges == [27.5]
    assert len(order["items"]) == 2


def test_empty_cart_is_rejected(db):
    gateway = RecordingGateway()
    with pytest.raises(ValidationFailure):
        checkout.checkout(db, "u1", "card", gateway, CARD)
    assert gateway.charges == []


@pytest.mark.parametrize("card", [
    None,
    CardDetails(number="4242", expiry="12/30", cvc="123"),
    CardDetails(number="4242 4242 4242 4242", expiry="1230", cvc="123"),
    CardDetails(number="4242 4242 4242 4242", expiry="12/30", cvc="1"),
])
def test_card_details_are_validated(db, add_product, card):
    cart.add_to_cart(db, "u1", add_product())
    with pytest.raises(ValidationFailure):
        checkout.checkout(db, "u1", "card", SimulatedGateway(), card)
    assert len(cart.list_cart(db, "u1")) == 1
    assert db["orders"].count_documents({}) == 0


def test_transient_failure_is_retried_without_duplicates(db, add_product):
    cart.add_to_cart(db, "u1", add_product())
    flaky = FlakyDatabase(db, failures=2)
    order = checkout.checkout(flaky, "u1", "paypal", RecordingGateway(), attempts=3)
    assert db["orders"].count_documents({}) == 1
    assert order["payment_id"] == "ref_1"
    assert cart.list_cart(db, "u1") == []


def test_persistent_failure_surfaces_checkout_failure(db, add_product):
    cart.add_to_cart(db, "u1", add_product())
    flaky = FlakyDatabase(db, failures=10)
    with pytest.raises(CheckoutFailure) as info:
        checkout.checkout(flaky, "u1", "paypal", RecordingGateway(), attempts=3)
    assert info.value.payment_ref == "ref_1"
    assert info.value.order_id is None
    assert not isinstance(info.value, DataUnavailable)
    assert len(cart.list_cart(db, "u1")) == 1


def test_order_access(db, add_product):
    cart.add_to_cart(db, "owner", add_product())
    order = checkout.checkout(db, "owner", "paypal", RecordingGateway())
    assert checkout.get_order(db, order["id"], {"id": "owner", "role": "customer"})["id"] == order["id"]
    assert checkout.get_order(db, order["id"], {"id": "boss", "role": "admin"})["id"] == order["id"]
    with pytest.raises(Forbidden):
        checkout.get_order(db, order["id"], {"id": "other", "role": "customer"})


def test_order_listing_and_status(db, add_product):
    cart.add_to_cart(db, "u1", add_product())
    order = checkout.checkout(db, "u1", "paypal", RecordingGateway())
    assert [o["id"] for o in checkout.list_orders(db, user_id="u1")] == [order["id"]]
    assert checkout.list_orders(db, user_id="u2") == []
    assert checkout.update_order_status(db, order["id"], "fulfilled")["status"] == "fulfilled"
    with pytest.raises(ValidationFailure):
        checkout.update_order_status(db, order["id"], "lost")
