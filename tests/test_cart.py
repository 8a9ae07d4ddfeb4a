import pytest
from pymongo.errors import AutoReconnect

import cart
from errors import DataUnavailable, NotFound, ValidationFailure


def test_repeated_add_increments_one_line(db, add_product):
    pid = add_product(price=10)
    cart.add_to_cart(db, "u1", pid, 1)
    line = cart.add_to_cart(db, "u1", pid, 2)
    lines = cart.list_cart(db, "u1")
    assert len(lines) == 1
    assert line["quantity"] == 3
    assert lines[0]["product"]["id"] == pid


def test_carts_are_per_user(db, add_product):
    pid = add_product()
    cart.add_to_cart(db, "u1", pid)
    cart.add_to_cart(db, "u2", pid)
    assert len(cart.list_cart(db, "u1")) == 1
    assert len(cart.list_cart(db, "u2")) == 1


def test_add_rejects_non_positive_quantity(db, add_product):
    pid = add_product()
    with pytest.raises(ValidationFailure):
        cart.add_to_cart(db, "u1", pid, 0)
    assert cart.list_cart(db, "u1") == []


def test_add_unknown_product(db):
    with pytest.raises(NotFound):
        cart.add_to_cart(db, "u1", "65a000000000000000000000")


def test_price_is_captured_on_first_add(db, add_product):
    pid = add_product(price=10)
    cart.add_to_cart(db, "u1", pid)
    db["products"].update_one({}, {"$set": {"price": 20}})
    line = cart.add_to_cart(db, "u1", pid)
    assert line["price"] == 10
    assert line["product"]["price"] == 20


def test_update_quantity(db, add_product):
    pid = add_product()
    cart.add_to_cart(db, "u1", pid)
    assert cart.update_cart_quantity(db, "u1", pid, 5)["quantity"] == 5
    with pytest.raises(ValidationFailure):
        cart.update_cart_quantity(db, "u1", pid, -1)
    assert cart.update_cart_quantity(db, "u1", pid, 0) is None
    assert cart.list_cart(db, "u1") == []
    with pytest.raises(NotFound):
        cart.update_cart_quantity(db, "u1", pid, 2)


def test_remove_and_clear(db, add_product):
    a, b = add_product(), add_product()
    cart.add_to_cart(db, "u1", a)
    cart.add_to_cart(db, "u1", b)
    assert cart.remove_from_cart(db, "u1", a)
    assert not cart.remove_from_cart(db, "u1", a)
    assert cart.clear_cart(db, "u1") == 1


def test_cart_total():
    lines = [{"price": 10, "quantity": 2}, {"price": 0.1, "quantity": 3}]
    assert cart.cart_total(lines) == 20.3


def test_wishlist_add_is_idempotent(db, add_product):
    pid = add_product()
    cart.add_to_wishlist(db, "u1", pid)
    cart.add_to_wishlist(db, "u1", pid)
    assert len(cart.list_wishlist(db, "u1")) == 1
    assert cart.is_in_wishlist(db, "u1", pid)
    assert cart.remove_from_wishlist(db, "u1", pid)
    assert not cart.is_in_wishlist(db, "u1", pid)


def test_move_to_cart(db, add_product):
    pid = add_product()
    cart.add_to_wishlist(db, "u1", pid)
    line = cart.move_to_cart(db, "u1", pid)
    assert line["quantity"] == 1
    assert cart.list_wishlist(db, "u1") == []
    with pytest.raises(NotFound):
        cart.move_to_cart(db, "u1", pid)


class BrokenCart:
    def __init__(self, collection):
        self._collection = collection

    def update_one(self, *args, **kwargs):
        raise AutoReconnect("connection reset")

    def __getattr__(self, name):
        return getattr(self._collection, name)


class BrokenCartDatabase:
    def __init__(self, db):
        self._db = db

    def __getitem__(self, name):
        if name == "cart_items":
            return BrokenCart(self._db[name])
        return self._db[name]


def test_move_to_cart_keeps_wishlist_entry_when_cart_write_fails(db, add_product):
    pid = add_product()
    cart.add_to_wishlist(db, "u1", pid)
    with pytest.raises(DataUnavailable):
        cart.move_to_cart(BrokenCartDatabase(db), "u1", pid)
    assert cart.is_in_wishlist(db, "u1", pid)
    assert cart.list_cart(db, "u1") == []
