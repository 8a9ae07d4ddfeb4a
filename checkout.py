"""
Checkout and order history.

An order is one document holding its header and its items, so writing it is a
single atomic insert. The insert is an upsert keyed by checkout_id, which lets
the write-order-then-clear-cart sequence be retried as a whole without
creating duplicate orders.
"""
import logging
import os
import uuid
from typing import List, Optional

from pymongo import DESCENDING
from pymongo.database import Database

from cart import cart_total, clear_cart, list_cart
from catalog import public_product
from database import guarded, now, serialize, to_obj_id
from errors import CheckoutFailure, DataUnavailable, Forbidden, NotFound, ValidationFailure
from payments import CardDetails, PaymentGateway, SimulatedGateway
from schemas import Order, OrderItem

logger = logging.getLogger(__name__)

CHECKOUT_ATTEMPTS = int(os.getenv("CHECKOUT_ATTEMPTS", "3"))
ORDER_STATUSES = ("pending", "paid", "fulfilled", "cancelled")


def snapshot(lines: List[dict]) -> List[OrderItem]:
    return [
        OrderItem(
            product_id=line["product_id"],
            title=(line.get("product") or {}).get("title"),
            price=float(line["price"]),
            quantity=int(line["quantity"]),
        )
        for line in lines
    ]


@guarded("write order")
def _persist_order(db: Database, order: Order) -> str:
    doc = order.model_dump(exclude={"checkout_id"})
    stamp = now()
    doc["created_at"] = stamp
    doc["updated_at"] = stamp
    db["orders"].update_one({"checkout_id": order.checkout_id}, {"$setOnInsert": doc}, upsert=True)
    return str(db["orders"].find_one({"checkout_id": order.checkout_id})["_id"])


@guarded("find order")
def _find_order(db: Database, checkout_id: str) -> Optional[dict]:
    return db["orders"].find_one({"checkout_id": checkout_id})


def _find_order_id(db: Database, checkout_id: str) -> Optional[str]:
    try:
        doc = _find_order(db, checkout_id)
    except DataUnavailable:
        return None
    return str(doc["_id"]) if doc else None


def checkout(db: Database, user_id: str, payment_method: str, gateway: Optional[PaymentGateway] = None,
             card: Optional[CardDetails] = None, attempts: int = CHECKOUT_ATTEMPTS) -> dict:
    gateway = gateway or SimulatedGateway()
    lines = list_cart(db, user_id)
    if not lines:
        raise ValidationFailure("Your cart is empty")
    items = snapshot(lines)
    total = cart_total(lines)
    checkout_id = uuid.uuid4().hex

    payment = gateway.charge(user_id, lines, total, payment_method, card)

    order = Order(
        user_id=user_id,
        items=items,
        total=total,
        status="paid" if payment.confirmed else "pending",
        payment_method=payment_method,
        payment_id=payment.reference,
        checkout_id=checkout_id,
    )
    line_ids = [line["id"] for line in lines]
    last_error = None
    for attempt in range(1, attempts + 1):
        try:
            order_id = _persist_order(db, order)
            clear_cart(db, user_id, line_ids)
        except DataUnavailable as e:
            last_error = e
            logger.warning("checkout %s attempt %d/%d failed", checkout_id, attempt, attempts)
            continue
        logger.info("order %s placed by %s, total %.2f, payment %s", order_id, user_id, total, payment.reference)
        result = get_order(db, order_id)
        if payment.redirect_url:
            result["redirect_url"] = payment.redirect_url
        return result

    order_id = _find_order_id(db, checkout_id)
    logger.error("checkout %s failed after payment %s (order %s)", checkout_id, payment.reference, order_id)
    raise CheckoutFailure(payment_ref=payment.reference, order_id=order_id) from last_error


@guarded("list orders")
def list_orders(db: Database, user_id: Optional[str] = None, status: Optional[str] = None,
                limit: int = 100) -> List[dict]:
    query = {}
    if user_id:
        query["user_id"] = user_id
    if status:
        query["status"] = status
    docs = db["orders"].find(query).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit)
    return [serialize(d) for d in docs]


@guarded("get order")
def get_order(db: Database, order_id: str, user: Optional[dict] = None) -> dict:
    doc = db["orders"].find_one({"_id": to_obj_id(order_id, "Order")})
    if not doc:
        raise NotFound("Order not found")
    if user is not None and doc["user_id"] != user["id"] and user.get("role") != "admin":
        raise Forbidden("This order belongs to another account")
    order = serialize(doc)
    for item in order["items"]:
        try:
            product = db["products"].find_one({"_id": to_obj_id(item["product_id"])})
        except NotFound:
            product = None
        item["product"] = public_product(product) if product else None
    return order


@guarded("update order")
def update_order_status(db: Database, order_id: str, status: str) -> dict:
    if status not in ORDER_STATUSES:
        raise ValidationFailure(f"Order status must be one of: {', '.join(ORDER_STATUSES)}")
    res = db["orders"].update_one({"_id": to_obj_id(order_id, "Order")},
                                  {"$set": {"status": status, "updated_at": now()}})
    if res.matched_count == 0:
        raise NotFound("Order not found")
    return get_order(db, order_id)
