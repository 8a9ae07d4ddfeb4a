"""
Cart and wishlist persistence.

There is at most one cart line and one wishlist entry per (user, product);
repeated adds are upserts, so the uniqueness holds even when two requests
race. A cart line keeps the unit price seen when the product was first added.
"""
import logging
from typing import List, Optional

from pymongo import ASCENDING
from pymongo.database import Database

from catalog import get_product_by_id, public_product
from database import guarded, now, serialize, to_obj_id
from errors import NotFound, ValidationFailure

logger = logging.getLogger(__name__)


def _with_product(db: Database, line: dict) -> dict:
    item = serialize(line)
    try:
        product = db["products"].find_one({"_id": to_obj_id(item["product_id"])})
    except NotFound:
        product = None
    item["product"] = public_product(product) if product else None
    return item


# Cart

@guarded("list cart")
def list_cart(db: Database, user_id: str) -> List[dict]:
    lines = db["cart_items"].find({"user_id": user_id}).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
    return [_with_product(db, line) for line in lines]


@guarded("get cart line")
def get_cart_line(db: Database, user_id: str, product_id: str) -> Optional[dict]:
    line = db["cart_items"].find_one({"user_id": user_id, "product_id": product_id})
    return _with_product(db, line) if line else None


@guarded("add to cart")
def add_to_cart(db: Database, user_id: str, product_id: str, quantity: int = 1) -> dict:
    if quantity < 1:
        raise ValidationFailure("Quantity must be at least 1")
    product = get_product_by_id(db, product_id)
    stamp = now()
    db["cart_items"].update_one(
        {"user_id": user_id, "product_id": product_id},
        {
            "$inc": {"quantity": quantity},
            "$set": {"updated_at": stamp},
            "$setOnInsert": {"price": float(product.get("price") or 0), "created_at": stamp},
        },
        upsert=True,
    )
    return get_cart_line(db, user_id, product_id)


@guarded("update cart")
def update_cart_quantity(db: Database, user_id: str, product_id: str, quantity: int) -> Optional[dict]:
    """Set a line's quantity; zero removes the line and returns None."""
    if quantity < 0:
        raise ValidationFailure("Quantity cannot be negative")
    if quantity == 0:
        remove_from_cart(db, user_id, product_id)
        return None
    res = db["cart_items"].update_one(
        {"user_id": user_id, "product_id": product_id},
        {"$set": {"quantity": quantity, "updated_at": now()}},
    )
    if res.matched_count == 0:
        raise NotFound("Item is not in your cart")
    return get_cart_line(db, user_id, product_id)


@guarded("remove from cart")
def remove_from_cart(db: Database, user_id: str, product_id: str) -> bool:
    res = db["cart_items"].delete_one({"user_id": user_id, "product_id": product_id})
    return res.deleted_count > 0


@guarded("clear cart")
def clear_cart(db: Database, user_id: str, line_ids: Optional[List[str]] = None) -> int:
    query = {"user_id": user_id}
    if line_ids is not None:
        query["_id"] = {"$in": [to_obj_id(i) for i in line_ids]}
    return db["cart_items"].delete_many(query).deleted_count


def cart_total(lines: List[dict]) -> float:
    return round(sum(float(line["price"]) * int(line["quantity"]) for line in lines), 2)


# Wishlist

@guarded("list wishlist")
def list_wishlist(db: Database, user_id: str) -> List[dict]:
    entries = db["wishlist_items"].find({"user_id": user_id}).sort([("created_at", ASCENDING), ("_id", ASCENDING)])
    return [_with_product(db, entry) for entry in entries]


@guarded("add to wishlist")
def add_to_wishlist(db: Database, user_id: str, product_id: str) -> dict:
    get_product_by_id(db, product_id)
    db["wishlist_items"].update_one(
        {"user_id": user_id, "product_id": product_id},
        {"$setOnInsert": {"created_at": now()}},
        upsert=True,
    )
    return _with_product(db, db["wishlist_items"].find_one({"user_id": user_id, "product_id": product_id}))


@guarded("remove from wishlist")
def remove_from_wishlist(db: Database, user_id: str, product_id: str) -> bool:
    res = db["wishlist_items"].delete_one({"user_id": user_id, "product_id": product_id})
    return res.deleted_count > 0


@guarded("wishlist lookup")
def is_in_wishlist(db: Database, user_id: str, product_id: str) -> bool:
    return db["wishlist_items"].count_documents({"user_id": user_id, "product_id": product_id}, limit=1) > 0


def move_to_cart(db: Database, user_id: str, product_id: str) -> dict:
    if not is_in_wishlist(db, user_id, product_id):
        raise NotFound("Item is not in your wishlist")
    line = add_to_cart(db, user_id, product_id, 1)
    remove_from_wishlist(db, user_id, product_id)
    return line
