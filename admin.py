"""Admin dashboard data: stats, users, navigation items and store settings."""
import logging
from typing import List, Optional

from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from auth import public_user
from database import create_document, guarded, now, serialize, to_obj_id
from errors import NotFound, ValidationFailure
from schemas import ConfigItem, NavItem

logger = logging.getLogger(__name__)

ROLES = ("admin", "vendor", "customer")


@guarded("dashboard stats")
def dashboard_stats(db: Database) -> dict:
    revenue = 0.0
    order_count = 0
    for order in db["orders"].find({}, {"total": 1, "status": 1}):
        order_count += 1
        if order.get("status") == "paid":
            revenue += float(order.get("total") or 0)
    return {
        "products": db["products"].count_documents({}),
        "orders": order_count,
        "users": db["profiles"].count_documents({}),
        "revenue": round(revenue, 2),
    }


@guarded("list users")
def list_users(db: Database, limit: int = 200) -> List[dict]:
    docs = db["profiles"].find({}).sort([("created_at", DESCENDING), ("_id", DESCENDING)]).limit(limit)
    return [public_user(d) for d in docs]


@guarded("set role")
def set_user_role(db: Database, user_id: str, role: str) -> dict:
    if role not in ROLES:
        raise ValidationFailure(f"Role must be one of: {', '.join(ROLES)}")
    res = db["profiles"].update_one({"_id": to_obj_id(user_id, "User")}, {"$set": {"role": role, "updated_at": now()}})
    if res.matched_count == 0:
        raise NotFound("User not found")
    logger.info("user %s is now %s", user_id, role)
    return public_user(db["profiles"].find_one({"_id": to_obj_id(user_id)}))


# Navigation

@guarded("list navigation")
def list_nav_items(db: Database, nav_type: Optional[str] = None) -> List[dict]:
    query = {"type": nav_type} if nav_type else {}
    return [serialize(d) for d in db["nav_items"].find(query).sort([("position", ASCENDING), ("_id", ASCENDING)])]


@guarded("create navigation")
def create_nav_item(db: Database, item: NavItem) -> dict:
    item_id = create_document(db, "nav_items", item)
    return serialize(db["nav_items"].find_one({"_id": to_obj_id(item_id)}))


@guarded("delete navigation")
def delete_nav_item(db: Database, item_id: str) -> None:
    res = db["nav_items"].delete_one({"_id": to_obj_id(item_id, "Navigation item")})
    if res.deleted_count == 0:
        raise NotFound("Navigation item not found")


# Settings

@guarded("read settings")
def get_config(db: Database) -> dict:
    return {d["name"]: d["value"] for d in db["config"].find({})}


@guarded("write setting")
def set_config(db: Database, item: ConfigItem) -> dict:
    db["config"].update_one({"name": item.name}, {"$set": {"value": item.value, "updated_at": now()}}, upsert=True)
    return get_config(db)
