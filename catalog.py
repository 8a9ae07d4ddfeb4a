"""
Catalog data access: product listing, detail, versions, reviews and the admin
product operations.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING
from pymongo.database import Database

from database import as_utc, create_document, guarded, now, serialize, to_obj_id
from errors import NotFound, ValidationFailure
from filters import FilterOptions, SortOption
from schemas import Product, ProductVersion, Review

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

SORT_KEYS = {
    SortOption.POPULARITY: [("download_count", DESCENDING)],
    SortOption.NEWEST: [("created_at", DESCENDING)],
    SortOption.PRICE_ASC: [("price", ASCENDING)],
    SortOption.PRICE_DESC: [("price", DESCENDING)],
}


class ProductPage(BaseModel):
    items: List[Dict[str, Any]]
    total_count: int


def format_price(price: float) -> str:
    return f"${price:,.2f}" if price > 0 else "Free"


def public_product(doc: dict) -> dict:
    product = serialize(doc)
    product["display_price"] = format_price(float(product.get("price") or 0))
    return product


def build_product_query(filters: Optional[FilterOptions] = None, search: Optional[str] = None) -> dict:
    query: Dict[str, Any] = {}
    f = (filters or FilterOptions()).normalize()
    if f.platform:
        query["platform"] = {"$in": sorted(f.platform)}
    if f.category:
        query["category"] = {"$in": sorted(f.category)}
    if f.tags:
        query["tags"] = {"$in": sorted(f.tags)}
    if f.price_range is not None:
        query["price"] = {"$gte": f.price_range[0], "$lte": f.price_range[1]}
    search = (search or "").strip()
    if search:
        # title only; descriptions are not searched
        query["title"] = {"$regex": re.escape(search), "$options": "i"}
    return query


def sort_spec(sort: Union[SortOption, str, None]) -> list:
    option = SortOption.parse(sort, SortOption.NEWEST)
    return SORT_KEYS[option] + [("_id", ASCENDING)]


@guarded("list products")
def list_products(db: Database, filters: Optional[FilterOptions] = None, sort: Union[SortOption, str, None] = None,
                  search: Optional[str] = None, page: int = 1, page_size: int = 12) -> ProductPage:
    if page < 1:
        raise ValidationFailure("Page numbers start at 1")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValidationFailure(f"Page size must be between 1 and {MAX_PAGE_SIZE}")
    query = build_product_query(filters, search)
    total = db["products"].count_documents(query)
    cursor = db["products"].find(query).sort(sort_spec(sort)).skip((page - 1) * page_size).limit(page_size)
    return ProductPage(items=[public_product(d) for d in cursor], total_count=total)


@guarded("get product")
def get_product_by_id(db: Database, product_id: str) -> dict:
    doc = db["products"].find_one({"_id": to_obj_id(product_id, "Product")})
    if not doc:
        raise NotFound("Product not found")
    return public_product(doc)


def _version_number(label: str):
    return tuple(int(part) for part in re.findall(r"\d+", label or ""))


def _version_order(doc: dict):
    # newest date first; equal dates resolved by higher version number, then later insert
    return as_utc(doc.get("date")), _version_number(doc.get("version")), doc["_id"]


@guarded("list versions")
def get_product_versions(db: Database, product_id: str) -> List[dict]:
    docs = list(db["product_versions"].find({"product_id": product_id}))
    docs.sort(key=_version_order, reverse=True)
    return [serialize(d) for d in docs]


def latest_version(db: Database, product_id: str) -> Optional[dict]:
    versions = get_product_versions(db, product_id)
    return versions[0] if versions else None


def _author_name(profile: Optional[dict]) -> str:
    if not profile:
        return "Anonymous"
    name = f"{profile.get('first_name') or ''} {profile.get('last_name') or ''}".strip()
    return name or "Anonymous"


@guarded("list reviews")
def get_product_reviews(db: Database, product_id: str, include_unapproved: bool = False) -> List[dict]:
    query: Dict[str, Any] = {"product_id": product_id}
    if not include_unapproved:
        # reviews written before moderation existed carry no status
        query["$or"] = [{"status": "approved"}, {"status": {"$exists": False}}]
    reviews = []
    for doc in db["reviews"].find(query).sort([("date", DESCENDING), ("_id", DESCENDING)]):
        review = serialize(doc)
        profile = None
        try:
            profile = db["profiles"].find_one({"_id": to_obj_id(review["user_id"])})
        except NotFound:
            pass
        review["author"] = _author_name(profile)
        review["avatar"] = profile.get("avatar_url") if profile else None
        reviews.append(review)
    return reviews


@guarded("add review")
def add_review(db: Database, review: Review) -> str:
    get_product_by_id(db, review.product_id)
    doc = review.model_dump()
    doc["status"] = "pending"
    doc["date"] = doc.get("date") or now()
    return create_document(db, "reviews", doc)


@guarded("moderate review")
def set_review_status(db: Database, review_id: str, status: str) -> dict:
    if status not in ("pending", "approved", "rejected"):
        raise ValidationFailure("Unknown review status")
    res = db["reviews"].update_one({"_id": to_obj_id(review_id, "Review")}, {"$set": {"status": status}})
    if res.matched_count == 0:
        raise NotFound("Review not found")
    return serialize(db["reviews"].find_one({"_id": to_obj_id(review_id)}))


# Admin

@guarded("create product")
def create_product(db: Database, product: Product) -> dict:
    doc = product.model_dump()
    stamp = now()
    doc["release_date"] = doc.get("release_date") or stamp
    doc["last_update"] = doc.get("last_update") or stamp
    product_id = create_document(db, "products", doc)
    logger.info("product %s created: %s", product_id, product.title)
    return get_product_by_id(db, product_id)


PRODUCT_FIELDS = set(Product.model_fields)


@guarded("update product")
def update_product(db: Database, product_id: str, fields: Dict[str, Any]) -> dict:
    unknown = set(fields) - PRODUCT_FIELDS
    if unknown:
        raise ValidationFailure(f"Unknown product fields: {', '.join(sorted(unknown))}")
    current = get_product_by_id(db, product_id)
    merged = {k: v for k, v in current.items() if k in PRODUCT_FIELDS}
    merged.update(fields)
    try:
        validated = Product(**merged)
    except ValueError as e:
        raise ValidationFailure(str(e))
    update = validated.model_dump(include=set(fields))
    update["updated_at"] = now()
    db["products"].update_one({"_id": to_obj_id(product_id)}, {"$set": update})
    return get_product_by_id(db, product_id)


@guarded("delete product")
def delete_product(db: Database, product_id: str) -> None:
    oid = to_obj_id(product_id, "Product")
    if db["orders"].count_documents({"items.product_id": product_id}, limit=1):
        raise ValidationFailure("Product appears in past orders and cannot be deleted")
    res = db["products"].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise NotFound("Product not found")
    for collection in ("product_versions", "cart_items", "wishlist_items", "reviews"):
        db[collection].delete_many({"product_id": product_id})
    logger.info("product %s deleted", product_id)


@guarded("add version")
def add_product_version(db: Database, version: ProductVersion) -> dict:
    get_product_by_id(db, version.product_id)
    doc = version.model_dump()
    doc["date"] = doc.get("date") or now()
    version_id = create_document(db, "product_versions", doc)
    latest = latest_version(db, version.product_id)
    if latest and latest["id"] == version_id:
        db["products"].update_one(
            {"_id": to_obj_id(version.product_id)},
            {"$set": {"version": version.version, "last_update": doc["date"], "updated_at": now()}},
        )
    return serialize(db["product_versions"].find_one({"_id": to_obj_id(version_id)}))


@guarded("purchase lookup")
def has_user_purchased(db: Database, user_id: str, product_id: str) -> bool:
    return db["orders"].count_documents(
        {"user_id": user_id, "status": {"$in": ["paid", "fulfilled"]}, "items.product_id": product_id},
        limit=1,
    ) > 0
