"""
MongoDB access helpers.

The client is created lazily from DATABASE_URL / DATABASE_NAME. Request
handlers receive the database through the `get_db` dependency so tests can
swap in an in-memory store.
"""
import functools
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import DataUnavailable, NotFound

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "plugin_market")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "15000"))

_client: Optional[MongoClient] = None


def get_client() -> MongoClient:
    global _client
    if _client is None:
        _client = MongoClient(
            DATABASE_URL,
            serverSelectionTimeoutMS=DATABASE_TIMEOUT_MS,
            connectTimeoutMS=DATABASE_TIMEOUT_MS,
            socketTimeoutMS=DATABASE_TIMEOUT_MS,
            tz_aware=True,
        )
    return _client


def get_db() -> Database:
    return get_client()[DATABASE_NAME]


def guarded(operation: str):
    """Translate driver errors raised by a data access call into DataUnavailable."""
    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except PyMongoError as e:
                logger.error("%s failed: %s", operation, e)
                raise DataUnavailable() from e
        return wrapper
    return decorator


@guarded("ensure indexes")
def ensure_indexes(db: Database) -> None:
    db["cart_items"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    db["wishlist_items"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    db["orders"].create_index("checkout_id", unique=True, sparse=True)
    db["profiles"].create_index("email", unique=True)


def now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> datetime:
    # documents written through a client without tz_aware come back naive
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_obj_id(id_str: str, what: str = "Record") -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise NotFound(f"{what} not found")


def serialize(doc: Optional[dict]):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return doc


@guarded("insert")
def create_document(db: Database, collection: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    payload = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    if not payload.get("created_at"):
        payload["created_at"] = now()
    if not payload.get("updated_at"):
        payload["updated_at"] = payload["created_at"]
    result = db[collection].insert_one(payload)
    return str(result.inserted_id)


@guarded("query")
def get_documents(db: Database, collection: str, query: Optional[dict] = None, limit: Optional[int] = None,
                  sort: Optional[list] = None) -> List[dict]:
    cursor = db[collection].find(query or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)
