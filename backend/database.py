"""
MongoDB access for the storefront.

One collection per entity, named after the lowercase schema class
(``user``, ``product``, ``cart_item`` ...). Foreign keys are stored as the
string form of the referenced ObjectId.
"""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

db = None
if DATABASE_URL:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]
    logger.info("Using MongoDB database %s", DATABASE_NAME)
else:
    logger.warning("DATABASE_URL not set, storage is unavailable")


def get_db():
    if db is None:
        raise HTTPException(status_code=500, detail="Database not configured")
    return db


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def create_document(database, collection_name: str, data) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    ts = now_utc()
    doc.setdefault("created_at", ts)
    doc.setdefault("updated_at", ts)
    result = database[collection_name].insert_one(doc)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_object_id(value: str, what: str = "Document") -> ObjectId:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        raise HTTPException(status_code=404, detail=f"{what} not found")


def serialize_doc(doc: Optional[Dict[str, Any]]):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if isinstance(_id, ObjectId):
        doc["id"] = str(_id)
    doc.pop("password_hash", None)
    for k, v in list(doc.items()):
        if isinstance(v, datetime):
            doc[k] = v.isoformat()
    return doc


def ensure_indexes(database):
    database["user"].create_index("email", unique=True)
    database["category"].create_index("name", unique=True)
    database["cart_item"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["wishlist_item"].create_index([("user_id", ASCENDING), ("product_id", ASCENDING)], unique=True)
    database["product"].create_index("category_id")
    database["order"].create_index("user_id")
    database["order"].create_index("status")
    database["order_item"].create_index("order_id")
    database["activity_log"].create_index("type")
    database["address"].create_index("user_id")
