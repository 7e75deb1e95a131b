"""
Database helpers

MongoDB access for the storefront. Each collection is named after the lowercase
entity it stores: product, category, order, user, useraddress, auditlog.
"""
import logging
import os
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "goldlegacy")
MONGO_TRANSACTIONS = os.getenv("MONGO_TRANSACTIONS", "false").lower() in ("1", "true", "yes")

db = None
if DATABASE_URL:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def get_db():
    if db is None:
        raise HTTPException(status_code=503, detail="Database not configured")
    return db


def ensure_indexes(database) -> None:
    database["product"].create_index([("slug", ASCENDING)], unique=True)
    database["category"].create_index([("slug", ASCENDING)], unique=True)
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["order"].create_index([("created_at", ASCENDING)])


def now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands datetimes back naive (UTC)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def serialize(doc: Optional[dict]) -> Optional[dict]:
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out


def create_document(database, collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
    if isinstance(data, BaseModel):
        doc = data.model_dump()
    else:
        doc = dict(data)
    stamp = now()
    doc.setdefault("created_at", stamp)
    doc["updated_at"] = stamp
    result = database[collection_name].insert_one(doc, session=session)
    return str(result.inserted_id)


@contextmanager
def transaction(database):
    """Yield a session with an open transaction, or None when transactions are off.

    Callers pass the yielded value as ``session=`` to every write. Without a
    session the caller is responsible for undoing partial writes itself.
    """
    if not MONGO_TRANSACTIONS:
        yield None
        return
    with database.client.start_session() as session:
        with session.start_transaction():
            yield session
