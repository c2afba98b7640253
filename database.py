"""
MongoDB access for the ordering API.

`db` is configured from DATABASE_URL / DATABASE_NAME (a .env file is honoured).
Helpers take the database explicitly so request handlers can inject it and
tests can swap in a mongomock database.
"""

import os
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from dotenv import load_dotenv
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, GEOSPHERE, MongoClient

from errors import InternalError, InvalidId

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")
USE_TRANSACTIONS = os.getenv("MONGO_TRANSACTIONS", "false").lower() in ("1", "true", "yes")

_client = None
db = None

if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL, tz_aware=True)
    db = _client[DATABASE_NAME]


def get_db():
    """FastAPI dependency returning the configured database."""
    if db is None:
        raise InternalError("Database not available")
    return db


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def object_id(value: Any, field: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise InvalidId(field)
    return ObjectId(value)


def with_timestamps(data: Union[BaseModel, dict]) -> dict:
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = data.copy()
    now = utcnow()
    data_dict.setdefault("created_at", now)
    data_dict["updated_at"] = now
    return data_dict


def create_document(database, collection_name: str, data: Union[BaseModel, dict], session=None) -> str:
    """Insert a single document, stamping created_at/updated_at. Returns the id as a string."""
    data_dict = with_timestamps(data)
    result = database[collection_name].insert_one(data_dict, session=session)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[dict] = None,
                  limit: Optional[int] = None, skip: int = 0, sort=None) -> List[dict]:
    cursor = database[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


@contextmanager
def transaction(database):
    """
    Yield a session bound to a multi-document transaction, or None when
    transactions are disabled (standalone servers do not support them).
    Callers pass the yielded value as `session=` to every write.
    """
    if not USE_TRANSACTIONS:
        yield None
        return
    with database.client.start_session() as session:
        with session.start_transaction():
            yield session


def ensure_indexes(database) -> None:
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["user"].create_index([("display_name", ASCENDING)], unique=True)
    database["session"].create_index([("token", ASCENDING)], unique=True)
    database["product"].create_index([("slug", ASCENDING)], unique=True)
    database["store"].create_index([("name", ASCENDING)], unique=True)
    database["store"].create_index([("slug", ASCENDING)], unique=True)
    database["store"].create_index([("email", ASCENDING)], unique=True)
    database["store"].create_index([("location", GEOSPHERE)])
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["orderitem"].create_index([("order_id", ASCENDING)])
    logger.info("Indexes ensured on %s", database.name)


# Wire conversion

def _to_wire(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat()
    if isinstance(value, dict):
        return {k: _to_wire(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_to_wire(v) for v in value]
    return value


def to_str_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = d.pop("_id")
    return _to_wire(d)
