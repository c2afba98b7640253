"""
Product and store catalog.

Orders only read from here. Writes are administrator operations; each one
re-validates the merged document through the pydantic collection model.
"""

import math
import re
import logging
import unicodedata
from datetime import datetime
from typing import Optional

from pydantic import ValidationError as SchemaError
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from database import create_document, get_documents, object_id, to_str_id, utcnow
from errors import ConflictError, ProductNotFound, StoreNotFound, ValidationError
from events import EventSink
from schemas import Product, Store

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = ("slug", "name", "category", "description", "base_price",
                  "is_active", "image", "sizes", "size_surcharge")
STORE_FIELDS = ("name", "phone", "email", "address", "location", "opening_hours", "is_active")


def slugify(value: str) -> str:
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^\w\s-]", "", value).strip().lower()
    return re.sub(r"[-\s_]+", "-", value).strip("-")


def _schema_message(exc: SchemaError) -> str:
    first = exc.errors()[0]
    where = ".".join(str(p) for p in first.get("loc", ()))
    return f"Invalid data: {where}: {first.get('msg')}" if where else f"Invalid data: {first.get('msg')}"


def paginate(total: int, page: int, limit: int) -> dict:
    return {"page": page, "totalPages": math.ceil(total / limit) if limit else 0}


# ---------
# Products
# ---------

def get_product(database, product_id) -> dict:
    doc = database["product"].find_one({"_id": object_id(product_id, "product_id")})
    if not doc:
        raise ProductNotFound(str(product_id))
    return doc


def list_products(database, active: Optional[bool] = None, page: int = 1, limit: int = 10) -> dict:
    filter_dict = {}
    if active is not None:
        filter_dict["is_active"] = active
    total = database["product"].count_documents(filter_dict)
    docs = get_documents(database, "product", filter_dict, limit=limit, skip=(page - 1) * limit,
                         sort=[("name", 1), ("_id", 1)])
    return {**paginate(total, page, limit), "totalProducts": total,
            "products": [to_str_id(d) for d in docs]}


def create_product(database, payload: Product, events: Optional[EventSink] = None) -> dict:
    if database["product"].find_one({"slug": payload.slug}):
        raise ConflictError("Slug already used")
    try:
        product_id = create_document(database, "product", payload)
    except DuplicateKeyError:
        raise ConflictError("Slug already used")
    doc = get_product(database, product_id)
    logger.info("Created product %s (%s)", product_id, payload.slug)
    if events is not None:
        events.publish("product.created", {"id": product_id, "slug": payload.slug, "name": payload.name})
    return to_str_id(doc)


def update_product(database, product_id, changes: dict) -> dict:
    existing = get_product(database, product_id)
    merged = {k: existing.get(k) for k in PRODUCT_FIELDS if k in existing}
    merged.update({k: v for k, v in changes.items() if k in PRODUCT_FIELDS and v is not None})
    try:
        validated = Product(**merged)
    except SchemaError as exc:
        raise ValidationError(_schema_message(exc))

    if validated.slug != existing.get("slug") and database["product"].find_one({"slug": validated.slug}):
        raise ConflictError("Slug already used")

    update = validated.model_dump()
    update["updated_at"] = utcnow()
    try:
        doc = database["product"].find_one_and_update(
            {"_id": existing["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise ConflictError("Slug already used")
    if not doc:
        raise ProductNotFound(str(product_id))
    logger.info("Updated product %s", existing["_id"])
    return to_str_id(doc)


def delete_product(database, product_id) -> None:
    res = database["product"].delete_one({"_id": object_id(product_id, "product_id")})
    if res.deleted_count == 0:
        raise ProductNotFound(str(product_id))
    logger.info("Deleted product %s", product_id)


# ---------
# Stores
# ---------

def get_store(database, store_id) -> dict:
    doc = database["store"].find_one({"_id": object_id(store_id, "store_id")})
    if not doc:
        raise StoreNotFound()
    return doc


def _check_store_unique(database, validated: Store, slug: str, exclude_id=None) -> None:
    for field, value, message in (
        ("email", validated.email, "Email already used for a store"),
        ("name", validated.name, "Store name already used"),
        ("slug", slug, "Store name already used"),
    ):
        query = {field: value}
        if exclude_id is not None:
            query["_id"] = {"$ne": exclude_id}
        if database["store"].find_one(query):
            raise ConflictError(message)


def create_store(database, payload: Store) -> dict:
    slug = slugify(payload.name)
    _check_store_unique(database, payload, slug)
    data = payload.model_dump()
    data["slug"] = slug
    try:
        store_id = create_document(database, "store", data)
    except DuplicateKeyError:
        raise ConflictError("Data conflict (duplicate)")
    logger.info("Created store %s (%s)", store_id, slug)
    return to_str_id(get_store(database, store_id))


def update_store(database, store_id, changes: dict) -> dict:
    existing = get_store(database, store_id)
    merged = {k: existing.get(k) for k in STORE_FIELDS if k in existing}
    merged.update({k: v for k, v in changes.items() if k in STORE_FIELDS and v is not None})
    try:
        validated = Store(**merged)
    except SchemaError as exc:
        raise ValidationError(_schema_message(exc))

    update = validated.model_dump()
    update["slug"] = slugify(validated.name) if validated.name != existing.get("name") else existing.get("slug")
    _check_store_unique(database, validated, update["slug"], exclude_id=existing["_id"])
    update["updated_at"] = utcnow()
    try:
        doc = database["store"].find_one_and_update(
            {"_id": existing["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        raise ConflictError("Data conflict (duplicate)")
    if not doc:
        raise StoreNotFound()
    logger.info("Updated store %s", existing["_id"])
    return to_str_id(doc)


def delete_store(database, store_id) -> None:
    res = database["store"].delete_one({"_id": object_id(store_id, "store_id")})
    if res.deleted_count == 0:
        raise StoreNotFound()
    logger.info("Deleted store %s", store_id)


# Opening hours (index 0 = Sunday)

def day_index(when: datetime) -> int:
    return (when.weekday() + 1) % 7


def schedule_for_day(store: dict, index: int) -> list:
    hours = store.get("opening_hours") or []
    if 0 <= index < len(hours):
        return list(hours[index])
    return []


def is_open_at(store: dict, when: datetime) -> bool:
    """Inclusive of both ends. A close time before the open time runs past midnight."""
    today = day_index(when)
    current = when.strftime("%H:%M")

    schedule = schedule_for_day(store, today)
    if schedule:
        open_time, close_time = schedule
        if open_time <= close_time:
            if open_time <= current <= close_time:
                return True
        elif current >= open_time:
            return True

    # spill-over from the previous evening
    previous = schedule_for_day(store, (today - 1) % 7)
    if previous:
        open_time, close_time = previous
        if close_time < open_time and current <= close_time:
            return True
    return False
