"""
Order aggregate: cart -> priced order, status lifecycle, retrieval, cascade delete.

An order and its items are written together. Every product is resolved and
priced before the first write, items are inserted under a pre-allocated order
id, and the order document goes in last with its final total. Items are only
ever read through an existing order, so a failed attempt leaves nothing
readable. With MONGO_TRANSACTIONS enabled the writes also share a transaction.
"""

import math
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.errors import PyMongoError

import catalog
import pricing
from auth import is_admin, public_user
from database import object_id, to_str_id, transaction, utcnow, with_timestamps
from errors import (
    ConflictError,
    ForbiddenError,
    InvalidCartLine,
    InvalidStatus,
    InvalidTransition,
    MissingField,
    OrderNotFound,
    StoreNotFound,
    ValidationError,
)
from events import EventSink

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("preparing", "ready", "collected")
INITIAL_STATUS = "preparing"

# Forward-only: a status may be re-set or moved later in the lifecycle,
# never back. Add entries here to permit corrections.
STATUS_TRANSITIONS = {
    "preparing": frozenset({"preparing", "ready", "collected"}),
    "ready": frozenset({"ready", "collected"}),
    "collected": frozenset({"collected"}),
}


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_cart_line(line: Any, index: int) -> Dict[str, Any]:
    if not isinstance(line, dict):
        raise InvalidCartLine(index=index)
    product_id, size, quantity = line.get("product_id"), line.get("size"), line.get("quantity")
    if _is_missing(product_id) or _is_missing(size) or quantity is None:
        raise InvalidCartLine(index=index)
    if size not in pricing.SIZES:
        raise InvalidCartLine(f"invalid size {size}", index=index)
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidCartLine("quantity must be a positive integer", index=index)
    return {"product_id": object_id(product_id, "product_id"), "size": size, "quantity": quantity}


def _snapshot_item(order_id: ObjectId, product: dict, size: str, quantity: int) -> dict:
    if not product.get("is_active", True):
        raise ValidationError(f"Product {product['_id']} is not available")
    offered = product.get("sizes")
    if offered and size not in offered:
        raise ValidationError(f"Size {size} is not available for {product.get('name')}")
    return with_timestamps({
        "order_id": order_id,
        "product_id": product["_id"],
        "product_name": product.get("name"),
        "size": size,
        "base_price": float(product.get("base_price") or 0),
        "extra": pricing.surcharge_for(product, size),
        "quantity": quantity,
        "final_price": pricing.price_line(product, size, quantity),
    })


def _populate(database, order: dict, with_user: bool = True) -> dict:
    store = database["store"].find_one({"_id": order.get("store_id")})
    out = to_str_id(order)
    out["store"] = to_str_id(store)
    if with_user:
        user = database["user"].find_one({"_id": order.get("user_id")})
        out["user"] = public_user(user)
    return out


# ---------------
# Creation
# ---------------

def create_order(database, user_id, store_id, pickup, items: Optional[List[dict]],
                 events: Optional[EventSink] = None) -> dict:
    if _is_missing(store_id):
        raise MissingField("store_id")
    if _is_missing(pickup):
        raise MissingField("pickup")
    if not isinstance(items, list) or len(items) == 0:
        raise MissingField("items")

    user_oid = object_id(user_id, "user_id")
    store_oid = object_id(store_id, "store_id")
    if not database["store"].find_one({"_id": store_oid}):
        logger.warning("Order rejected: store %s not found", store_id)
        raise StoreNotFound()

    lines = [validate_cart_line(line, i) for i, line in enumerate(items)]

    order_id = ObjectId()
    item_docs = []
    total = 0.0
    for line in lines:
        product = catalog.get_product(database, line["product_id"])
        item = _snapshot_item(order_id, product, line["size"], line["quantity"])
        item_docs.append(item)
        total += item["final_price"]

    order_doc = with_timestamps({
        "_id": order_id,
        "user_id": user_oid,
        "store_id": store_oid,
        "status": INITIAL_STATUS,
        "pickup": pickup,
        "total_price": pricing.round2(total),
    })

    with transaction(database) as session:
        try:
            database["orderitem"].insert_many(item_docs, session=session)
            database["order"].insert_one(order_doc, session=session)
        except PyMongoError:
            if session is None:
                database["orderitem"].delete_many({"order_id": order_id})
            logger.exception("Order %s could not be written, items rolled back", order_id)
            raise

    logger.info("Created order %s for user %s (%d items, total %.2f)",
                order_id, user_oid, len(item_docs), order_doc["total_price"])
    if events is not None:
        events.publish("order.created", {
            "id": str(order_id),
            "user_id": str(user_oid),
            "store_id": str(store_oid),
            "total_price": order_doc["total_price"],
        })
    return get_order(database, order_id)


# ---------------
# Status
# ---------------

def allowed_next(status: str) -> frozenset:
    return STATUS_TRANSITIONS.get(status, frozenset())


def set_status(database, order_id, new_status, events: Optional[EventSink] = None) -> dict:
    if _is_missing(new_status):
        raise MissingField("status")
    if new_status not in ORDER_STATUSES:
        raise InvalidStatus(new_status)

    order = find_order(database, order_id)
    current = order.get("status", INITIAL_STATUS)
    if new_status not in allowed_next(current):
        logger.warning("Order %s: rejected transition %s -> %s", order["_id"], current, new_status)
        raise InvalidTransition(current, new_status)

    res = database["order"].update_one(
        {"_id": order["_id"], "status": current},
        {"$set": {"status": new_status, "updated_at": utcnow()}},
    )
    if res.matched_count == 0:
        if database["order"].find_one({"_id": order["_id"]}) is None:
            raise OrderNotFound()
        raise ConflictError("Order status changed concurrently, please retry")

    logger.info("Order %s status %s -> %s", order["_id"], current, new_status)
    if events is not None:
        events.publish("order.status_changed", {"id": str(order["_id"]), "from": current, "to": new_status})
    return get_order(database, order["_id"])


# ---------------
# Retrieval
# ---------------

def find_order(database, order_id) -> dict:
    order = database["order"].find_one({"_id": object_id(order_id, "id")})
    if not order:
        raise OrderNotFound()
    return order


def get_order(database, order_id) -> dict:
    return _populate(database, find_order(database, order_id))


def ensure_can_access(database, order_id, user: dict) -> dict:
    """Owner or admin only."""
    order = find_order(database, order_id)
    if not is_admin(user) and order.get("user_id") != user.get("_id"):
        raise ForbiddenError("You do not have access to this order")
    return order


def get_own_orders(database, user_id, status: Optional[str] = None, store_id: Optional[str] = None,
                   page: int = 1, limit: int = 10) -> dict:
    filter_dict: Dict[str, Any] = {"user_id": object_id(user_id, "user_id")}
    if status:
        if status not in ORDER_STATUSES:
            raise InvalidStatus(status)
        filter_dict["status"] = status
    if store_id:
        filter_dict["store_id"] = object_id(store_id, "store_id")

    total = database["order"].count_documents(filter_dict)
    cursor = (
        database["order"].find(filter_dict)
        .sort([("created_at", -1), ("_id", -1)])
        .skip((page - 1) * limit)
        .limit(limit)
    )
    return {
        "page": page,
        "totalPages": math.ceil(total / limit),
        "totalOrders": total,
        "orders": [_populate(database, o, with_user=False) for o in cursor],
    }


def get_order_items(database, order_id) -> List[dict]:
    order = find_order(database, order_id)
    items = []
    for item in database["orderitem"].find({"order_id": order["_id"]}).sort("_id", 1):
        product = database["product"].find_one({"_id": item.get("product_id")})
        out = to_str_id(item)
        out["product"] = to_str_id(product)
        items.append(out)
    return items


# ---------------
# Deletion
# ---------------

def delete_order(database, order_id) -> None:
    oid = object_id(order_id, "id")
    with transaction(database) as session:
        res = database["order"].delete_one({"_id": oid}, session=session)
        if res.deleted_count == 0:
            raise OrderNotFound()
        removed = database["orderitem"].delete_many({"order_id": oid}, session=session)
    logger.info("Deleted order %s and %d items", oid, removed.deleted_count)
