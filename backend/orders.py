"""
Order placement and status transitions.

Stock is only ever changed through conditional ``$inc`` updates, so a
product's stock cannot drop below zero even with concurrent checkouts.
MongoDB multi-document transactions need a replica set, so instead a failed
placement restores whatever stock it had already taken before re-raising.
"""
import logging
from typing import Dict, List, Optional

from fastapi import HTTPException
from pymongo import ReturnDocument

from database import create_document, now_utc, serialize_doc, to_object_id
from schemas import ActivityLog, Order, OrderCreate, OrderItem, ORDER_STATUSES

logger = logging.getLogger(__name__)


def log_activity(db, kind: str, user: dict, **details) -> str:
    entry = ActivityLog(type=kind, user_id=user.get("id"), user_email=user.get("email", ""), details=details)
    return create_document(db, "activity_log", entry)


def _restock(db, lines: List[Dict]):
    for line in lines:
        db["product"].update_one(
            {"_id": to_object_id(line["product_id"], "Product")},
            {"$inc": {"stock": line["quantity"]}, "$set": {"updated_at": now_utc()}},
        )


def _take_stock(db, product_id: str, quantity: int) -> bool:
    res = db["product"].find_one_and_update(
        {"_id": to_object_id(product_id, "Product"), "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
    )
    return res is not None


def _merge_lines(body: OrderCreate) -> List[Dict]:
    merged: Dict[str, int] = {}
    for line in body.items:
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return [{"product_id": pid, "quantity": qty} for pid, qty in merged.items()]


def place_order(db, user: dict, body: OrderCreate) -> dict:
    lines = _merge_lines(body)

    # name/price come from the product row now, not from the client cart
    for line in lines:
        product = db["product"].find_one({"_id": to_object_id(line["product_id"], "Product")})
        if not product:
            raise HTTPException(status_code=404, detail="Product not found")
        if line["quantity"] > product.get("stock", 0):
            raise HTTPException(status_code=400, detail=f"Insufficient stock for {product['name']}")
        line["name"] = product["name"]
        line["price"] = float(product["price"])

    total = round(sum(line["price"] * line["quantity"] for line in lines), 2)
    if body.total is not None and abs(body.total - total) > 0.01:
        raise HTTPException(status_code=400, detail="Order total does not match current prices")

    taken: List[Dict] = []
    order_id = None
    try:
        for line in lines:
            if not _take_stock(db, line["product_id"], line["quantity"]):
                raise HTTPException(status_code=400, detail=f"Insufficient stock for {line['name']}")
            taken.append(line)

        order = Order(
            user_id=user["id"],
            user_email=user["email"],
            total=total,
            shipping_address=body.shipping_address,
        )
        order_id = create_document(db, "order", order)
        db["order_item"].insert_many([
            OrderItem(order_id=order_id, **line).model_dump() for line in lines
        ])
    except Exception:
        logger.warning("Order placement for %s failed, restoring %d stock lines", user["email"], len(taken))
        if order_id is not None:
            db["order_item"].delete_many({"order_id": order_id})
            db["order"].delete_one({"_id": to_object_id(order_id, "Order")})
        _restock(db, taken)
        raise

    log_activity(db, "order_created", user, orderId=order_id, totalAmount=total, itemCount=len(lines))
    db["cart_item"].delete_many({"user_id": user["id"]})
    logger.info("Order %s placed by %s for %.2f", order_id, user["email"], total)
    return get_order(db, order_id)


def attach_items(db, orders: List[dict]) -> List[dict]:
    ids = [o["id"] for o in orders]
    by_order: Dict[str, List[dict]] = {oid: [] for oid in ids}
    for item in db["order_item"].find({"order_id": {"$in": ids}}):
        by_order[item["order_id"]].append(serialize_doc(item))
    for o in orders:
        o["items"] = by_order.get(o["id"], [])
    return orders


def get_order(db, order_id: str) -> dict:
    doc = db["order"].find_one({"_id": to_object_id(order_id, "Order")})
    if not doc:
        raise HTTPException(status_code=404, detail="Order not found")
    return attach_items(db, [serialize_doc(doc)])[0]


def list_orders(db, filter_dict: Optional[dict] = None) -> List[dict]:
    docs = db["order"].find(filter_dict or {}).sort([("created_at", -1), ("_id", -1)])
    return attach_items(db, [serialize_doc(d) for d in docs])


def update_order_status(db, order_id: str, new_status: str, admin: dict) -> dict:
    if new_status not in ORDER_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status: {new_status}")
    oid = to_object_id(order_id, "Order")
    current = db["order"].find_one({"_id": oid})
    if not current:
        raise HTTPException(status_code=404, detail="Order not found")

    stamp = {"status": new_status, "updated_at": now_utc(), "updated_by": admin["id"]}
    if new_status == "cancelled":
        # only the request that flips a live order to cancelled restocks
        previous = db["order"].find_one_and_update(
            {"_id": oid, "status": {"$ne": "cancelled"}},
            {"$set": stamp},
            return_document=ReturnDocument.BEFORE,
        )
        if previous is not None:
            _restock(db, list(db["order_item"].find({"order_id": order_id})))
            previous_status = previous["status"]
        else:
            previous_status = "cancelled"
    else:
        previous = db["order"].find_one_and_update(
            {"_id": oid}, {"$set": stamp}, return_document=ReturnDocument.BEFORE
        )
        previous_status = previous["status"] if previous else current["status"]

    log_activity(db, "order_status_updated", admin, orderId=order_id, previousStatus=previous_status, newStatus=new_status)
    logger.info("Order %s: %s -> %s by %s", order_id, previous_status, new_status, admin["email"])
    return get_order(db, order_id)
