"""
Order placement

Orders are stored in the "order" collection with their line items embedded.
Each line item snapshots the product name and unit price at order time, and
the order total is always computed here from the live catalog, never taken
from the client.

Direct checkout (place_order) decrements stock when the order is created.
Gateway checkout (create_pending_order) leaves stock untouched; the decrement
happens when the payment webhook confirms the order (see payments.py).
"""
import logging
from collections import OrderedDict
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from bson import ObjectId

from database import create_document, serialize, to_object_id, transaction
from errors import InsufficientStock, InvalidStatusTransition, NotFound, ProductNotFound
from schemas import CartItem, OrderCreate, OrderStatus, UserRole

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")

# Admin-driven moves. PENDING is never re-entered.
STATUS_TRANSITIONS = {
    OrderStatus.pending: {OrderStatus.paid, OrderStatus.shipped, OrderStatus.cancelled},
    OrderStatus.paid: {OrderStatus.shipped},
}


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def format_order_number(order_id: str) -> str:
    if not order_id or len(order_id) < 8:
        return f"GL-{order_id}"
    return f"GL-{order_id[-8:].upper()}"


def _merge_items(items: List[CartItem]) -> "OrderedDict[str, int]":
    merged = OrderedDict()
    for item in items:
        merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity
    return merged


def validate_cart(db, items: List[CartItem], session=None):
    """Check a cart against the live catalog.

    Returns ``(lines, total)`` where each line holds the product id, its name,
    the requested quantity and the current unit price. Raises ProductNotFound or
    InsufficientStock without touching any stock.
    """
    requested = _merge_items(items)
    oids = [to_object_id(pid) for pid in requested]
    if any(oid is None for oid in oids):
        raise ProductNotFound()

    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": oids}}, session=session)}
    if len(products) != len(requested):
        raise ProductNotFound()

    lines = []
    total = Decimal("0")
    for product_id, quantity in requested.items():
        product = products[product_id]
        if product.get("stock", 0) < quantity:
            raise InsufficientStock()
        unit_price = money(product["price"])
        total += unit_price * quantity
        lines.append({
            "id": str(ObjectId()),
            "product_id": product_id,
            "product_name": product["name"],
            "quantity": quantity,
            "unit_price": float(unit_price),
        })
    return lines, money(total)


def _restore_stock(db, taken: List[tuple], session=None) -> None:
    for oid, quantity in taken:
        db["product"].update_one({"_id": oid}, {"$inc": {"stock": quantity}}, session=session)


def _reserve_stock(db, lines: List[dict], session=None) -> None:
    """Decrement stock line by line, guarded so no product can go below zero.

    Inside a transaction a failed guard aborts everything; without one, the
    decrements already applied are put back before raising.
    """
    taken = []
    for line in lines:
        oid = to_object_id(line["product_id"])
        result = db["product"].update_one(
            {"_id": oid, "stock": {"$gte": line["quantity"]}},
            {"$inc": {"stock": -line["quantity"]}, "$set": {"updated_at": datetime.now(timezone.utc)}},
            session=session,
        )
        if result.modified_count != 1:
            if session is None:
                _restore_stock(db, taken)
            raise InsufficientStock()
        taken.append((oid, line["quantity"]))


def _order_document(payload: OrderCreate, user: Optional[dict], lines: List[dict], total: Decimal) -> dict:
    return {
        "status": OrderStatus.pending.value,
        "total": float(total),
        "customer_name": payload.customer_name,
        "customer_email": str(payload.customer_email),
        "customer_phone": payload.customer_phone,
        "shipping_address": payload.shipping_address,
        "shipping_city": payload.shipping_city,
        "user_id": str(user["_id"]) if user else None,
        "items": lines,
    }


def place_order(db, payload: OrderCreate, user: Optional[dict] = None) -> dict:
    """Validate the cart, take the stock and persist the order in one unit of work."""
    with transaction(db) as session:
        lines, total = validate_cart(db, payload.items, session=session)
        _reserve_stock(db, lines, session=session)
        try:
            order_id = create_document(db, "order", _order_document(payload, user, lines, total), session=session)
        except Exception:
            if session is None:
                _restore_stock(db, [(to_object_id(line["product_id"]), line["quantity"]) for line in lines])
            raise
    logger.info("Order %s placed (%d items, total %s)", order_id, len(lines), total)
    return get_order(db, order_id)


def create_pending_order(db, payload: OrderCreate, user: Optional[dict] = None) -> dict:
    """Persist a PENDING order without touching stock (gateway checkout)."""
    with transaction(db) as session:
        lines, total = validate_cart(db, payload.items, session=session)
        order_id = create_document(db, "order", _order_document(payload, user, lines, total), session=session)
    return get_order(db, order_id)


def get_order(db, order_id: str) -> dict:
    oid = to_object_id(order_id)
    doc = db["order"].find_one({"_id": oid}) if oid else None
    if not doc:
        raise NotFound("Orden no encontrada")
    return serialize(doc)


def list_orders(db, user: dict, page: int = 1, page_size: int = 20) -> dict:
    page = max(1, page)
    page_size = max(1, page_size)
    query = {}
    if user.get("role") != UserRole.admin.value:
        query["user_id"] = str(user["_id"])
    cursor = db["order"].find(query).sort([("created_at", -1), ("_id", -1)]).skip((page - 1) * page_size).limit(page_size)
    return {
        "items": [serialize(o) for o in cursor],
        "total": db["order"].count_documents(query),
        "page": page,
        "pageSize": page_size,
    }


def update_status(db, order_id: str, status: OrderStatus) -> dict:
    oid = to_object_id(order_id)
    current = db["order"].find_one({"_id": oid}, {"status": 1}) if oid else None
    if not current:
        raise NotFound("Orden no encontrada")
    if status not in STATUS_TRANSITIONS.get(OrderStatus(current["status"]), set()):
        raise InvalidStatusTransition(f"No se puede pasar de {current['status']} a {status.value}")
    result = db["order"].update_one(
        {"_id": oid, "status": current["status"]},
        {"$set": {"status": status.value, "updated_at": datetime.now(timezone.utc)}},
    )
    if result.modified_count == 0:
        raise InvalidStatusTransition("La orden cambió de estado mientras se actualizaba")
    return get_order(db, order_id)
