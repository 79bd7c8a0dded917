"""
Orders and the address book.

Placing an order and cancelling one are the two places where stock moves.
Both run inside ``transaction()`` and adjust stock with guarded ``$inc``
updates, so an order either lands completely (stock taken, items written, cart
rows gone) or not at all.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends

import jobs
from database import db, object_id, serialize, transaction, utcnow
from errors import BadRequest, Forbidden, NotFound
from pricing import price_summary, totals_match
from products import available_stock, get_product_doc, invalidate_product_cache, match_variant, product_card
from schemas import AddressCreate, OrderCancel, OrderCreate, OrderStatus, OrderStatusUpdate, OrderUpdate, PaymentStatus, PaymentStatusUpdate, Role
from security import current_user, is_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])

STATUS_FLOW = [OrderStatus.PENDING.value, OrderStatus.PROCESSING.value, OrderStatus.SHIPPED.value, OrderStatus.DELIVERED.value]
CANCELLABLE = [OrderStatus.PENDING.value, OrderStatus.PROCESSING.value]
LOW_STOCK_THRESHOLD = 5


def get_order_doc(order_id: str) -> dict:
    order = db["order"].find_one({"_id": object_id(order_id, "Order")})
    if not order:
        raise NotFound("Order not found")
    return order


def _check_access(order: dict, user_id: Optional[str], role: str):
    if role != Role.ADMIN.value and order["user_id"] != user_id:
        raise Forbidden("You do not have access to this order")


def _user_summary(user_id: str) -> Optional[dict]:
    user = db["user"].find_one({"_id": object_id(user_id, "User")}, {"email": 1, "first_name": 1, "last_name": 1})
    return serialize(user)


def _order_view(order: dict) -> dict:
    view = serialize(order)
    items = []
    for item in db["order_item"].find({"order_id": view["id"]}).sort("position", 1):
        item_view = serialize(item)
        product = db["product"].find_one({"_id": object_id(item["product_id"], "Product")})
        item_view["product"] = product_card(product) if product else None
        items.append(item_view)
    view["items"] = items
    view["user"] = _user_summary(order["user_id"])
    if order.get("address_id"):
        view["address"] = serialize(db["address"].find_one({"_id": object_id(order["address_id"], "Address")}))
    return view


def _resolve_address(tx, user_id: str, shipping_address: str) -> str:
    existing = db["address"].find_one({"user_id": user_id, "street": shipping_address})
    if existing:
        return str(existing["_id"])
    address = {
        "user_id": user_id,
        "street": shipping_address,
        "city": "",
        "state": "",
        "zip_code": "",
        "country": "",
        "is_default": False,
        "created_at": utcnow(),
    }
    return str(tx.insert_one("address", address))


def _item_doc(order_id: str, position: int, product: dict, variant: Optional[dict], item) -> dict:
    return {
        "order_id": order_id,
        "position": position,
        "product_id": item.product_id,
        "variant_id": str(variant["_id"]) if variant else None,
        "quantity": item.quantity,
        "price": item.price,
        "color": variant["color"] if variant else item.color,
        "size": variant["size"] if variant else item.size,
    }


def create_order(user_id: str, data: OrderCreate) -> dict:
    if not db["user"].find_one({"_id": object_id(user_id, "User")}, {"_id": 1}):
        raise NotFound("User not found")

    lines = []
    for item in data.items:
        product = get_product_doc(item.product_id)
        if not product.get("is_active", True):
            raise BadRequest(f"Product {product['name']} is not available")
        variant = match_variant(product, item.color, item.size)
        stock = available_stock(product, variant)
        if stock < item.quantity:
            raise BadRequest(f"Insufficient stock for {product['name']}. Available: {stock}")
        lines.append((product, variant, item))

    summary = price_summary((item.price, item.quantity) for item in data.items)
    if not totals_match(summary["total"], data.total_amount):
        raise BadRequest(f"Total amount mismatch. Expected: {summary['total']:.2f}, received: {data.total_amount:.2f}")

    notes = data.notes or f"Shipping Address: {data.shipping_address}\nPayment Method: {data.payment_method}"
    low_stock = []
    with transaction() as tx:
        address_id = _resolve_address(tx, user_id, data.shipping_address)

        for product, variant, item in lines:
            target, target_id = ("product_variant", variant["_id"]) if variant else ("product", product["_id"])
            if not tx.inc(target, {"_id": target_id, "stock": {"$gte": item.quantity}}, "stock", -item.quantity):
                raise BadRequest(f"Insufficient stock for {product['name']}")
            remaining = db[target].find_one({"_id": target_id}, {"stock": 1}, **tx.opts)["stock"]
            if remaining < LOW_STOCK_THRESHOLD:
                low_stock.append({"product_id": item.product_id, "variant_id": str(variant["_id"]) if variant else None, "stock": remaining})

        now = utcnow()
        order_id = str(tx.insert_one("order", {
            "user_id": user_id,
            "address_id": address_id,
            "shipping_address": data.shipping_address,
            "subtotal": summary["subtotal"],
            "shipping": summary["shipping"],
            "tax": summary["tax"],
            "total": summary["total"],
            "status": OrderStatus.PENDING.value,
            "payment_status": PaymentStatus.PENDING.value,
            "payment_method": data.payment_method,
            "notes": notes,
            "created_at": now,
            "updated_at": now,
        }))
        tx.insert_many("order_item", [_item_doc(order_id, i, *line) for i, line in enumerate(lines)])
        tx.delete_many("cart_item", {"user_id": user_id, "product_id": {"$in": [item.product_id for item in data.items]}})

    logger.info("Order placed: %s by user %s (total %.2f)", order_id, user_id, summary["total"])
    jobs.queue.add_job("order-confirmation", {"order_id": order_id, "user_id": user_id}, priority=1)
    for entry in low_stock:
        jobs.queue.add_job("low-stock", entry)
    for product_id in {item.product_id for item in data.items}:
        invalidate_product_cache(product_id)
    return find_one(order_id, user_id, Role.ADMIN.value)


def cancel_order(order_id: str, reason: str, acting_user_id: Optional[str], acting_role: str) -> dict:
    order = get_order_doc(order_id)
    _check_access(order, acting_user_id, acting_role)
    if order["status"] not in CANCELLABLE:
        raise BadRequest(f"Order cannot be cancelled in {order['status']} status")
    if not reason or not reason.strip():
        raise BadRequest("Cancellation reason is required")

    now = utcnow()
    note = f"Cancellation Reason: {reason.strip()}\nCancelled on: {now.isoformat()}"
    notes = f"{order['notes']}\n\n{note}" if order.get("notes") else note
    items = list(db["order_item"].find({"order_id": order_id}))

    with transaction() as tx:
        changed = tx.set_fields(
            "order",
            {"_id": order["_id"], "status": {"$in": CANCELLABLE}},
            {"status": OrderStatus.CANCELLED.value, "notes": notes, "updated_at": now},
        )
        if not changed:
            raise BadRequest("Order has already been cancelled or can no longer be cancelled")
        for item in items:
            if item.get("variant_id"):
                restored = tx.inc("product_variant", {"_id": object_id(item["variant_id"], "Variant")}, "stock", item["quantity"])
            else:
                restored = tx.inc("product", {"_id": object_id(item["product_id"], "Product")}, "stock", item["quantity"])
            if not restored:
                logger.warning("Stock not restored for order item %s: target no longer exists", item["_id"])

    logger.info("Order cancelled: %s (%s)", order_id, reason.strip())
    for product_id in {item["product_id"] for item in items}:
        invalidate_product_cache(product_id)
    return _order_view(get_order_doc(order_id))


def find_all(status: Optional[OrderStatus] = None) -> list:
    query = {"status": status.value} if status else {}
    return [_order_view(o) for o in db["order"].find(query).sort("created_at", -1)]


def find_by_user(user_id: str) -> list:
    return [_order_view(o) for o in db["order"].find({"user_id": user_id}).sort("created_at", -1)]


def find_one(order_id: str, user_id: Optional[str], role: str) -> dict:
    order = get_order_doc(order_id)
    _check_access(order, user_id, role)
    return _order_view(order)


def update_status(order_id: str, status: str) -> dict:
    order = get_order_doc(order_id)
    current = order["status"]
    if status == current:
        return _order_view(order)
    if status == OrderStatus.CANCELLED.value:
        return cancel_order(order_id, "Cancelled by administrator", None, Role.ADMIN.value)
    if current not in STATUS_FLOW[:-1]:
        raise BadRequest(f"Cannot change the status of a {current} order")
    if STATUS_FLOW.index(status) < STATUS_FLOW.index(current):
        raise BadRequest(f"Cannot move order from {current} back to {status}")

    result = db["order"].update_one({"_id": order["_id"], "status": current}, {"$set": {"status": status, "updated_at": utcnow()}})
    if not result.matched_count:
        raise BadRequest("Order status changed, please retry")
    logger.info("Order %s: %s -> %s", order_id, current, status)
    return _order_view(get_order_doc(order_id))


def update_payment_status(order_id: str, payment_status: str) -> dict:
    order = get_order_doc(order_id)
    db["order"].update_one({"_id": order["_id"]}, {"$set": {"payment_status": payment_status, "updated_at": utcnow()}})
    return _order_view(get_order_doc(order_id))


def update_order(order_id: str, notes: Optional[str], user_id: str, role: str) -> dict:
    order = get_order_doc(order_id)
    _check_access(order, user_id, role)
    if order["status"] not in CANCELLABLE:
        raise BadRequest(f"Order cannot be modified in {order['status']} status")
    db["order"].update_one({"_id": order["_id"]}, {"$set": {"notes": notes, "updated_at": utcnow()}})
    return _order_view(get_order_doc(order_id))


# Addresses

def create_address(user_id: str, data: AddressCreate) -> dict:
    doc = data.model_dump()
    doc["user_id"] = user_id
    doc["is_default"] = db["address"].count_documents({"user_id": user_id, "is_default": True}) == 0
    doc["created_at"] = utcnow()
    db["address"].insert_one(doc)
    return serialize(doc)


def find_user_addresses(user_id: str) -> list:
    cursor = db["address"].find({"user_id": user_id}).sort([("is_default", -1), ("created_at", -1)])
    return [serialize(a) for a in cursor]


def set_default_address(user_id: str, address_id: str) -> dict:
    address = db["address"].find_one({"_id": object_id(address_id, "Address"), "user_id": user_id})
    if not address:
        raise NotFound("Address not found")
    with transaction() as tx:
        tx.set_fields("address", {"user_id": user_id, "is_default": True}, {"is_default": False})
        tx.set_fields("address", {"_id": address["_id"]}, {"is_default": True})
    return serialize(db["address"].find_one({"_id": address["_id"]}))


# Endpoints

@router.post("", status_code=201)
def post_order(data: OrderCreate, user: dict = Depends(current_user)):
    user_id = data.user_id if data.user_id and is_admin(user) else user["id"]
    return create_order(user_id, data)


@router.get("")
def list_orders(status: Optional[OrderStatus] = None):
    return find_all(status)


@router.get("/my-orders")
def list_my_orders(user: dict = Depends(current_user)):
    return find_by_user(user["id"])


@router.post("/addresses", status_code=201)
def post_address(data: AddressCreate, user: dict = Depends(current_user)):
    return create_address(user["id"], data)


@router.get("/addresses/my-addresses")
def list_my_addresses(user: dict = Depends(current_user)):
    return find_user_addresses(user["id"])


@router.patch("/addresses/{address_id}/set-default")
def patch_default_address(address_id: str, user: dict = Depends(current_user)):
    return set_default_address(user["id"], address_id)


@router.get("/{order_id}")
def get_order(order_id: str, user: dict = Depends(current_user)):
    return find_one(order_id, user["id"], user["role"])


@router.patch("/{order_id}")
def patch_order(order_id: str, data: OrderUpdate, user: dict = Depends(current_user)):
    return update_order(order_id, data.notes, user["id"], user["role"])


@router.patch("/{order_id}/status")
def patch_order_status(order_id: str, data: OrderStatusUpdate):
    return update_status(order_id, data.status)


@router.patch("/{order_id}/payment-status")
def patch_payment_status(order_id: str, data: PaymentStatusUpdate):
    return update_payment_status(order_id, data.payment_status)


@router.post("/{order_id}/cancel")
def post_cancel_order(order_id: str, data: OrderCancel, user: dict = Depends(current_user)):
    return cancel_order(order_id, data.reason, user["id"], user["role"])
