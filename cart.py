from fastapi import APIRouter, Depends

from database import db, object_id, serialize, utcnow
from errors import BadRequest, NotFound
from pricing import price_summary
from products import available_stock, get_product_doc, match_variant, product_card
from schemas import CartItemCreate, CartItemUpdate
from security import current_user

router = APIRouter(prefix="/cart", tags=["cart"])


def _check_product(product: dict):
    if not product.get("is_active", True):
        raise BadRequest("Product is not available")


def _check_stock(product: dict, variant, quantity: int):
    stock = available_stock(product, variant)
    if stock < quantity:
        raise BadRequest(f"Insufficient stock. Available: {stock}")


def _unit_price(product: dict, variant) -> float:
    if product.get("is_on_sale") and product.get("sale_price") is not None:
        return product["sale_price"]
    if variant is not None and variant.get("price") is not None:
        return variant["price"]
    return product.get("price", 0)


def _get_item(user_id: str, item_id: str) -> dict:
    item = db["cart_item"].find_one({"_id": object_id(item_id, "Cart item"), "user_id": user_id})
    if not item:
        raise NotFound("Cart item not found")
    return item


def add_item(user_id: str, data: CartItemCreate) -> dict:
    product = get_product_doc(data.product_id)
    _check_product(product)
    variant = match_variant(product, data.color, data.size)
    _check_stock(product, variant, data.quantity)

    color = variant["color"] if variant else data.color
    size = variant["size"] if variant else data.size
    key = {"user_id": user_id, "product_id": data.product_id, "color": color, "size": size}
    existing = db["cart_item"].find_one(key)
    if existing:
        quantity = existing["quantity"] + data.quantity
        _check_stock(product, variant, quantity)
        db["cart_item"].update_one({"_id": existing["_id"]}, {"$set": {"quantity": quantity, "updated_at": utcnow()}})
        item_id = existing["_id"]
    else:
        now = utcnow()
        item_id = db["cart_item"].insert_one({**key, "quantity": data.quantity, "created_at": now, "updated_at": now}).inserted_id
    return _item_view(db["cart_item"].find_one({"_id": item_id}))


def _item_view(item: dict, product: dict = None) -> dict:
    view = serialize(item)
    product = product or db["product"].find_one({"_id": object_id(item["product_id"], "Product")})
    card = product_card(product)
    category = db["category"].find_one({"_id": object_id(product["category_id"], "Category")}, {"name": 1})
    card["category"] = serialize(category)
    view["product"] = card
    return view


def find_by_user(user_id: str) -> dict:
    items, lines = [], []
    for item in db["cart_item"].find({"user_id": user_id}).sort("created_at", -1):
        product = db["product"].find_one({"_id": object_id(item["product_id"], "Product")})
        if product is None:
            continue
        variant = None
        if item.get("color") and item.get("size"):
            variant = db["product_variant"].find_one({"product_id": item["product_id"], "color": item["color"], "size": item["size"]})
        view = _item_view(item, product)
        view["unit_price"] = _unit_price(product, variant)
        items.append(view)
        lines.append((view["unit_price"], item["quantity"]))
    return {"items": items, "summary": price_summary(lines)}


def update_item(user_id: str, item_id: str, quantity: int) -> dict:
    item = _get_item(user_id, item_id)
    product = get_product_doc(item["product_id"])
    variant = match_variant(product, item.get("color"), item.get("size"))
    _check_stock(product, variant, quantity)
    db["cart_item"].update_one({"_id": item["_id"]}, {"$set": {"quantity": quantity, "updated_at": utcnow()}})
    return _item_view(db["cart_item"].find_one({"_id": item["_id"]}), product)


def remove_item(user_id: str, item_id: str) -> dict:
    item = _get_item(user_id, item_id)
    db["cart_item"].delete_one({"_id": item["_id"]})
    return {"message": "Item removed from cart"}


def clear_cart(user_id: str) -> dict:
    db["cart_item"].delete_many({"user_id": user_id})
    return {"message": "Cart cleared successfully"}


def get_cart_count(user_id: str) -> dict:
    count = sum(item["quantity"] for item in db["cart_item"].find({"user_id": user_id}, {"quantity": 1}))
    return {"count": count}


@router.get("")
def get_cart(user: dict = Depends(current_user)):
    return find_by_user(user["id"])


@router.get("/count")
def count_cart_items(user: dict = Depends(current_user)):
    return get_cart_count(user["id"])


@router.post("/items", status_code=201)
def post_cart_item(data: CartItemCreate, user: dict = Depends(current_user)):
    return add_item(user["id"], data)


@router.patch("/items/{item_id}")
def patch_cart_item(item_id: str, data: CartItemUpdate, user: dict = Depends(current_user)):
    return update_item(user["id"], item_id, data.quantity)


@router.delete("/items/{item_id}")
def delete_cart_item(item_id: str, user: dict = Depends(current_user)):
    return remove_item(user["id"], item_id)


@router.delete("/clear")
def delete_cart(user: dict = Depends(current_user)):
    return clear_cart(user["id"])
