"""
Sales and discount lookup.

A sale applies to a product while it is active and ``start_date <= now <
end_date``. Discounts are always reported as a percentage; fixed-amount sales
are converted against the product's current price.
"""
import logging
from typing import Optional

from fastapi import APIRouter

from database import as_utc, db, object_id, serialize, utcnow
from errors import BadRequest, NotFound
from products import invalidate_product_cache, product_card
from schemas import SaleCreate, SaleUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sales", tags=["sales"])


def get_sale_doc(sale_id: str) -> dict:
    sale = db["sale"].find_one({"_id": object_id(sale_id, "Sale")})
    if not sale:
        raise NotFound("Sale not found")
    return sale


def _active_query(now=None) -> dict:
    now = now or utcnow()
    return {"is_active": True, "start_date": {"$lte": now}, "end_date": {"$gt": now}}


def _check_window(start_date, end_date):
    if as_utc(start_date) >= as_utc(end_date):
        raise BadRequest("End date must be after start date")


def _check_products(product_ids):
    for product_id in product_ids:
        if not db["product"].find_one({"_id": object_id(product_id, "Product")}, {"_id": 1}):
            raise NotFound(f"Product {product_id} not found")


def _view(sale: dict) -> dict:
    view = serialize(sale)
    products = db["product"].find({"_id": {"$in": [object_id(pid, "Product") for pid in sale.get("product_ids", [])]}})
    view["products"] = [product_card(p) for p in products]
    return view


def calculate_discount(product_id: str, order_amount: Optional[float] = None) -> dict:
    """Best percentage discount currently available for a product."""
    query = _active_query()
    query["product_ids"] = product_id
    sales = list(db["sale"].find(query).sort("_id", 1))
    if not sales:
        return {"discount": 0, "sale_id": None}

    product = db["product"].find_one({"_id": object_id(product_id, "Product")}, {"price": 1})
    price = product.get("price") if product else None

    best, best_sale_id = 0, None
    for sale in sales:
        minimum = sale.get("minimum_order")
        if order_amount is not None and minimum is not None and order_amount < minimum:
            continue
        if sale["discount_type"] == "percentage":
            discount = sale["discount_value"]
        else:
            discount = sale["discount_value"] / price * 100 if price else 0
        maximum = sale.get("maximum_discount")
        if maximum is not None:
            discount = min(discount, maximum)
        if discount > best:
            best, best_sale_id = discount, str(sale["_id"])

    return {"discount": best, "sale_id": best_sale_id}


def create_sale(data: SaleCreate) -> dict:
    _check_window(data.start_date, data.end_date)
    _check_products(data.product_ids)
    doc = data.model_dump()
    doc["start_date"] = as_utc(doc["start_date"])
    doc["end_date"] = as_utc(doc["end_date"])
    now = utcnow()
    doc["created_at"] = now
    doc["updated_at"] = now
    db["sale"].insert_one(doc)
    logger.info("Sale created: %s", doc["_id"])
    invalidate_product_cache()
    return _view(doc)


def find_sales() -> list:
    return [_view(s) for s in db["sale"].find({}).sort("created_at", -1)]


def find_active() -> list:
    return [_view(s) for s in db["sale"].find(_active_query()).sort("_id", 1)]


def find_sale(sale_id: str) -> dict:
    return _view(get_sale_doc(sale_id))


def update_sale(sale_id: str, data: SaleUpdate) -> dict:
    sale = get_sale_doc(sale_id)
    fields = data.model_dump(exclude_unset=True)
    for key in ("start_date", "end_date"):
        if fields.get(key) is not None:
            fields[key] = as_utc(fields[key])
    _check_window(fields.get("start_date") or sale["start_date"], fields.get("end_date") or sale["end_date"])
    if fields.get("product_ids") is not None:
        _check_products(fields["product_ids"])
    fields["updated_at"] = utcnow()
    db["sale"].update_one({"_id": sale["_id"]}, {"$set": fields})
    invalidate_product_cache()
    return find_sale(sale_id)


def remove_sale(sale_id: str) -> dict:
    sale = get_sale_doc(sale_id)
    db["sale"].delete_one({"_id": sale["_id"]})
    invalidate_product_cache()
    return {"message": "Sale deleted successfully"}


@router.get("")
def list_sales():
    return find_sales()


@router.get("/active")
def list_active_sales():
    return find_active()


@router.get("/discount/{product_id}")
def get_discount(product_id: str, order_amount: Optional[float] = None):
    return calculate_discount(product_id, order_amount)


@router.post("", status_code=201)
def post_sale(data: SaleCreate):
    return create_sale(data)


@router.get("/{sale_id}")
def get_sale(sale_id: str):
    return find_sale(sale_id)


@router.patch("/{sale_id}")
def patch_sale(sale_id: str, data: SaleUpdate):
    return update_sale(sale_id, data)


@router.delete("/{sale_id}")
def delete_sale(sale_id: str):
    return remove_sale(sale_id)
