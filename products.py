"""
Products: catalog CRUD, images, variants and the shared product helpers.

Images and variants live in their own collections (product_image,
product_variant) keyed by ``product_id``. Cart and order code reuse
``match_variant`` and ``available_stock`` so both apply the same rules.
"""
import logging
import random
import re
import string
import time
from typing import List, Optional

from fastapi import APIRouter, Depends

from cache import PRODUCT_TTL, PRODUCTS_TTL, categories_key, get_cache, product_key, products_key
from database import Transaction, db, object_id, serialize, transaction, utcnow
from errors import BadRequest, Conflict, NotFound
from schemas import ProductCreate, ProductFilters, ProductImage, ProductUpdate, ProductVariant

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/products", tags=["products"])


# Helpers shared with cart, orders, categories, sales and dashboard

def generate_sku() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=5))
    return f"PROD-{int(time.time() * 1000)}-{suffix}"


def get_product_doc(product_id: str) -> dict:
    product = db["product"].find_one({"_id": object_id(product_id, "Product")})
    if not product:
        raise NotFound("Product not found")
    return product


def main_image(product_id: str) -> Optional[dict]:
    images = db["product_image"]
    image = images.find_one({"product_id": product_id, "is_main": True})
    if image is None:
        image = next(iter(images.find({"product_id": product_id}).sort("order", 1).limit(1)), None)
    return serialize(image)


def product_card(product: dict) -> dict:
    """Short product projection used inside carts, orders, sales and listings."""
    card = serialize(product)
    card["main_image"] = main_image(card["id"])
    return card


def match_variant(product: dict, color: Optional[str], size: Optional[str]) -> Optional[dict]:
    """The variant matching color/size, or None when the product has no variants."""
    variants = list(db["product_variant"].find({"product_id": str(product["_id"])}))
    if not variants:
        return None
    if not color or not size:
        raise BadRequest("Color and size are required for this product")
    color, size = color.strip().lower(), size.strip().lower()
    for variant in variants:
        if variant["color"].strip().lower() == color and variant["size"].strip().lower() == size:
            return variant
    raise BadRequest("Product variant not found")


def available_stock(product: dict, variant: Optional[dict]) -> int:
    if variant is not None:
        return variant.get("stock", 0)
    return product.get("stock", 0)


def invalidate_product_cache(product_id: Optional[str] = None):
    cache = get_cache()
    if product_id:
        cache.delete(product_key(product_id))
    cache.delete_prefix("products:")
    # category pages embed product summaries
    cache.delete_prefix("category:")
    cache.delete(categories_key())


def delete_products_cascade(tx: Transaction, product_ids: List[str]):
    """Remove products and every row that points at them."""
    if not product_ids:
        return
    selector = {"product_id": {"$in": product_ids}}
    for name in ("product_image", "product_variant", "cart_item", "favorite", "order_item"):
        tx.delete_many(name, selector)
    tx.pull_all("sale", {"product_ids": {"$in": product_ids}}, "product_ids", product_ids)
    tx.delete_many("product", {"_id": {"$in": [object_id(pid, "Product") for pid in product_ids]}})


def _check_references(category_id=None, subcategory_id=None, collection_id=None):
    checks = (("category", category_id, "Category"), ("subcategory", subcategory_id, "Subcategory"), ("collection", collection_id, "Collection"))
    for name, ref_id, label in checks:
        if ref_id is not None and not db[name].find_one({"_id": object_id(ref_id, label)}):
            raise NotFound(f"{label} not found")


def _image_doc(product_id: str, image: dict, index: int) -> dict:
    return {
        "product_id": product_id,
        "url": image["url"],
        "color": image.get("color"),
        "is_main": bool(image.get("is_main")),
        "order": image["order"] if image.get("order") is not None else index,
        "created_at": utcnow(),
    }


def _image_docs(product_id: str, images: List[dict], start: int = 0) -> List[dict]:
    docs = [_image_doc(product_id, img, start + i) for i, img in enumerate(images)]
    # at most one main image per batch, the first flagged one
    main_seen = False
    for doc in docs:
        if doc["is_main"] and main_seen:
            doc["is_main"] = False
        main_seen = main_seen or doc["is_main"]
    return docs


def _variant_doc(product_id: str, product_sku: str, variant: dict) -> dict:
    sku = variant.get("sku") or f"{product_sku}-{variant['color']}-{variant['size']}".upper().replace(" ", "")
    return {
        "product_id": product_id,
        "color": variant["color"],
        "size": variant["size"],
        "stock": variant.get("stock", 0),
        "price": variant.get("price"),
        "sku": sku,
        "created_at": utcnow(),
    }


def _check_variant_skus(skus: List[str]):
    if len(set(skus)) != len(skus):
        raise Conflict("Duplicate variant SKU")
    if skus and db["product_variant"].find_one({"sku": {"$in": skus}}):
        raise Conflict("Variant with this SKU already exists")


# Service

def create_product(data: ProductCreate) -> dict:
    payload = data.model_dump()
    images = payload.pop("images")
    variants = payload.pop("variants")
    _check_references(payload["category_id"], payload.get("subcategory_id"), payload.get("collection_id"))

    payload["sku"] = payload.get("sku") or generate_sku()
    if db["product"].find_one({"sku": payload["sku"]}):
        raise Conflict("Product with this SKU already exists")

    now = utcnow()
    payload["created_at"] = now
    payload["updated_at"] = now
    with transaction() as tx:
        product_id = str(tx.insert_one("product", payload))
        variant_docs = [_variant_doc(product_id, payload["sku"], v) for v in variants]
        _check_variant_skus([v["sku"] for v in variant_docs])
        tx.insert_many("product_image", _image_docs(product_id, images))
        tx.insert_many("product_variant", variant_docs)

    logger.info("Product created: %s (%s)", product_id, payload["sku"])
    invalidate_product_cache()
    return find_product(product_id)


def _product_query(filters: ProductFilters) -> dict:
    query = {}
    for field in ("category_id", "subcategory_id", "collection_id", "is_active", "is_featured", "is_on_sale"):
        value = getattr(filters, field)
        if value is not None:
            query[field] = value
    if filters.min_price is not None or filters.max_price is not None:
        price_filter = {}
        if filters.min_price is not None:
            price_filter["$gte"] = filters.min_price
        if filters.max_price is not None:
            price_filter["$lte"] = filters.max_price
        query["price"] = price_filter
    if filters.search:
        pattern = re.escape(filters.search)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]
    return query


def find_products(filters: ProductFilters) -> dict:
    cache = get_cache()
    key = products_key(filters.model_dump())
    cached = cache.get(key)
    if cached is not None:
        return cached

    query = _product_query(filters)
    direction = 1 if filters.sort_order == "asc" else -1
    cursor = db["product"].find(query).sort([(filters.sort_by or "created_at", direction), ("_id", direction)])
    total = db["product"].count_documents(query)
    cursor = cursor.skip((filters.page - 1) * filters.limit).limit(filters.limit)

    items = []
    for doc in cursor:
        card = product_card(doc)
        category = db["category"].find_one({"_id": object_id(doc["category_id"], "Category")}, {"name": 1})
        card["category"] = serialize(category)
        items.append(card)

    result = {"items": items, "page": filters.page, "limit": filters.limit, "total": total}
    cache.set(key, result, PRODUCTS_TTL)
    return result


def _find_ref(name: str, ref_id: Optional[str]) -> Optional[dict]:
    if not ref_id:
        return None
    return serialize(db[name].find_one({"_id": object_id(ref_id, name.capitalize())}))


def find_product(product_id: str) -> dict:
    cache = get_cache()
    cached = cache.get(product_key(product_id))
    if cached is not None:
        return cached

    product = serialize(get_product_doc(product_id))
    product["category"] = _find_ref("category", product.get("category_id"))
    product["subcategory"] = _find_ref("subcategory", product.get("subcategory_id"))
    product["collection"] = _find_ref("collection", product.get("collection_id"))
    product["images"] = [serialize(i) for i in db["product_image"].find({"product_id": product_id}).sort("order", 1)]
    product["variants"] = [serialize(v) for v in db["product_variant"].find({"product_id": product_id})]

    cache.set(product_key(product_id), product, PRODUCT_TTL)
    return product


def get_images_by_color(product_id: str, color: str) -> List[dict]:
    get_product_doc(product_id)
    images = list(db["product_image"].find({"product_id": product_id}).sort("order", 1))
    wanted = color.strip().lower()
    matching = [i for i in images if (i.get("color") or "").strip().lower() == wanted]
    if not matching:
        matching = [i for i in images if i.get("is_main")]
    return [serialize(i) for i in matching]


def get_available_colors(product_id: str) -> List[str]:
    get_product_doc(product_id)
    colors, seen = [], set()
    sources = (db["product_variant"].find({"product_id": product_id}), db["product_image"].find({"product_id": product_id}).sort("order", 1))
    for cursor in sources:
        for doc in cursor:
            color = (doc.get("color") or "").strip()
            if color and color.lower() not in seen:
                seen.add(color.lower())
                colors.append(color)
    return colors


def update_product(product_id: str, data: ProductUpdate) -> dict:
    product = get_product_doc(product_id)
    fields = data.model_dump(exclude_unset=True)
    _check_references(fields.get("category_id"), fields.get("subcategory_id"), fields.get("collection_id"))
    if fields.get("sku") and db["product"].find_one({"sku": fields["sku"], "_id": {"$ne": product["_id"]}}):
        raise Conflict("Product with this SKU already exists")
    if "sku" in fields and not fields["sku"]:
        fields.pop("sku")

    fields["updated_at"] = utcnow()
    db["product"].update_one({"_id": product["_id"]}, {"$set": fields})
    invalidate_product_cache(product_id)
    return find_product(product_id)


def remove_product(product_id: str) -> dict:
    get_product_doc(product_id)
    with transaction() as tx:
        delete_products_cascade(tx, [product_id])
    logger.info("Product deleted: %s", product_id)
    invalidate_product_cache(product_id)
    return {"message": "Product deleted successfully"}


def add_image(product_id: str, image: ProductImage) -> dict:
    return add_multiple_images(product_id, [image])[0]


def add_multiple_images(product_id: str, images: List[ProductImage]) -> List[dict]:
    get_product_doc(product_id)
    start = db["product_image"].count_documents({"product_id": product_id})
    docs = _image_docs(product_id, [img.model_dump() for img in images], start)
    if not docs:
        return []
    if any(d["is_main"] for d in docs):
        db["product_image"].update_many({"product_id": product_id}, {"$set": {"is_main": False}})
    db["product_image"].insert_many(docs)
    invalidate_product_cache(product_id)
    return [serialize(d) for d in docs]


def remove_image(product_id: str, image_id: str) -> dict:
    result = db["product_image"].delete_one({"_id": object_id(image_id, "Image"), "product_id": product_id})
    if not result.deleted_count:
        raise NotFound("Image not found for this product")
    invalidate_product_cache(product_id)
    return {"message": "Image deleted successfully"}


def add_variant(product_id: str, variant: ProductVariant) -> dict:
    product = get_product_doc(product_id)
    doc = _variant_doc(product_id, product["sku"], variant.model_dump())
    _check_variant_skus([doc["sku"]])
    db["product_variant"].insert_one(doc)
    invalidate_product_cache(product_id)
    return serialize(doc)


def remove_variant(product_id: str, variant_id: str) -> dict:
    result = db["product_variant"].delete_one({"_id": object_id(variant_id, "Variant"), "product_id": product_id})
    if not result.deleted_count:
        raise NotFound("Variant not found for this product")
    invalidate_product_cache(product_id)
    return {"message": "Variant deleted successfully"}


# Endpoints

@router.get("")
def list_products(filters: ProductFilters = Depends()):
    return find_products(filters)


@router.post("", status_code=201)
def post_product(data: ProductCreate):
    return create_product(data)


@router.get("/{product_id}")
def get_product(product_id: str):
    return find_product(product_id)


@router.get("/{product_id}/colors")
def get_product_colors(product_id: str):
    return get_available_colors(product_id)


@router.get("/{product_id}/images/{color}")
def get_product_images_by_color(product_id: str, color: str):
    return get_images_by_color(product_id, color)


@router.patch("/{product_id}")
def patch_product(product_id: str, data: ProductUpdate):
    return update_product(product_id, data)


@router.delete("/{product_id}")
def delete_product(product_id: str):
    return remove_product(product_id)


@router.post("/{product_id}/images", status_code=201)
def post_product_image(product_id: str, image: ProductImage):
    return add_image(product_id, image)


@router.post("/{product_id}/images/multiple", status_code=201)
def post_product_images(product_id: str, images: List[ProductImage]):
    return add_multiple_images(product_id, images)


@router.delete("/{product_id}/images/{image_id}")
def delete_product_image(product_id: str, image_id: str):
    return remove_image(product_id, image_id)


@router.post("/{product_id}/variants", status_code=201)
def post_product_variant(product_id: str, variant: ProductVariant):
    return add_variant(product_id, variant)


@router.delete("/{product_id}/variants/{variant_id}")
def delete_product_variant(product_id: str, variant_id: str):
    return remove_variant(product_id, variant_id)
