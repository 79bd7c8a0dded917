import logging

from fastapi import APIRouter
from pymongo.errors import PyMongoError

from cache import CATEGORIES_TTL, CATEGORY_TTL, categories_key, category_key, get_cache
from database import create_document, db, object_id, serialize, transaction, utcnow
from errors import Conflict, NotFound
from products import delete_products_cascade, invalidate_product_cache, product_card
from schemas import CategoryCreate, CategoryUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/categories", tags=["categories"])


def get_category_doc(category_id: str) -> dict:
    category = db["category"].find_one({"_id": object_id(category_id, "Category")})
    if not category:
        raise NotFound("Category not found")
    return category


def _invalidate(category_id=None):
    cache = get_cache()
    cache.delete(categories_key())
    if category_id:
        cache.delete(category_key(category_id))


def _check_name(name: str, exclude=None):
    query = {"name": name}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    if db["category"].find_one(query):
        raise Conflict("Category with this name already exists")


def create_category(data: CategoryCreate) -> dict:
    _check_name(data.name)
    category_id = create_document("category", data)
    _invalidate()
    return find_category(category_id)


def find_categories() -> list:
    cache = get_cache()
    cached = cache.get(categories_key())
    if cached is not None:
        return cached

    categories = []
    for doc in db["category"].find({}).sort("name", 1):
        category = serialize(doc)
        category["subcategories"] = [
            {"id": str(s["_id"]), "name": s["name"]}
            for s in db["subcategory"].find({"category_id": category["id"]}).sort("name", 1)
        ]
        category["products"] = [
            {"id": str(p["_id"]), "name": p["name"], "price": p.get("price")}
            for p in db["product"].find({"category_id": category["id"]}, {"name": 1, "price": 1})
        ]
        categories.append(category)

    cache.set(categories_key(), categories, CATEGORIES_TTL)
    return categories


def find_category(category_id: str) -> dict:
    cache = get_cache()
    cached = cache.get(category_key(category_id))
    if cached is not None:
        return cached

    category = serialize(get_category_doc(category_id))
    category["subcategories"] = [serialize(s) for s in db["subcategory"].find({"category_id": category_id}).sort("name", 1)]
    category["products"] = [product_card(p) for p in db["product"].find({"category_id": category_id})]

    cache.set(category_key(category_id), category, CATEGORY_TTL)
    return category


def update_category(category_id: str, data: CategoryUpdate) -> dict:
    category = get_category_doc(category_id)
    fields = data.model_dump(exclude_unset=True)
    if fields.get("name"):
        _check_name(fields["name"], exclude=category["_id"])
    fields["updated_at"] = utcnow()
    db["category"].update_one({"_id": category["_id"]}, {"$set": fields})
    _invalidate(category_id)
    return find_category(category_id)


def remove_category(category_id: str) -> dict:
    category = get_category_doc(category_id)
    product_ids = [str(p["_id"]) for p in db["product"].find({"category_id": category_id}, {"_id": 1})]
    try:
        with transaction() as tx:
            delete_products_cascade(tx, product_ids)
            tx.delete_many("subcategory", {"category_id": category_id})
            tx.delete_one("category", {"_id": category["_id"]})
    except PyMongoError as e:
        logger.error("Failed to delete category %s: %s", category_id, e)
        raise Conflict("Cannot delete category: it still has related data that could not be removed")

    logger.info("Category deleted: %s (%d products)", category_id, len(product_ids))
    _invalidate(category_id)
    invalidate_product_cache()
    return {"message": "Category deleted successfully"}


@router.get("")
def list_categories():
    return find_categories()


@router.post("", status_code=201)
def post_category(data: CategoryCreate):
    return create_category(data)


@router.get("/{category_id}")
def get_category(category_id: str):
    return find_category(category_id)


@router.patch("/{category_id}")
def patch_category(category_id: str, data: CategoryUpdate):
    return update_category(category_id, data)


@router.delete("/{category_id}")
def delete_category(category_id: str):
    return remove_category(category_id)
