from fastapi import APIRouter

from cache import categories_key, category_key, get_cache
from categories import get_category_doc
from database import create_document, db, object_id, serialize, utcnow
from errors import Conflict, NotFound
from products import product_card
from schemas import SubcategoryCreate, SubcategoryUpdate

router = APIRouter(prefix="/subcategories", tags=["subcategories"])


def get_subcategory_doc(subcategory_id: str) -> dict:
    subcategory = db["subcategory"].find_one({"_id": object_id(subcategory_id, "Subcategory")})
    if not subcategory:
        raise NotFound("Subcategory not found")
    return subcategory


def _invalidate(*category_ids):
    cache = get_cache()
    cache.delete(categories_key())
    for category_id in category_ids:
        cache.delete(category_key(category_id))


def _check_name(name: str, category_id: str, exclude=None):
    query = {"name": name, "category_id": category_id}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    if db["subcategory"].find_one(query):
        raise Conflict("Subcategory with this name already exists in this category")


def _with_category(doc: dict) -> dict:
    subcategory = serialize(doc)
    category = db["category"].find_one({"_id": object_id(doc["category_id"], "Category")}, {"name": 1})
    subcategory["category"] = serialize(category)
    return subcategory


def create_subcategory(data: SubcategoryCreate) -> dict:
    get_category_doc(data.category_id)
    _check_name(data.name, data.category_id)
    subcategory_id = create_document("subcategory", data)
    _invalidate(data.category_id)
    return find_subcategory(subcategory_id)


def find_subcategories() -> list:
    return [_with_category(s) for s in db["subcategory"].find({}).sort("name", 1)]


def find_by_category(category_id: str) -> list:
    get_category_doc(category_id)
    return [serialize(s) for s in db["subcategory"].find({"category_id": category_id}).sort("name", 1)]


def find_subcategory(subcategory_id: str) -> dict:
    subcategory = _with_category(get_subcategory_doc(subcategory_id))
    subcategory["products"] = [product_card(p) for p in db["product"].find({"subcategory_id": subcategory_id})]
    return subcategory


def update_subcategory(subcategory_id: str, data: SubcategoryUpdate) -> dict:
    subcategory = get_subcategory_doc(subcategory_id)
    fields = data.model_dump(exclude_unset=True)
    category_id = fields.get("category_id") or subcategory["category_id"]
    if fields.get("category_id"):
        get_category_doc(fields["category_id"])
    if fields.get("name") or fields.get("category_id"):
        _check_name(fields.get("name") or subcategory["name"], category_id, exclude=subcategory["_id"])
    fields["updated_at"] = utcnow()
    db["subcategory"].update_one({"_id": subcategory["_id"]}, {"$set": fields})
    _invalidate(subcategory["category_id"], category_id)
    return find_subcategory(subcategory_id)


def remove_subcategory(subcategory_id: str) -> dict:
    subcategory = get_subcategory_doc(subcategory_id)
    in_use = db["product"].count_documents({"subcategory_id": subcategory_id})
    if in_use:
        raise Conflict(f"Cannot delete subcategory: {in_use} product(s) still reference it")
    db["subcategory"].delete_one({"_id": subcategory["_id"]})
    _invalidate(subcategory["category_id"])
    return {"message": "Subcategory deleted successfully"}


@router.get("")
def list_subcategories():
    return find_subcategories()


@router.post("", status_code=201)
def post_subcategory(data: SubcategoryCreate):
    return create_subcategory(data)


@router.get("/category/{category_id}")
def list_subcategories_by_category(category_id: str):
    return find_by_category(category_id)


@router.get("/{subcategory_id}")
def get_subcategory(subcategory_id: str):
    return find_subcategory(subcategory_id)


@router.patch("/{subcategory_id}")
def patch_subcategory(subcategory_id: str, data: SubcategoryUpdate):
    return update_subcategory(subcategory_id, data)


@router.delete("/{subcategory_id}")
def delete_subcategory(subcategory_id: str):
    return remove_subcategory(subcategory_id)
