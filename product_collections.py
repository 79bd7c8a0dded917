from fastapi import APIRouter

from database import create_document, db, object_id, serialize, utcnow
from errors import Conflict, NotFound
from products import invalidate_product_cache, product_card
from schemas import CollectionCreate, CollectionUpdate

router = APIRouter(prefix="/collections", tags=["collections"])


def get_collection_doc(collection_id: str) -> dict:
    collection = db["collection"].find_one({"_id": object_id(collection_id, "Collection")})
    if not collection:
        raise NotFound("Collection not found")
    return collection


def _check_name(name: str, exclude=None):
    query = {"name": name}
    if exclude is not None:
        query["_id"] = {"$ne": exclude}
    if db["collection"].find_one(query):
        raise Conflict("Collection with this name already exists")


def create_collection(data: CollectionCreate) -> dict:
    _check_name(data.name)
    return find_collection(create_document("collection", data))


def find_collections() -> list:
    collections = []
    for doc in db["collection"].find({}).sort("name", 1):
        collection = serialize(doc)
        collection["product_count"] = db["product"].count_documents({"collection_id": collection["id"]})
        collections.append(collection)
    return collections


def find_collection(collection_id: str) -> dict:
    collection = serialize(get_collection_doc(collection_id))
    collection["products"] = [product_card(p) for p in db["product"].find({"collection_id": collection_id})]
    return collection


def update_collection(collection_id: str, data: CollectionUpdate) -> dict:
    collection = get_collection_doc(collection_id)
    fields = data.model_dump(exclude_unset=True)
    if fields.get("name"):
        _check_name(fields["name"], exclude=collection["_id"])
    fields["updated_at"] = utcnow()
    db["collection"].update_one({"_id": collection["_id"]}, {"$set": fields})
    return find_collection(collection_id)


def remove_collection(collection_id: str) -> dict:
    collection = get_collection_doc(collection_id)
    # products stay in the catalog, just without a collection
    db["product"].update_many({"collection_id": collection_id}, {"$set": {"collection_id": None}})
    db["collection"].delete_one({"_id": collection["_id"]})
    invalidate_product_cache()
    return {"message": "Collection deleted successfully"}


@router.get("")
def list_collections():
    return find_collections()


@router.post("", status_code=201)
def post_collection(data: CollectionCreate):
    return create_collection(data)


@router.get("/{collection_id}")
def get_collection(collection_id: str):
    return find_collection(collection_id)


@router.patch("/{collection_id}")
def patch_collection(collection_id: str, data: CollectionUpdate):
    return update_collection(collection_id, data)


@router.delete("/{collection_id}")
def delete_collection(collection_id: str):
    return remove_collection(collection_id)
