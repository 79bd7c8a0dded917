from fastapi import APIRouter, Depends

from database import db, object_id, serialize, utcnow
from errors import Conflict, NotFound
from products import get_product_doc, product_card
from schemas import FavoriteCreate
from security import current_user

router = APIRouter(prefix="/favorites", tags=["favorites"])


def _view(favorite: dict) -> dict:
    view = serialize(favorite)
    product = db["product"].find_one({"_id": object_id(favorite["product_id"], "Product")})
    view["product"] = product_card(product) if product else None
    return view


def create_favorite(user_id: str, product_id: str) -> dict:
    get_product_doc(product_id)
    if db["favorite"].find_one({"user_id": user_id, "product_id": product_id}):
        raise Conflict("Product is already in favorites")
    doc = {"user_id": user_id, "product_id": product_id, "created_at": utcnow()}
    db["favorite"].insert_one(doc)
    return _view(doc)


def find_by_user(user_id: str) -> list:
    return [_view(f) for f in db["favorite"].find({"user_id": user_id}).sort("created_at", -1)]


def find_favorite(user_id: str, product_id: str) -> dict:
    favorite = db["favorite"].find_one({"user_id": user_id, "product_id": product_id})
    if not favorite:
        raise NotFound("Favorite not found")
    return _view(favorite)


def is_favorite(user_id: str, product_id: str) -> bool:
    return db["favorite"].count_documents({"user_id": user_id, "product_id": product_id}) > 0


def remove_favorite(user_id: str, product_id: str) -> dict:
    if not db["favorite"].delete_one({"user_id": user_id, "product_id": product_id}).deleted_count:
        raise NotFound("Favorite not found")
    return {"message": "Removed from favorites"}


def remove_by_id(user_id: str, favorite_id: str) -> dict:
    result = db["favorite"].delete_one({"_id": object_id(favorite_id, "Favorite"), "user_id": user_id})
    if not result.deleted_count:
        raise NotFound("Favorite not found")
    return {"message": "Removed from favorites"}


@router.post("", status_code=201)
def post_favorite(data: FavoriteCreate, user: dict = Depends(current_user)):
    return create_favorite(user["id"], data.product_id)


@router.get("")
def list_favorites(user: dict = Depends(current_user)):
    return find_by_user(user["id"])


@router.get("/check/{product_id}")
def check_favorite(product_id: str, user: dict = Depends(current_user)):
    return {"is_favorite": is_favorite(user["id"], product_id)}


@router.get("/product/{product_id}")
def get_favorite(product_id: str, user: dict = Depends(current_user)):
    return find_favorite(user["id"], product_id)


@router.delete("/product/{product_id}")
def delete_favorite_by_product(product_id: str, user: dict = Depends(current_user)):
    return remove_favorite(user["id"], product_id)


@router.delete("/{favorite_id}")
def delete_favorite(favorite_id: str, user: dict = Depends(current_user)):
    return remove_by_id(user["id"], favorite_id)
