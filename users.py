import logging
from typing import List

from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm

from database import db, object_id, utcnow
from errors import BadRequest, Conflict, Forbidden, NotFound
from schemas import Role, Token, UserCreate, UserOut, UserUpdate
from security import current_user, get_password_hash, is_admin, public_user, token_for_user, verify_password

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/auth", tags=["auth"])
router = APIRouter(prefix="/users", tags=["users"])


def get_user_doc(user_id: str) -> dict:
    user = db["user"].find_one({"_id": object_id(user_id, "User")})
    if not user:
        raise NotFound("User not found")
    return user


def create_user(data: UserCreate) -> dict:
    if db["user"].find_one({"email": data.email}):
        raise Conflict("Email already registered")
    doc = data.model_dump()
    doc["password_hash"] = get_password_hash(doc.pop("password"))
    doc["is_active"] = True
    now = utcnow()
    doc["created_at"] = now
    doc["updated_at"] = now
    db["user"].insert_one(doc)
    logger.info("User created: %s (%s)", doc["_id"], doc["role"])
    return public_user(doc)


def authenticate(email: str, password: str) -> dict:
    user = db["user"].find_one({"email": email})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise BadRequest("Incorrect email or password")
    if not user.get("is_active", True):
        raise BadRequest("Account is disabled")
    return user


def find_users() -> list:
    return [public_user(u) for u in db["user"].find({}).sort("created_at", -1)]


def update_user(user_id: str, data: UserUpdate) -> dict:
    user = get_user_doc(user_id)
    fields = data.model_dump(exclude_unset=True)
    if fields.get("email") and db["user"].find_one({"email": fields["email"], "_id": {"$ne": user["_id"]}}):
        raise Conflict("Email already registered")
    if "password" in fields:
        password = fields.pop("password")
        if password:
            fields["password_hash"] = get_password_hash(password)
    fields["updated_at"] = utcnow()
    db["user"].update_one({"_id": user["_id"]}, {"$set": fields})
    return public_user(get_user_doc(user_id))


def remove_user(user_id: str) -> dict:
    user = get_user_doc(user_id)
    db["user"].delete_one({"_id": user["_id"]})
    db["cart_item"].delete_many({"user_id": user_id})
    db["favorite"].delete_many({"user_id": user_id})
    logger.info("User deleted: %s", user_id)
    return {"message": "User deleted successfully"}


def _check_self_or_admin(user: dict, user_id: str):
    if user["id"] != user_id and not is_admin(user):
        raise Forbidden()


# Auth

@auth_router.post("/register", response_model=UserOut, status_code=201)
def register(data: UserCreate):
    # self-registration never grants admin
    data.role = Role.USER.value
    return create_user(data)


@auth_router.post("/login", response_model=Token)
def login(form_data: OAuth2PasswordRequestForm = Depends()):
    user = authenticate(form_data.username, form_data.password)
    return Token(access_token=token_for_user(user))


@auth_router.get("/me", response_model=UserOut)
def me(user: dict = Depends(current_user)):
    return user


# Users

@router.get("", response_model=List[UserOut])
def list_users():
    return find_users()


@router.post("", response_model=UserOut, status_code=201)
def post_user(data: UserCreate):
    return create_user(data)


@router.get("/{user_id}", response_model=UserOut)
def get_user(user_id: str, user: dict = Depends(current_user)):
    _check_self_or_admin(user, user_id)
    return public_user(get_user_doc(user_id))


@router.patch("/{user_id}", response_model=UserOut)
def patch_user(user_id: str, data: UserUpdate, user: dict = Depends(current_user)):
    _check_self_or_admin(user, user_id)
    if not is_admin(user):
        data = UserUpdate(**data.model_dump(exclude_unset=True, exclude={"role", "is_active"}))
    return update_user(user_id, data)


@router.delete("/{user_id}")
def delete_user(user_id: str):
    return remove_user(user_id)
