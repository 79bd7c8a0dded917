"""
Authentication and role-based access.

Access is decided in one place: ACCESS_RULES maps (method, path pattern) to
the access level a request needs, and AuthorizationMiddleware enforces it
before routing. Handlers only read the caller through ``current_user``.
"""
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from jose import JWTError, jwt
from passlib.context import CryptContext
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

import config
from database import db, object_id, serialize
from errors import NotFound, Unauthorized
from schemas import Role

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

PUBLIC = "public"
AUTHENTICATED = "authenticated"
ADMIN = "admin"

# First match wins. "{name}" matches one path segment, "/**" any suffix.
ACCESS_RULES: List[Tuple[str, str, str]] = [
    ("POST", "/api/auth/register", PUBLIC),
    ("POST", "/api/auth/login", PUBLIC),
    ("GET", "/api/products/**", PUBLIC),
    ("GET", "/api/categories/**", PUBLIC),
    ("GET", "/api/subcategories/**", PUBLIC),
    ("GET", "/api/collections/**", PUBLIC),
    ("GET", "/api/sales/**", PUBLIC),
    ("*", "/api/products/**", ADMIN),
    ("*", "/api/categories/**", ADMIN),
    ("*", "/api/subcategories/**", ADMIN),
    ("*", "/api/collections/**", ADMIN),
    ("*", "/api/sales/**", ADMIN),
    ("GET", "/api/orders", ADMIN),
    ("PATCH", "/api/orders/{id}/status", ADMIN),
    ("PATCH", "/api/orders/{id}/payment-status", ADMIN),
    ("GET", "/api/users/{id}", AUTHENTICATED),
    ("PATCH", "/api/users/{id}", AUTHENTICATED),
    ("*", "/api/users/**", ADMIN),
    ("*", "/api/upload/**", ADMIN),
    ("*", "/api/dashboard/**", ADMIN),
    ("POST", "/api/seed", ADMIN),
    ("*", "/api/**", AUTHENTICATED),
]


def _compile(pattern: str) -> re.Pattern:
    regex = re.escape(pattern)
    regex = regex.replace(r"/\*\*", r"(?:/.*)?")
    regex = re.sub(r"\\\{[^/]+?\\\}", r"[^/]+", regex)
    return re.compile(f"^{regex}$")


_COMPILED_RULES = [(method, _compile(pattern), access) for method, pattern, access in ACCESS_RULES]


def required_access(method: str, path: str) -> str:
    path = path.rstrip("/") or "/"
    for rule_method, regex, access in _COMPILED_RULES:
        if rule_method in ("*", method.upper()) and regex.match(path):
            return access
    return PUBLIC


# Passwords & tokens

def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def token_for_user(user: dict) -> str:
    return create_access_token({"sub": str(user["_id"]), "role": user.get("role", Role.USER.value)})


def decode_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise Unauthorized()
    user_id = payload.get("sub")
    if user_id is None:
        raise Unauthorized()
    return {"id": user_id, "role": payload.get("role", Role.USER.value)}


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def _load_active_user(claims: dict) -> Optional[dict]:
    try:
        user = db["user"].find_one({"_id": object_id(claims["id"], "User")})
    except NotFound:
        return None
    if not user or not user.get("is_active", True):
        return None
    return user


class AuthorizationMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request.state.user = None
        access = required_access(request.method, request.url.path)
        token = _bearer_token(request)

        if token:
            try:
                request.state.user = decode_access_token(token)
            except Unauthorized as e:
                if access != PUBLIC:
                    return JSONResponse({"detail": e.detail}, status_code=e.status_code, headers=e.headers)

        if access != PUBLIC and request.method != "OPTIONS":
            claims = request.state.user
            if claims is None:
                return JSONResponse({"detail": "Not authenticated"}, status_code=401, headers={"WWW-Authenticate": "Bearer"})
            # the stored account decides, not the role baked into the token
            user = await run_in_threadpool(_load_active_user, claims)
            if user is None:
                return JSONResponse({"detail": "Could not validate credentials"}, status_code=401, headers={"WWW-Authenticate": "Bearer"})
            claims["role"] = user.get("role", Role.USER.value)
            if access == ADMIN and claims["role"] != Role.ADMIN.value:
                logger.info("Denied %s %s to user %s", request.method, request.url.path, claims["id"])
                return JSONResponse({"detail": "Access denied"}, status_code=403)

        return await call_next(request)


def public_user(user: dict) -> dict:
    user = serialize(user)
    user.pop("password_hash", None)
    return user


def current_user(request: Request) -> dict:
    claims = getattr(request.state, "user", None)
    if not claims:
        raise Unauthorized()
    user = db["user"].find_one({"_id": object_id(claims["id"], "User")})
    if not user or not user.get("is_active", True):
        raise Unauthorized()
    return public_user(user)


def is_admin(user: dict) -> bool:
    return user.get("role") == Role.ADMIN.value
