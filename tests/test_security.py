import pytest

from security import ADMIN, AUTHENTICATED, PUBLIC, create_access_token, decode_access_token, required_access
from database import db
from errors import Unauthorized


@pytest.mark.parametrize("method,path,expected", [
    ("POST", "/api/auth/login", PUBLIC),
    ("GET", "/api/products", PUBLIC),
    ("GET", "/api/products/abc/images/red", PUBLIC),
    ("POST", "/api/products", ADMIN),
    ("DELETE", "/api/categories/abc", ADMIN),
    ("GET", "/api/orders", ADMIN),
    ("GET", "/api/orders/my-orders", AUTHENTICATED),
    ("POST", "/api/orders", AUTHENTICATED),
    ("PATCH", "/api/orders/abc/status", ADMIN),
    ("POST", "/api/orders/abc/cancel", AUTHENTICATED),
    ("GET", "/api/users", ADMIN),
    ("GET", "/api/users/abc", AUTHENTICATED),
    ("DELETE", "/api/users/abc", ADMIN),
    ("POST", "/api/upload/single", ADMIN),
    ("GET", "/api/dashboard/statistics", ADMIN),
    ("GET", "/api/cart/", AUTHENTICATED),
    ("GET", "/", PUBLIC),
    ("GET", "/uploads/products/x.webp", PUBLIC),
])
def test_access_table(method, path, expected):
    assert required_access(method, path) == expected


def test_token_round_trip():
    token = create_access_token({"sub": "abc", "role": "ADMIN"})
    assert decode_access_token(token) == {"id": "abc", "role": "ADMIN"}


def test_tampered_token_is_rejected():
    token = create_access_token({"sub": "abc"})
    with pytest.raises(Unauthorized):
        decode_access_token(token[:-2] + "xx")


def test_register_login_me(client):
    payload = {"email": "new@example.com", "password": "secret123", "first_name": "New", "last_name": "Person", "role": "ADMIN"}
    registered = client.post("/api/auth/register", json=payload)
    assert registered.status_code == 201
    assert registered.json()["role"] == "USER"
    assert "password_hash" not in registered.json()
    assert client.post("/api/auth/register", json=payload).status_code == 409

    assert client.post("/api/auth/login", data={"username": "new@example.com", "password": "wrong"}).status_code == 400
    token = client.post("/api/auth/login", data={"username": "new@example.com", "password": "secret123"}).json()["access_token"]

    me = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert me.json()["email"] == "new@example.com"
    assert client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_users_can_only_read_themselves(client, user, admin, user_headers, admin_headers):
    assert client.get(f"/api/users/{user['_id']}", headers=user_headers).status_code == 200
    assert client.get(f"/api/users/{admin['_id']}", headers=user_headers).status_code == 403
    assert client.get(f"/api/users/{user['_id']}", headers=admin_headers).status_code == 200
    assert client.get("/api/users", headers=user_headers).status_code == 403


def test_user_cannot_promote_themselves(client, user, user_headers):
    response = client.patch(f"/api/users/{user['_id']}", json={"role": "ADMIN", "phone": "555"}, headers=user_headers)
    assert response.status_code == 200
    assert response.json()["role"] == "USER"
    assert response.json()["phone"] == "555"


def test_admin_manages_users(client, admin_headers):
    created = client.post(
        "/api/users",
        json={"email": "staff@example.com", "password": "secret123", "first_name": "S", "last_name": "T"},
        headers=admin_headers,
    )
    assert created.status_code == 201
    user_id = created.json()["id"]
    assert client.patch(f"/api/users/{user_id}", json={"is_active": False}, headers=admin_headers).json()["is_active"] is False
    assert client.delete(f"/api/users/{user_id}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/users/{user_id}", headers=admin_headers).status_code == 404


def test_deleted_admin_token_loses_access(client, admin, admin_headers, category):
    db["user"].delete_one({"_id": admin["_id"]})
    response = client.delete(f"/api/categories/{category['_id']}", headers=admin_headers)
    assert response.status_code == 401
    assert db["category"].count_documents({}) == 1


def test_demoted_admin_token_loses_admin_routes(client, admin, admin_headers, category):
    db["user"].update_one({"_id": admin["_id"]}, {"$set": {"role": "USER"}})
    assert client.delete(f"/api/categories/{category['_id']}", headers=admin_headers).status_code == 403
    assert client.get("/api/cart", headers=admin_headers).status_code == 200


def test_deactivated_user_is_rejected(client, user, user_headers):
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"is_active": False}})
    assert client.get("/api/cart", headers=user_headers).status_code == 401


def test_user_patch_rejects_null_names(client, user, user_headers):
    response = client.patch(f"/api/users/{user['_id']}", json={"first_name": None}, headers=user_headers)
    assert response.status_code == 422
    assert db["user"].find_one({"_id": user["_id"]})["first_name"] == "Test"
