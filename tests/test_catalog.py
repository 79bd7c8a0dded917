import pytest

import categories
import product_collections
import subcategories
from database import db
from errors import Conflict, NotFound
from schemas import CategoryCreate, CategoryUpdate, CollectionCreate, ProductImage, ProductVariant, SubcategoryCreate, SubcategoryUpdate


def test_category_names_are_unique(category):
    with pytest.raises(Conflict):
        categories.create_category(CategoryCreate(name="Clothing"))
    other = categories.create_category(CategoryCreate(name="Shoes"))
    with pytest.raises(Conflict):
        categories.update_category(other["id"], CategoryUpdate(name="Clothing"))


def test_find_categories_includes_summaries(category, make_product):
    category_id = str(category["_id"])
    subcategories.create_subcategory(SubcategoryCreate(name="Shirts", category_id=category_id))
    make_product(name="Tee")

    listing = categories.find_categories()

    assert listing[0]["subcategories"][0]["name"] == "Shirts"
    assert listing[0]["products"][0]["name"] == "Tee"


def test_delete_category_removes_everything_that_references_it(category, make_product, user):
    category_id = str(category["_id"])
    subcategories.create_subcategory(SubcategoryCreate(name="Shirts", category_id=category_id))
    product_ids = []
    for i in range(3):
        product = make_product(
            name=f"Item {i}",
            images=[ProductImage(url=f"/uploads/products/{i}.webp", is_main=True)],
            variants=[ProductVariant(color="Red", size="M", stock=1)],
        )
        product_ids.append(product["id"])
        db["cart_item"].insert_one({"user_id": str(user["_id"]), "product_id": product["id"], "quantity": 1})
        db["favorite"].insert_one({"user_id": str(user["_id"]), "product_id": product["id"]})
        db["order_item"].insert_one({"order_id": "o", "product_id": product["id"], "quantity": 1, "price": 1})
    db["sale"].insert_one({"name": "S", "product_ids": product_ids})

    categories.remove_category(category_id)

    selector = {"product_id": {"$in": product_ids}}
    for name in ("product_image", "product_variant", "cart_item", "favorite", "order_item"):
        assert db[name].count_documents(selector) == 0
    assert db["product"].count_documents({"category_id": category_id}) == 0
    assert db["subcategory"].count_documents({"category_id": category_id}) == 0
    assert db["category"].count_documents({}) == 0
    assert db["sale"].find_one({})["product_ids"] == []


def test_delete_unknown_category():
    with pytest.raises(NotFound):
        categories.remove_category("5f1d7f3e9b1e8a3d4c2b1a00")


def test_subcategory_rules(category, make_product):
    category_id = str(category["_id"])
    with pytest.raises(NotFound):
        subcategories.create_subcategory(SubcategoryCreate(name="X", category_id="5f1d7f3e9b1e8a3d4c2b1a00"))
    shirts = subcategories.create_subcategory(SubcategoryCreate(name="Shirts", category_id=category_id))
    with pytest.raises(Conflict):
        subcategories.create_subcategory(SubcategoryCreate(name="Shirts", category_id=category_id))
    with pytest.raises(NotFound):
        subcategories.update_subcategory(shirts["id"], SubcategoryUpdate(category_id="5f1d7f3e9b1e8a3d4c2b1a00"))

    make_product(subcategory_id=shirts["id"])
    with pytest.raises(Conflict):
        subcategories.remove_subcategory(shirts["id"])
    assert [s["name"] for s in subcategories.find_by_category(category_id)] == ["Shirts"]


def test_collections(make_product):
    summer = product_collections.create_collection(CollectionCreate(name="Summer"))
    with pytest.raises(Conflict):
        product_collections.create_collection(CollectionCreate(name="Summer"))
    make_product(collection_id=summer["id"], images=[ProductImage(url="/s.webp", is_main=True)])

    found = product_collections.find_collection(summer["id"])

    assert found["products"][0]["main_image"]["url"] == "/s.webp"
    product_collections.remove_collection(summer["id"])
    assert db["product"].find_one({})["collection_id"] is None


def test_catalog_reads_are_public(client, category):
    assert client.get("/api/categories").status_code == 200
    assert client.get(f"/api/categories/{category['_id']}").json()["name"] == "Clothing"
    assert client.get("/api/collections").status_code == 200
    assert client.delete(f"/api/categories/{category['_id']}").status_code == 401


def test_null_patches_are_rejected(client, admin_headers, category):
    sub = subcategories.create_subcategory(SubcategoryCreate(name="Shirts", category_id=str(category["_id"])))

    assert client.patch(f"/api/categories/{category['_id']}", json={"name": None}, headers=admin_headers).status_code == 422
    assert client.patch(f"/api/subcategories/{sub['id']}", json={"category_id": None}, headers=admin_headers).status_code == 422
    assert db["category"].find_one({})["name"] == "Clothing"
    assert db["subcategory"].find_one({})["category_id"] == str(category["_id"])

    cleared = client.patch(f"/api/categories/{category['_id']}", json={"description": None}, headers=admin_headers)
    assert cleared.status_code == 200
