from datetime import timedelta

import pytest

import sales
from database import db, utcnow
from errors import BadRequest, NotFound
from schemas import SaleCreate, SaleUpdate


def _sale(product_id, **fields):
    now = utcnow()
    data = {
        "name": "Sale",
        "discount_type": "percentage",
        "discount_value": 10,
        "start_date": now - timedelta(days=1),
        "end_date": now + timedelta(days=1),
        "product_ids": [product_id],
    }
    data.update(fields)
    return sales.create_sale(SaleCreate(**data))


def test_no_sales_means_no_discount(make_product):
    product = make_product()
    assert sales.calculate_discount(product["id"]) == {"discount": 0, "sale_id": None}


def test_minimum_order_skips_sale(make_product):
    product = make_product()
    _sale(product["id"], name="Big spender", discount_value=20, minimum_order=100)
    second = _sale(product["id"], name="Everyone", discount_value=10)

    result = sales.calculate_discount(product["id"], order_amount=50)

    assert result == {"discount": 10, "sale_id": second["id"]}


def test_minimum_order_ignored_without_amount(make_product):
    product = make_product()
    first = _sale(product["id"], discount_value=20, minimum_order=100)
    _sale(product["id"], discount_value=10)

    assert sales.calculate_discount(product["id"])["sale_id"] == first["id"]


def test_fixed_discount_converted_to_percent_and_clamped(make_product):
    product = make_product(price=50.0)
    sale = _sale(product["id"], discount_type="fixed", discount_value=10)
    assert sales.calculate_discount(product["id"]) == {"discount": 20, "sale_id": sale["id"]}

    db["sale"].update_one({}, {"$set": {"maximum_discount": 15}})
    assert sales.calculate_discount(product["id"])["discount"] == 15


def test_fixed_discount_on_free_product_is_zero(make_product):
    product = make_product(price=0)
    _sale(product["id"], discount_type="fixed", discount_value=10)
    assert sales.calculate_discount(product["id"]) == {"discount": 0, "sale_id": None}


def test_first_sale_wins_ties(make_product):
    product = make_product()
    first = _sale(product["id"], name="A")
    _sale(product["id"], name="B")
    assert sales.calculate_discount(product["id"])["sale_id"] == first["id"]


def test_expired_and_inactive_sales_are_ignored(make_product):
    product = make_product()
    now = utcnow()
    _sale(product["id"], start_date=now - timedelta(days=3), end_date=now - timedelta(days=1))
    _sale(product["id"], is_active=False)
    _sale(product["id"], start_date=now + timedelta(days=1), end_date=now + timedelta(days=2))
    assert sales.calculate_discount(product["id"])["discount"] == 0
    assert sales.find_active() == []


def test_create_rejects_bad_window(make_product):
    product = make_product()
    now = utcnow()
    with pytest.raises(BadRequest):
        _sale(product["id"], start_date=now, end_date=now)


def test_create_rejects_unknown_product():
    with pytest.raises(NotFound):
        _sale("5f1d7f3e9b1e8a3d4c2b1a00")


def test_update_replaces_products(make_product):
    first, second = make_product(name="One"), make_product(name="Two")
    sale = _sale(first["id"])

    updated = sales.update_sale(sale["id"], SaleUpdate(product_ids=[second["id"]]))

    assert [p["id"] for p in updated["products"]] == [second["id"]]
    assert sales.calculate_discount(first["id"])["discount"] == 0


def test_discount_endpoint_is_public(client, make_product):
    product = make_product()
    sale = _sale(product["id"], discount_value=15)

    response = client.get(f"/api/sales/discount/{product['id']}", params={"order_amount": 30})

    assert response.status_code == 200
    assert response.json() == {"discount": 15, "sale_id": sale["id"]}


def test_patch_rejects_null_discount_value(client, admin_headers, make_product):
    product = make_product()
    sale = _sale(product["id"], discount_value=15)

    response = client.patch(f"/api/sales/{sale['id']}", json={"discount_value": None}, headers=admin_headers)

    assert response.status_code == 422
    assert sales.calculate_discount(product["id"]) == {"discount": 15, "sale_id": sale["id"]}


def test_update_schema_allows_clearing_minimum_order():
    assert SaleUpdate(minimum_order=None).model_dump(exclude_unset=True) == {"minimum_order": None}
    with pytest.raises(ValueError):
        SaleUpdate(end_date=None)
