from datetime import timedelta

import dashboard
from database import db, utcnow


def _order(user, total, status="PENDING", days_ago=0):
    db["order"].insert_one({
        "user_id": str(user["_id"]),
        "total": total,
        "status": status,
        "created_at": utcnow() - timedelta(days=days_ago),
    })


def test_statistics(user, admin, make_product):
    make_product(name="On sale", is_on_sale=True, sale_price=5)
    make_product(name="Hidden", is_active=False)
    _order(user, 10)

    stats = dashboard.statistics()

    assert stats["statistics"]["total_products"] == 1
    assert stats["statistics"]["total_categories"] == 1
    assert stats["statistics"]["total_users"] == 1
    assert stats["statistics"]["total_orders"] == 1
    assert stats["statistics"]["active_sales"] == 1
    assert stats["statistics"]["today_orders"] == 1
    assert stats["recent_activity"]["orders"][0]["user"]["first_name"] == "Test"
    assert [u["email"] for u in stats["recent_activity"]["users"]] == [user["email"]]


def test_revenue_skips_cancelled_orders(user):
    _order(user, 100)
    _order(user, 50, status="CANCELLED")
    _order(user, 30, days_ago=3)
    _order(user, 20, days_ago=400)

    revenue = dashboard.revenue()

    assert revenue["total_revenue"] == 150
    assert revenue["weekly_revenue"] == 130
    assert revenue["today_revenue"] == 100


def test_dashboard_is_admin_only(client, user_headers, admin_headers):
    assert client.get("/api/dashboard/revenue", headers=user_headers).status_code == 403
    assert client.get("/api/dashboard/queue", headers=admin_headers).json()["processing"] is False
    assert client.post("/api/dashboard/reports", headers=admin_headers).status_code == 202


def test_root_and_health(client):
    assert client.get("/").status_code == 200
    assert client.get("/test").json()["connection_status"] == "Connected"
