from datetime import timedelta

from fastapi import APIRouter

import jobs
from database import db, object_id, serialize, utcnow
from products import main_image
from schemas import OrderStatus, Role

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

RECENT_LIMIT = 5


def _start_of_day(now):
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _recent_products() -> list:
    products = []
    for doc in db["product"].find({"is_active": True}, {"name": 1, "created_at": 1}).sort("created_at", -1).limit(RECENT_LIMIT):
        product = serialize(doc)
        image = main_image(product["id"])
        product["main_image"] = image["url"] if image else None
        products.append(product)
    return products


def _recent_orders() -> list:
    orders = []
    cursor = db["order"].find({}, {"total": 1, "status": 1, "created_at": 1, "user_id": 1}).sort("created_at", -1).limit(RECENT_LIMIT)
    for doc in cursor:
        order = serialize(doc)
        user = db["user"].find_one({"_id": object_id(doc["user_id"], "User")}, {"first_name": 1, "last_name": 1})
        order["user"] = {"first_name": user.get("first_name"), "last_name": user.get("last_name")} if user else None
        orders.append(order)
    return orders


def _recent_users() -> list:
    cursor = db["user"].find({"role": Role.USER.value}, {"first_name": 1, "last_name": 1, "email": 1, "created_at": 1})
    return [serialize(u) for u in cursor.sort("created_at", -1).limit(RECENT_LIMIT)]


def statistics() -> dict:
    today = _start_of_day(utcnow())
    return {
        "statistics": {
            "total_products": db["product"].count_documents({"is_active": True}),
            "total_categories": db["category"].count_documents({"is_active": True}),
            "total_collections": db["collection"].count_documents({"is_active": True}),
            "total_users": db["user"].count_documents({"role": Role.USER.value}),
            "total_orders": db["order"].count_documents({}),
            "active_sales": db["product"].count_documents({"is_active": True, "is_on_sale": True}),
            "today_orders": db["order"].count_documents({"created_at": {"$gte": today}}),
        },
        "recent_activity": {
            "products": _recent_products(),
            "orders": _recent_orders(),
            "users": _recent_users(),
        },
    }


def _revenue_since(since=None) -> float:
    match = {"status": {"$ne": OrderStatus.CANCELLED.value}}
    if since is not None:
        match["created_at"] = {"$gte": since}
    result = list(db["order"].aggregate([
        {"$match": match},
        {"$group": {"_id": None, "total": {"$sum": "$total"}}},
    ]))
    return result[0]["total"] if result else 0


def revenue() -> dict:
    now = utcnow()
    today = _start_of_day(now)
    return {
        "total_revenue": _revenue_since(),
        "monthly_revenue": _revenue_since(today.replace(day=1)),
        "weekly_revenue": _revenue_since(now - timedelta(days=7)),
        "today_revenue": _revenue_since(today),
    }


@router.get("/statistics")
def get_statistics():
    return statistics()


@router.get("/revenue")
def get_revenue():
    return revenue()


@router.get("/queue")
def get_queue_status():
    return jobs.queue.status()


@router.post("/reports", status_code=202)
def request_report(report_type: str = "sales"):
    job_id = jobs.queue.add_job("generate-report", {"report_type": report_type, "requested_at": utcnow().isoformat()})
    return {"job_id": job_id}
