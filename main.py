import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.staticfiles import StaticFiles

import cache
import config
import jobs
from database import db, ensure_indexes
from middleware import RateLimitMiddleware, SecurityHeadersMiddleware
from schemas import CategoryCreate, ProductCreate, ProductImage, ProductVariant
from security import AuthorizationMiddleware

import cart
import categories
import dashboard
import favorites
import images
import orders
import product_collections
import products
import sales
import subcategories
import users

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("storefront")

SLOW_REQUEST_SECONDS = 1.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_indexes()
    cache.configure_cache()
    jobs.queue.start()
    logger.info("Storefront API started")
    yield
    jobs.queue.stop()


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(AuthorizationMiddleware)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1024)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start
    level = logging.WARNING if duration > SLOW_REQUEST_SECONDS else logging.INFO
    logger.log(level, "%s %s %s %.1fms", request.method, request.url.path, response.status_code, duration * 1000)
    return response


api = APIRouter(prefix="/api")
api.include_router(users.auth_router)
api.include_router(users.router)
api.include_router(categories.router)
api.include_router(subcategories.router)
api.include_router(product_collections.router)
api.include_router(products.router)
api.include_router(cart.router)
api.include_router(favorites.router)
api.include_router(sales.router)
api.include_router(orders.router)
api.include_router(images.router)
api.include_router(dashboard.router)


@api.post("/seed")
def seed():
    """Fill an empty catalog with a couple of demo categories and products."""
    created = {"categories": 0, "products": 0}
    if db["category"].count_documents({}) == 0:
        for name in ("Clothing", "Accessories"):
            categories.create_category(CategoryCreate(name=name, description=f"{name} for every day"))
            created["categories"] += 1
    if db["product"].count_documents({}) == 0:
        clothing = db["category"].find_one({"name": "Clothing"}) or db["category"].find_one({})
        accessories = db["category"].find_one({"name": "Accessories"}) or clothing
        demo = [
            ProductCreate(
                name="Classic T-Shirt",
                description="Soft cotton tee.",
                price=19.99,
                category_id=str(clothing["_id"]),
                is_featured=True,
                images=[ProductImage(url="/uploads/products/tshirt-red.webp", color="Red", is_main=True)],
                variants=[
                    ProductVariant(color="Red", size="M", stock=25),
                    ProductVariant(color="Blue", size="L", stock=12),
                ],
            ),
            ProductCreate(
                name="Leather Belt",
                description="Full-grain leather belt.",
                price=35.0,
                stock=40,
                category_id=str(accessories["_id"]),
                is_on_sale=True,
                sale_price=29.0,
            ),
        ]
        for data in demo:
            products.create_product(data)
            created["products"] += 1
    return {"ok": True, "created": created}


app.include_router(api)

# Static uploads
app.mount("/uploads", StaticFiles(directory=images.get_image_store().upload_root), name="uploads")


@app.get("/")
def read_root():
    return {"message": "Storefront backend is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "cache": cache.get_cache().name,
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["database_url"] = "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set"
        response["database_name"] = "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set"
        collections = db.list_collection_names()
        response["collections"] = collections[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"⚠️ Connected but Error: {str(e)[:50]}"
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
