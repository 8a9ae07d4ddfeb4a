import logging
import os
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from starlette.concurrency import run_in_threadpool

import admin
import auth
import cart
import catalog
import checkout as orders
from controller import PAGE_SIZE, CatalogController
from database import DATABASE_NAME, create_document, ensure_indexes, get_db, now
from errors import DataUnavailable, Forbidden, MarketError, NotFound
from payments import CardDetails, PaymentGateway, PaymentMethod, SimulatedGateway
from schemas import ConfigItem, NavItem, Product, ProductVersion, Review
from urlsync import decode, encode

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        ensure_indexes(get_db())
    except DataUnavailable:
        logger.warning("database unreachable at startup, indexes not ensured")
    yield


app = FastAPI(title="Plugin Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MarketError)
async def market_error_handler(request: Request, exc: MarketError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def get_gateway() -> PaymentGateway:
    return SimulatedGateway()


admin_only = auth.require_role("admin")
staff_only = auth.require_role("admin", "vendor")


# Request bodies
class SignupBody(BaseModel):
    email: EmailStr
    password: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdateBody(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar_url: Optional[str] = None


class CartAddBody(BaseModel):
    product_id: str
    quantity: int = 1


class QuantityBody(BaseModel):
    quantity: int


class WishlistAddBody(BaseModel):
    product_id: str


class ReviewBody(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    content: Optional[str] = None


class CheckoutBody(BaseModel):
    payment_method: PaymentMethod = "card"
    card: Optional[CardDetails] = None


class StatusBody(BaseModel):
    status: str


class RoleBody(BaseModel):
    role: str


class VersionBody(BaseModel):
    version: str
    changes: List[str] = []
    file_url: Optional[str] = None
    file_size: Optional[int] = None


@app.get("/")
def read_root():
    return {"message": "Plugin Marketplace API running"}


@app.get("/test")
def test_database(db: Database = Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": DATABASE_NAME,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        response["collections"] = db.list_collection_names()[:20]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# Auth
@app.post("/auth/signup")
def signup(body: SignupBody, db: Database = Depends(get_db)):
    return auth.signup(db, body.email, body.password, body.first_name, body.last_name)


@app.post("/auth/login")
def login(body: LoginBody, db: Database = Depends(get_db)):
    return auth.login(db, body.email, body.password)


@app.get("/auth/me")
def me(user=Depends(auth.get_current_user)):
    return user


@app.patch("/auth/me")
def update_me(body: ProfileUpdateBody, user=Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return auth.update_profile(db, user["id"], body.model_dump(exclude_none=True))


# Catalog
@app.get("/api/products")
def list_products(request: Request, page_size: int = PAGE_SIZE, db: Database = Depends(get_db)):
    q = decode(request.query_params)
    page = catalog.list_products(db, q.filters, q.sort, q.search, q.page, page_size)
    return {
        "items": page.items,
        "total_count": page.total_count,
        "page": q.page,
        "page_size": page_size,
        "query_string": encode(q.filters, q.sort, q.search, q.page),
    }


@app.get("/api/catalog")
async def catalog_view(request: Request, page_size: int = PAGE_SIZE, db: Database = Depends(get_db)):
    async def fetch(filters, sort, search, page, size):
        return await run_in_threadpool(catalog.list_products, db, filters, sort, search, page, size)

    controller = CatalogController.from_query_string(fetch, request.query_params, page_size=page_size)
    await controller.refresh()
    return controller.snapshot().model_dump(mode="json")


@app.get("/api/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return catalog.get_product_by_id(db, product_id)


@app.get("/api/products/{product_id}/versions")
def get_versions(product_id: str, db: Database = Depends(get_db)):
    catalog.get_product_by_id(db, product_id)
    return catalog.get_product_versions(db, product_id)


@app.get("/api/products/{product_id}/versions/latest")
def get_latest_version(product_id: str, db: Database = Depends(get_db)):
    catalog.get_product_by_id(db, product_id)
    version = catalog.latest_version(db, product_id)
    if version is None:
        raise NotFound("No versions released yet")
    return version


@app.get("/api/products/{product_id}/reviews")
def get_reviews(product_id: str, db: Database = Depends(get_db)):
    return catalog.get_product_reviews(db, product_id)


@app.post("/api/products/{product_id}/reviews", response_model=dict)
def post_review(product_id: str, body: ReviewBody, user=Depends(auth.get_current_user),
                db: Database = Depends(get_db)):
    review = Review(product_id=product_id, user_id=user["id"], rating=body.rating, content=body.content)
    return {"id": catalog.add_review(db, review), "status": "pending"}


@app.get("/api/products/{product_id}/purchased")
def purchased(product_id: str, user=Depends(auth.get_optional_user), db: Database = Depends(get_db)):
    if user is None:
        return {"purchased": False}
    return {"purchased": catalog.has_user_purchased(db, user["id"], product_id)}


# Cart
@app.get("/api/cart")
def get_cart(user=Depends(auth.get_current_user), db: Database = Depends(get_db)):
    lines = cart.list_cart(db, user["id"])
    return {
        "items": lines,
        "total_items": sum(line["quantity"] for line in lines),
        "total_price": cart.cart_total(lines),
    }


@app.post("/api/cart")
def add_to_cart(body: CartAddBody, user=Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return cart.add_to_cart(db, user["id"], body.product_id, body.quantity)


@app.patch("/api/cart/{product_id}")
def update_cart(product_id: str, body: QuantityBody, user=Depends(auth.get_current_user),
                db: Database = Depends(get_db)):
    line = cart.update_cart_quantity(db, user["id"], product_id, body.quantity)
    return line if line is not None else {"removed": True}


@app.delete("/api/cart/{product_id}")
def remove_from_cart(product_id: str, user=Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return {"ok": True, "removed": cart.remove_from_cart(db, user["id"], product_id)}


@app.delete("/api/cart")
def clear_cart(user=Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return {"ok": True, "removed": cart.clear_cart(db, user["id"])}


# Wishlist
@app.get("/api/wishlist")
def get_wishlist(user=Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return cart.list_wishlist(db, user["id"])


@app.post("/api/wishlist")
def add_to_wishlist(body: WishlistAddBody, user=Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return cart.add_to_wishlist(db, user["id"], body.product_id)


@app.delete("/api/wishlist/{product_id}")
def remove_from_wishlist(product_id: str, user=Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return {"ok": True, "removed": cart.remove_from_wishlist(db, user["id"], product_id)}


@app.post("/api/wishlist/{product_id}/move-to-cart")
def move_to_cart(product_id: str, user=Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return cart.move_to_cart(db, user["id"], product_id)


# Orders
@app.post("/api/checkout")
def checkout(body: CheckoutBody, user=Depends(auth.get_current_user), db: Database = Depends(get_db),
             gateway: PaymentGateway = Depends(get_gateway)):
    return orders.checkout(db, user["id"], body.payment_method, gateway, body.card)


@app.get("/api/orders")
def list_orders(user=Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return orders.list_orders(db, user_id=user["id"])


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(auth.get_current_user), db: Database = Depends(get_db)):
    return orders.get_order(db, order_id, user)


# Navigation and settings
@app.get("/api/navigation")
def navigation(nav_type: Optional[str] = Query(None, alias="type"), db: Database = Depends(get_db)):
    return admin.list_nav_items(db, nav_type)


@app.get("/api/config", response_model=Dict[str, str])
def config(db: Database = Depends(get_db)):
    return admin.get_config(db)


# Admin
@app.get("/admin/stats")
def admin_stats(user=Depends(admin_only), db: Database = Depends(get_db)):
    return admin.dashboard_stats(db)


@app.get("/admin/users")
def admin_users(user=Depends(admin_only), db: Database = Depends(get_db)):
    return admin.list_users(db)


@app.patch("/admin/users/{user_id}/role")
def admin_set_role(user_id: str, body: RoleBody, user=Depends(admin_only), db: Database = Depends(get_db)):
    return admin.set_user_role(db, user_id, body.role)


@app.get("/admin/orders")
def admin_orders(status: Optional[str] = None, user=Depends(admin_only), db: Database = Depends(get_db)):
    return orders.list_orders(db, status=status)


@app.patch("/admin/orders/{order_id}")
def admin_update_order(order_id: str, body: StatusBody, user=Depends(admin_only), db: Database = Depends(get_db)):
    return orders.update_order_status(db, order_id, body.status)


@app.post("/admin/products")
def admin_create_product(product: Product, user=Depends(staff_only), db: Database = Depends(get_db)):
    return catalog.create_product(db, product)


@app.patch("/admin/products/{product_id}")
def admin_update_product(product_id: str, payload: dict, user=Depends(staff_only), db: Database = Depends(get_db)):
    return catalog.update_product(db, product_id, payload)


@app.delete("/admin/products/{product_id}")
def admin_delete_product(product_id: str, user=Depends(admin_only), db: Database = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return {"ok": True}


@app.post("/admin/products/{product_id}/versions")
def admin_add_version(product_id: str, body: VersionBody, user=Depends(staff_only), db: Database = Depends(get_db)):
    version = ProductVersion(product_id=product_id, date=now(), **body.model_dump())
    return catalog.add_product_version(db, version)


@app.get("/admin/products/{product_id}/reviews")
def admin_reviews(product_id: str, user=Depends(admin_only), db: Database = Depends(get_db)):
    return catalog.get_product_reviews(db, product_id, include_unapproved=True)


@app.patch("/admin/reviews/{review_id}")
def admin_moderate_review(review_id: str, body: StatusBody, user=Depends(admin_only), db: Database = Depends(get_db)):
    return catalog.set_review_status(db, review_id, body.status)


@app.post("/admin/navigation")
def admin_add_nav(item: NavItem, user=Depends(admin_only), db: Database = Depends(get_db)):
    return admin.create_nav_item(db, item)


@app.delete("/admin/navigation/{item_id}")
def admin_delete_nav(item_id: str, user=Depends(admin_only), db: Database = Depends(get_db)):
    admin.delete_nav_item(db, item_id)
    return {"ok": True}


@app.put("/admin/config")
def admin_set_config(item: ConfigItem, user=Depends(admin_only), db: Database = Depends(get_db)):
    return admin.set_config(db, item)


# Seed Demo Data
DEMO_PRODUCTS = [
    {
        "title": "SEO Booster Pro",
        "summary": "Meta tags, sitemaps and schema markup in one plugin.",
        "price": 29,
        "platform": "WordPress",
        "category": "Plugins",
        "tags": ["SEO", "Admin"],
        "author": "Northwind Labs",
        "version": "2.4.5",
        "download_count": 5400,
        "rating": 4.7,
    },
    {
        "title": "ShopFront Theme",
        "summary": "A fast WooCommerce storefront theme.",
        "price": 59,
        "platform": "WordPress",
        "category": "Themes",
        "tags": ["eCommerce", "Media"],
        "author": "Pixel Forge",
        "version": "1.8.0",
        "download_count": 2100,
        "rating": 4.5,
    },
    {
        "title": "Contact Form Lite",
        "summary": "Drag and drop forms with spam protection.",
        "price": 0,
        "platform": "WordPress",
        "category": "Plugins",
        "tags": ["Forms", "Security"],
        "author": "Northwind Labs",
        "version": "3.1.2",
        "download_count": 12800,
        "rating": 4.3,
    },
    {
        "title": "Forum Shield",
        "summary": "Spam and bot protection for busy boards.",
        "price": 19,
        "platform": "XenForo",
        "category": "Extensions",
        "tags": ["Security", "Forum"],
        "author": "BoardSmiths",
        "version": "2.0.1",
        "download_count": 1900,
        "rating": 4.8,
    },
    {
        "title": "Social Login Bridge",
        "summary": "Sign in with the networks your members already use.",
        "price": 35,
        "platform": "XenForo",
        "category": "Integrations",
        "tags": ["Social", "Forum"],
        "author": "BoardSmiths",
        "version": "1.2.0",
        "download_count": 860,
        "rating": 4.1,
    },
]


@app.post("/seed")
def seed(db: Database = Depends(get_db)):
    if os.getenv("ALLOW_SEED", "").lower() not in ("1", "true", "yes"):
        raise Forbidden("Seeding is disabled, set ALLOW_SEED to enable it")
    if db["products"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    for p in DEMO_PRODUCTS:
        catalog.create_product(db, Product(**p))
    if db["profiles"].count_documents({"role": "admin"}) == 0:
        create_document(db, "profiles", {
            "email": "admin@market.dev",
            "password_hash": auth.hash_password("admin123"),
            "role": "admin",
            "first_name": "Admin",
        })
    return {"seeded": True, "products": db["products"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
