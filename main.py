import re
import time
from contextlib import asynccontextmanager
from typing import List, Optional
from uuid import uuid4

import structlog
from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr
from pymongo.errors import DuplicateKeyError

import admin as admin_service
import auth as auth_service
import cart as cart_service
import checkout as checkout_service
import database
import reviews as review_service
from config import settings
from database import create_document, ensure_indexes, get_db, now_utc, serialize_doc, to_object_id
from errors import AuthError, ConflictError, ForbiddenError, InternalError, NotFoundError, RateLimitError, ShopError, ValidationError
from logging_config import configure_logging
from mailer import get_mailer
from schemas import PaymentMethod, OrderStatus
from schemas import Product as ProductSchema
from schemas import User as UserSchema
from security import decode_token, get_admin_authenticator, hash_secret

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        ensure_indexes(database.db)
    yield


app = FastAPI(title="EYES Perfume Shop API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "request",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    response.headers["X-Request-ID"] = request_id
    return response


# ----------------------- Errors -----------------------
@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    headers = None
    if isinstance(exc, RateLimitError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, **exc.extra}, headers=headers)


@app.exception_handler(DuplicateKeyError)
async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    logger.warning("duplicate_key", error=str(exc)[:200])
    return await shop_error_handler(request, ConflictError("Resource already exists"))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error", path=request.url.path)
    return await shop_error_handler(request, InternalError("Internal server error"))


# ----------------------- Dependencies -----------------------
security = HTTPBearer()


def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security), db=Depends(get_db)):
    payload = decode_token(credentials.credentials)
    user_id = payload.get("id")
    if not user_id:
        raise AuthError("Invalid token payload")
    user = db["user"].find_one({"_id": to_object_id(user_id)})
    if not user:
        raise AuthError("User not found")
    return serialize_doc(user)


def require_admin(user=Depends(get_current_user)):
    if user.get("role") != "admin":
        raise ForbiddenError("Admin only")
    return user


def require_admin_session(x_admin_token: Optional[str] = Header(None), db=Depends(get_db)):
    return admin_service.check_admin_session(db, x_admin_token)


# ----------------------- Models -----------------------
class SignupBody(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    password: str
    confirm_password: str


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class ResendOtpBody(BaseModel):
    email: EmailStr


class VerifyOtpBody(BaseModel):
    email: EmailStr
    otp: str


class ProfileUpdateBody(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class ProductCreateBody(ProductSchema):
    pass


class ProductUpdateBody(BaseModel):
    name: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = None
    original_price: Optional[float] = None
    images: Optional[List[str]] = None
    stock: Optional[int] = None
    is_recent: Optional[bool] = None
    is_bestseller: Optional[bool] = None


class CartAddBody(BaseModel):
    product_id: str
    quantity: int = 1


class CartUpdateBody(BaseModel):
    quantity: int


class CheckoutBody(BaseModel):
    name: str = ""
    address: str = ""
    phone: str = ""
    payment_method: Optional[PaymentMethod] = None


class ReviewBody(BaseModel):
    product_id: str
    rating: int
    comment: str = ""


class AdminLoginBody(BaseModel):
    email: str
    password: str


class OrderStatusBody(BaseModel):
    status: OrderStatus


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "EYES Perfume API running"}


@app.get("/test")
def test_database(db=Depends(get_db)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if settings.database_url else "❌ Not Set",
        "database_name": "✅ Set" if settings.database_name else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        if db is not None:
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
            response["collections"] = db.list_collection_names()[:10]
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


@app.get("/health")
def health():
    return {"status": "OK", "timestamp": now_utc().isoformat()}


# ----------------------- Auth -----------------------
@app.post("/signup")
def signup(body: SignupBody, db=Depends(get_db), mailer=Depends(get_mailer)):
    return auth_service.register(
        db, mailer, body.first_name, body.last_name, body.email, body.password, body.confirm_password
    )


@app.post("/login")
def login(body: LoginBody, db=Depends(get_db), mailer=Depends(get_mailer)):
    return auth_service.login(db, mailer, body.email, body.password)


@app.post("/resend-otp")
def resend_otp(body: ResendOtpBody, db=Depends(get_db), mailer=Depends(get_mailer)):
    return auth_service.resend_otp(db, mailer, body.email)


@app.post("/verify-otp")
def verify_otp(body: VerifyOtpBody, db=Depends(get_db)):
    return auth_service.verify_otp(db, body.email, body.otp)


@app.get("/profile")
def get_profile(user=Depends(get_current_user), db=Depends(get_db)):
    return auth_service.get_profile(db, user["id"])


@app.post("/profile")
def update_profile(body: ProfileUpdateBody, user=Depends(get_current_user), db=Depends(get_db)):
    return auth_service.update_profile(db, user["id"], body.first_name, body.last_name)


# ----------------------- Products -----------------------
@app.get("/products")
def list_products(q: Optional[str] = None, category: Optional[str] = None, db=Depends(get_db)):
    filt = {}
    if q:
        filt["name"] = {"$regex": re.escape(q), "$options": "i"}
    if category:
        filt["category"] = category
    items = db["product"].find(filt).limit(100)
    return [serialize_doc(i) for i in items]


@app.get("/products/{product_id}")
def get_product(product_id: str, db=Depends(get_db)):
    return serialize_doc(cart_service.get_product(db, product_id))


@app.post("/products")
def create_product(body: ProductCreateBody, user=Depends(require_admin), db=Depends(get_db)):
    doc = {**body.model_dump(), "rating": 0, "rating_sum": 0, "review_count": 0}
    pid = create_document(db, "product", doc)
    logger.info("product_created", product_id=pid, by=user["id"])
    return {"id": pid}


@app.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, user=Depends(require_admin), db=Depends(get_db)):
    update = {k: v for k, v in body.model_dump(exclude_none=True).items()}
    if update.get("price", 0) < 0 or update.get("stock", 0) < 0:
        raise ValidationError("Price and stock must be non-negative")
    update["updated_at"] = now_utc()
    res = db["product"].update_one({"_id": to_object_id(product_id)}, {"$set": update})
    if res.matched_count == 0:
        raise NotFoundError("Product not found")
    return {"ok": True}


@app.delete("/products/{product_id}")
def delete_product(product_id: str, user=Depends(require_admin), db=Depends(get_db)):
    res = db["product"].delete_one({"_id": to_object_id(product_id)})
    if res.deleted_count == 0:
        raise NotFoundError("Product not found")
    return {"ok": True}


# ----------------------- Cart -----------------------
@app.get("/cart")
def get_cart(user=Depends(get_current_user), db=Depends(get_db)):
    return cart_service.cart_view(db, user["id"])


@app.post("/cart")
def add_to_cart(body: CartAddBody, user=Depends(get_current_user), db=Depends(get_db)):
    return cart_service.add_item(db, user["id"], body.product_id, body.quantity)


@app.put("/cart/{product_id}")
def update_cart_item(product_id: str, body: CartUpdateBody, user=Depends(get_current_user), db=Depends(get_db)):
    return cart_service.set_item_quantity(db, user["id"], product_id, body.quantity)


@app.delete("/cart/{product_id}")
def remove_cart_item(product_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return cart_service.remove_item(db, user["id"], product_id)


@app.delete("/cart")
def clear_cart(user=Depends(get_current_user), db=Depends(get_db)):
    return cart_service.clear_cart(db, user["id"])


# ----------------------- Orders -----------------------
@app.post("/checkout")
def checkout(body: CheckoutBody, user=Depends(get_current_user), db=Depends(get_db)):
    result = checkout_service.checkout(db, user["id"], body.name, body.address, body.phone, body.payment_method)
    return {"success": True, "message": "Order placed successfully", **result}


@app.get("/orders")
def list_orders(user=Depends(get_current_user), db=Depends(get_db)):
    return checkout_service.list_orders(db, user["id"])


@app.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    return checkout_service.get_order(db, user["id"], order_id)


# ----------------------- Reviews -----------------------
@app.post("/reviews")
def submit_review(body: ReviewBody, user=Depends(get_current_user), db=Depends(get_db)):
    result = review_service.submit_review(db, user["id"], body.product_id, body.rating, body.comment)
    return {"success": True, "message": "Review submitted", **result}


@app.get("/reviews/{product_id}")
def list_reviews(product_id: str, db=Depends(get_db)):
    return review_service.list_reviews(db, product_id)


# ----------------------- Admin -----------------------
@app.post("/admin/login")
def admin_login(body: AdminLoginBody, db=Depends(get_db), authenticator=Depends(get_admin_authenticator)):
    return admin_service.admin_login(db, authenticator, body.email, body.password)


@app.get("/admin/stats")
def admin_stats(session=Depends(require_admin_session), db=Depends(get_db)):
    return admin_service.stats(db)


@app.put("/admin/orders/{order_id}/status")
def admin_set_order_status(order_id: str, body: OrderStatusBody, session=Depends(require_admin_session), db=Depends(get_db)):
    return admin_service.set_order_status(db, order_id, body.status)


@app.delete("/admin/reviews/{review_id}")
def admin_delete_review(review_id: str, session=Depends(require_admin_session), db=Depends(get_db)):
    review_service.delete_review(db, review_id)
    return {"success": True}


@app.get("/admin/{resource}")
def admin_list(resource: str, limit: int = 100, session=Depends(require_admin_session), db=Depends(get_db)):
    return admin_service.list_resource(db, resource, limit)


@app.get("/admin/{resource}/{item_id}")
def admin_get(resource: str, item_id: str, session=Depends(require_admin_session), db=Depends(get_db)):
    return admin_service.get_resource(db, resource, item_id)


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS = [
    {
        "name": "Mystic Rose",
        "brand": "EYES",
        "description": "Enchanting floral essence with notes of Bulgarian rose and jasmine",
        "category": "floral",
        "price": 89,
        "original_price": 120,
        "images": ["https://images.pexels.com/photos/1961794/pexels-photo-1961794.jpeg"],
        "stock": 40,
        "is_recent": True,
    },
    {
        "name": "Golden Amber",
        "brand": "EYES",
        "description": "Warm and luxurious with amber, vanilla, and sandalwood",
        "category": "oriental",
        "price": 95,
        "images": ["https://images.unsplash.com/photo-1588405748880-12d1d2a59d32"],
        "stock": 30,
        "is_bestseller": True,
    },
    {
        "name": "Ocean Breeze",
        "brand": "EYES",
        "description": "Fresh aquatic notes with sea salt and citrus",
        "category": "fresh",
        "price": 78,
        "images": ["https://images.pexels.com/photos/32816847/pexels-photo-32816847.jpeg"],
        "stock": 50,
    },
    {
        "name": "Midnight Oud",
        "brand": "EYES",
        "description": "Deep smoky oud with leather and saffron",
        "category": "woody",
        "price": 150,
        "images": ["https://images.unsplash.com/photo-1592945403244-b3fbafd7f539"],
        "stock": 15,
        "is_bestseller": True,
    },
]


@app.post("/seed")
def seed(db=Depends(get_db)):
    if db["product"].count_documents({}) > 0:
        return {"seeded": False, "message": "Products already exist"}
    for p in DEMO_PRODUCTS:
        prod = ProductSchema(**p)
        create_document(db, "product", {**prod.model_dump(), "rating": 0, "rating_sum": 0, "review_count": 0})
    # admin-role shop user, only when configured
    admin_email = settings.admin_email.strip().lower()
    if admin_email and settings.admin_password and db["user"].count_documents({"role": "admin"}) == 0:
        admin_user = UserSchema(
            first_name="Shop",
            last_name="Admin",
            email=admin_email,
            password_hash=hash_secret(settings.admin_password),
            role="admin",
        )
        create_document(db, "user", admin_user)
    return {"seeded": True, "products": db["product"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
