"""
Admin panel API.

Admins sign in through an injected AdminAuthenticator and receive an
opaque session token stored in ``adminsession``; every panel call sends it
back in the X-Admin-Token header.
"""
from datetime import timedelta
from uuid import uuid4

import structlog
from pymongo.database import Database

from config import settings
from database import as_utc, get_documents, now_utc, serialize_doc, to_object_id
from errors import AuthError, ConcurrencyConflictError, NotFoundError, ValidationError
from security import AdminAuthenticator

logger = structlog.get_logger(__name__)

RESOURCES = {
    "users": "user",
    "products": "product",
    "orders": "order",
    "carts": "cart",
    "reviews": "review",
}

ORDER_TRANSITIONS = {
    "placed": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered", "cancelled"},
    "delivered": set(),
    "cancelled": set(),
}


def admin_login(db: Database, authenticator: AdminAuthenticator, email: str, password: str) -> dict:
    principal = authenticator.authenticate(email, password)
    if principal is None:
        raise AuthError("Invalid credentials")
    token = uuid4().hex
    now = now_utc()
    expires_at = now + timedelta(hours=settings.admin_session_ttl_hours)
    db["adminsession"].insert_one({
        "token": token,
        "email": principal["email"],
        "created_at": now,
        "expires_at": expires_at,
    })
    logger.info("admin_login", email=principal["email"])
    return {"token": token, "expires_at": expires_at.isoformat()}


def check_admin_session(db: Database, token: str) -> dict:
    if not token:
        raise AuthError("Missing admin token")
    session = db["adminsession"].find_one({"token": token})
    if not session:
        raise AuthError("Invalid token")
    if as_utc(session["expires_at"]) < now_utc():
        db["adminsession"].delete_one({"_id": session["_id"]})
        raise AuthError("Session expired")
    return session


def _collection(resource: str) -> str:
    name = RESOURCES.get(resource)
    if name is None:
        raise NotFoundError(f"Unknown resource '{resource}'")
    return name


def _scrub(doc: dict) -> dict:
    data = serialize_doc(doc)
    data.pop("password_hash", None)
    return data


def list_resource(db: Database, resource: str, limit: int = 100) -> list:
    items = get_documents(db, _collection(resource), limit=limit)
    return [_scrub(i) for i in items]


def get_resource(db: Database, resource: str, item_id: str) -> dict:
    doc = db[_collection(resource)].find_one({"_id": to_object_id(item_id)})
    if not doc:
        raise NotFoundError("Not found")
    return _scrub(doc)


def stats(db: Database) -> dict:
    return {
        "users": db["user"].count_documents({}),
        "products": db["product"].count_documents({}),
        "orders": db["order"].count_documents({}),
        "reviews": db["review"].count_documents({}),
    }


def set_order_status(db: Database, order_id: str, status: str) -> dict:
    oid = to_object_id(order_id)
    order = db["order"].find_one({"_id": oid})
    if not order:
        raise NotFoundError("Order not found")
    current = order.get("status", "placed")
    if status not in ORDER_TRANSITIONS.get(current, set()):
        raise ValidationError(f"Cannot move order from '{current}' to '{status}'")
    res = db["order"].update_one(
        {"_id": oid, "status": current},
        {"$set": {"status": status, "updated_at": now_utc()}},
    )
    if res.matched_count == 0:
        raise ConcurrencyConflictError("Order status changed concurrently, reload and retry")
    logger.info("order_status_changed", order_id=order_id, old=current, new=status)
    return get_resource(db, "orders", order_id)
