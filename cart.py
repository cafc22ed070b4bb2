"""
Per-user shopping cart.

One ``cart`` document per user (unique index on ``user_id``) holding
``items: [{product_id, quantity}]`` with at most one line per product.
Stock is checked against the product at the moment of each mutation only;
checkout checks it again.
"""
from typing import List

import structlog
from pymongo.database import Database

from database import now_utc, to_object_id
from errors import InsufficientStockError, NotFoundError, ValidationError
from schemas import Cart, CartItem

logger = structlog.get_logger(__name__)


def get_product(db: Database, product_id: str) -> dict:
    product = db["product"].find_one({"_id": to_object_id(product_id)})
    if not product:
        raise NotFoundError("Product not found")
    return product


def load_cart_lines(db: Database, user_id: str) -> List[dict]:
    """Cart lines joined with their live product; lines of deleted products are dropped."""
    cart = db["cart"].find_one({"user_id": user_id})
    if not cart or not cart.get("items"):
        return []
    ids = [to_object_id(item["product_id"]) for item in cart["items"]]
    products = {str(p["_id"]): p for p in db["product"].find({"_id": {"$in": ids}})}
    lines = []
    for item in cart["items"]:
        product = products.get(item["product_id"])
        if product is None:
            continue
        lines.append({"product": product, "quantity": item["quantity"]})
    return lines


def cart_view(db: Database, user_id: str) -> dict:
    items = []
    for line in load_cart_lines(db, user_id):
        product = line["product"]
        images = product.get("images") or []
        items.append({
            "product_id": str(product["_id"]),
            "name": product.get("name"),
            "brand": product.get("brand"),
            "image": images[0] if images else None,
            "price": product.get("price", 0),
            "stock": product.get("stock", 0),
            "quantity": line["quantity"],
            "subtotal": line["quantity"] * product.get("price", 0),
        })
    total = sum(item["subtotal"] for item in items)
    return {"items": items, "total": total}


def _save_items(db: Database, user_id: str, items: List[dict]) -> None:
    cart = Cart(user_id=user_id, items=items)
    items = [item.model_dump() for item in cart.items]
    now = now_utc()
    db["cart"].update_one(
        {"user_id": user_id},
        {"$set": {"items": items, "updated_at": now}, "$setOnInsert": {"user_id": user_id, "created_at": now}},
        upsert=True,
    )


def add_item(db: Database, user_id: str, product_id: str, quantity: int = 1) -> dict:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    product = get_product(db, product_id)
    pid = str(product["_id"])
    stock = product.get("stock", 0)

    cart = db["cart"].find_one({"user_id": user_id})
    items = list(cart.get("items", [])) if cart else []
    existing = next((item for item in items if item["product_id"] == pid), None)

    new_qty = (existing["quantity"] if existing else 0) + quantity
    if new_qty > stock:
        raise InsufficientStockError(
            f"Cannot add more. Maximum {stock} items available",
            product_id=pid,
            available=stock,
        )

    if existing:
        existing["quantity"] = new_qty
    else:
        items.append(CartItem(product_id=pid, quantity=new_qty).model_dump())
    _save_items(db, user_id, items)
    logger.info("cart_item_added", user_id=user_id, product_id=pid, quantity=new_qty)
    return cart_view(db, user_id)


def set_item_quantity(db: Database, user_id: str, product_id: str, quantity: int) -> dict:
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative")
    if quantity == 0:
        return remove_item(db, user_id, product_id)

    product = get_product(db, product_id)
    pid = str(product["_id"])
    stock = product.get("stock", 0)
    if quantity > stock:
        raise InsufficientStockError(
            f"Only {stock} items available",
            product_id=pid,
            available=stock,
        )

    cart = db["cart"].find_one({"user_id": user_id})
    items = list(cart.get("items", [])) if cart else []
    existing = next((item for item in items if item["product_id"] == pid), None)
    if existing is None:
        raise NotFoundError("Item not in cart")
    existing["quantity"] = quantity
    _save_items(db, user_id, items)
    logger.info("cart_item_updated", user_id=user_id, product_id=pid, quantity=quantity)
    return cart_view(db, user_id)


def remove_item(db: Database, user_id: str, product_id: str) -> dict:
    db["cart"].update_one(
        {"user_id": user_id},
        {"$pull": {"items": {"product_id": product_id}}, "$set": {"updated_at": now_utc()}},
    )
    logger.info("cart_item_removed", user_id=user_id, product_id=product_id)
    return cart_view(db, user_id)


def clear_cart(db: Database, user_id: str) -> dict:
    db["cart"].update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": now_utc()}})
    logger.info("cart_cleared", user_id=user_id)
    return {"items": [], "total": 0}
