"""
Cart -> order transition and order history.

Checkout validates every line before touching anything, then takes stock
with one conditional decrement per product (``stock >= qty``). A decrement
that matches nothing means a concurrent checkout took the stock first:
the decrements already applied are given back and the caller gets
ConcurrencyConflictError. Stock therefore never goes negative.

Order lines snapshot name and unit price; later catalog edits do not
touch existing orders.
"""
from typing import List, Optional

import structlog
from pymongo import DESCENDING
from pymongo.database import Database

from cart import load_cart_lines
from database import create_document, now_utc, serialize_doc, to_object_id
from errors import ConcurrencyConflictError, EmptyCartError, InsufficientStockError, NotFoundError, ValidationError
from schemas import Order as OrderSchema
from schemas import OrderItem

logger = structlog.get_logger(__name__)


def _take_stock(db: Database, items: List[OrderItem]) -> None:
    taken = []
    try:
        for item in items:
            res = db["product"].update_one(
                {"_id": to_object_id(item.product_id), "stock": {"$gte": item.quantity}},
                {"$inc": {"stock": -item.quantity}},
            )
            if res.modified_count == 0:
                logger.warning("stock_conflict", product_id=item.product_id, quantity=item.quantity)
                raise ConcurrencyConflictError(
                    f"Stock for {item.name} changed while placing the order. Please review your cart.",
                    product_id=item.product_id,
                )
            taken.append(item)
    except Exception:
        _return_stock(db, taken)
        raise


def _return_stock(db: Database, items: List[OrderItem]) -> None:
    for item in items:
        db["product"].update_one({"_id": to_object_id(item.product_id)}, {"$inc": {"stock": item.quantity}})


def checkout(db: Database, user_id: str, name: str, address: str, phone: str, payment_method: Optional[str] = None) -> dict:
    name = (name or "").strip()
    address = (address or "").strip()
    phone = (phone or "").strip()
    if not name or not address or not phone:
        raise ValidationError("Name, address, and phone are required")

    lines = load_cart_lines(db, user_id)
    if not lines:
        raise EmptyCartError("Cart is empty")

    for line in lines:
        product = line["product"]
        stock = product.get("stock", 0)
        if line["quantity"] > stock:
            raise InsufficientStockError(
                f"Insufficient stock for {product.get('name')}. Only {stock} available.",
                product_id=str(product["_id"]),
                available=stock,
            )

    items = [
        OrderItem(
            product_id=str(line["product"]["_id"]),
            name=line["product"].get("name", ""),
            quantity=line["quantity"],
            unit_price=line["product"].get("price", 0),
        )
        for line in lines
    ]
    total = sum(item.quantity * item.unit_price for item in items)
    order = OrderSchema(
        user_id=user_id,
        items=items,
        total=total,
        name=name,
        address=address,
        phone=phone,
        payment_method=payment_method or "COD",
    )

    _take_stock(db, items)
    try:
        order_id = create_document(db, "order", order)
    except Exception:
        _return_stock(db, items)
        raise

    db["cart"].update_one({"user_id": user_id}, {"$set": {"items": [], "updated_at": now_utc()}})
    logger.info("order_placed", user_id=user_id, order_id=order_id, total=total, lines=len(items))
    return {"order_id": order_id, "total": total}


def list_orders(db: Database, user_id: str) -> List[dict]:
    orders = db["order"].find({"user_id": user_id}).sort("created_at", DESCENDING)
    return [serialize_doc(o) for o in orders]


def get_order(db: Database, user_id: str, order_id: str) -> dict:
    order = db["order"].find_one({"_id": to_object_id(order_id), "user_id": user_id})
    if not order:
        raise NotFoundError("Order not found")
    return serialize_doc(order)
