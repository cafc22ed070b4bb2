"""
Product reviews and the product rating aggregate.

A user has at most one review per product (unique index on
``(product_id, user_id)``); submitting again overwrites it. The product
keeps ``rating_sum`` and ``review_count`` which are adjusted by the change
each write causes, and ``rating`` is their mean rounded to one decimal.
"""
from typing import List, Optional

import structlog
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from database import now_utc, serialize_doc, to_object_id
from errors import NotFoundError, ValidationError
from schemas import Review as ReviewSchema

logger = structlog.get_logger(__name__)


def mean_rating(rating_sum: float, review_count: int) -> float:
    if not review_count:
        return 0
    return round(rating_sum / review_count, 1)


def _adjust_aggregate(db: Database, product_id: str, sum_delta: int, count_delta: int) -> Optional[dict]:
    product = db["product"].find_one_and_update(
        {"_id": to_object_id(product_id)},
        {"$inc": {"rating_sum": sum_delta, "review_count": count_delta}},
        return_document=ReturnDocument.AFTER,
    )
    if product is None:
        return None
    product["rating"] = _store_mean(db, product)
    return product


def _store_mean(db: Database, product: dict) -> float:
    """Write the mean for the aggregate seen in product, unless a newer write moved it."""
    rating_sum = product.get("rating_sum", 0)
    review_count = product.get("review_count", 0)
    rating = mean_rating(rating_sum, review_count)
    db["product"].update_one(
        {"_id": product["_id"], "rating_sum": rating_sum, "review_count": review_count},
        {"$set": {"rating": rating}},
    )
    return rating


def submit_review(db: Database, user_id: str, product_id: str, rating: int, comment: str = "") -> dict:
    if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1-5")
    product = db["product"].find_one({"_id": to_object_id(product_id)})
    if not product:
        raise NotFoundError("Product not found")
    pid = str(product["_id"])

    review = ReviewSchema(product_id=pid, user_id=user_id, rating=rating, comment=(comment or "").strip())
    now = now_utc()
    previous = db["review"].find_one_and_update(
        {"product_id": pid, "user_id": user_id},
        {
            "$set": {"rating": review.rating, "comment": review.comment, "updated_at": now},
            "$setOnInsert": {"product_id": pid, "user_id": user_id, "created_at": now},
        },
        upsert=True,
        return_document=ReturnDocument.BEFORE,
    )
    if previous is None:
        product = _adjust_aggregate(db, pid, review.rating, 1)
    else:
        product = _adjust_aggregate(db, pid, review.rating - previous["rating"], 0)

    logger.info("review_submitted", user_id=user_id, product_id=pid, rating=rating, updated=previous is not None)
    return {
        "updated": previous is not None,
        "rating": product.get("rating", 0) if product else 0,
        "review_count": product.get("review_count", 0) if product else 0,
    }


def delete_review(db: Database, review_id: str) -> None:
    review = db["review"].find_one_and_delete({"_id": to_object_id(review_id)})
    if review is None:
        raise NotFoundError("Review not found")
    _adjust_aggregate(db, review["product_id"], -review["rating"], -1)
    logger.info("review_deleted", review_id=review_id, product_id=review["product_id"])


def list_reviews(db: Database, product_id: str) -> List[dict]:
    reviews = list(db["review"].find({"product_id": product_id}).sort("created_at", DESCENDING))
    user_ids = list({to_object_id(r["user_id"]) for r in reviews})
    users = {}
    if user_ids:
        users = {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": user_ids}})}
    out = []
    for r in reviews:
        data = serialize_doc(r)
        author = users.get(r["user_id"])
        data["user"] = {
            "first_name": author.get("first_name"),
            "last_name": author.get("last_name"),
        } if author else None
        out.append(data)
    return out
