"""
MongoDB access for the shop backend.

The client is created at import from DATABASE_URL / DATABASE_NAME. When
either is missing the app still starts with ``db = None`` so the health
endpoint can report it.
"""
from datetime import datetime, timezone
from typing import Any, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from config import settings
from errors import ValidationError

# expired documents are rejected on read; the TTL sweep only collects leftovers
TTL_SWEEP_GRACE_SECONDS = 24 * 3600

_client = None
db: Optional[Database] = None

if settings.database_url and settings.database_name:
    _client = MongoClient(settings.database_url)
    db = _client[settings.database_name]


def get_db() -> Database:
    return db


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # pymongo hands back naive datetimes that are already UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_object_id(id_str: Union[str, ObjectId]) -> ObjectId:
    if isinstance(id_str, ObjectId):
        return id_str
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError("Invalid id")


def _serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    if isinstance(value, dict):
        return serialize_doc(value)
    if isinstance(value, list):
        return [_serialize_value(v) for v in value]
    return value


def serialize_doc(doc):
    if not doc:
        return doc
    out = {}
    for k, v in doc.items():
        if k == "_id":
            out["id"] = str(v)
        else:
            out[k] = _serialize_value(v)
    return out


def create_document(database: Database, collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert one document stamped with created_at/updated_at and return its id."""
    if isinstance(data, BaseModel):
        payload = data.model_dump()
    else:
        payload = dict(data)
    now = now_utc()
    payload.setdefault("created_at", now)
    payload["updated_at"] = now
    result = database[collection_name].insert_one(payload)
    return str(result.inserted_id)


def get_documents(database: Database, collection_name: str, filter_dict: Optional[dict] = None, limit: Optional[int] = None):
    cursor = database[collection_name].find(filter_dict or {}).sort("created_at", DESCENDING)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def ensure_indexes(database: Database) -> None:
    """Uniqueness constraints the services rely on."""
    database["user"].create_index([("email", ASCENDING)], unique=True)
    database["cart"].create_index([("user_id", ASCENDING)], unique=True)
    database["review"].create_index([("product_id", ASCENDING), ("user_id", ASCENDING)], unique=True)
    database["order"].create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
    database["otp_challenge"].create_index([("email", ASCENDING)], unique=True)
    database["otp_challenge"].create_index([("expires_at", ASCENDING)], expireAfterSeconds=TTL_SWEEP_GRACE_SECONDS)
    database["otp_resend"].create_index([("email", ASCENDING)], unique=True)
    database["adminsession"].create_index([("token", ASCENDING)], unique=True)
    database["adminsession"].create_index([("expires_at", ASCENDING)], expireAfterSeconds=TTL_SWEEP_GRACE_SECONDS)
