"""
MongoDB access for Portfolio Hub.

`db` is the shared pymongo Database built from DATABASE_URL / DATABASE_NAME
(None when the environment is not configured). Services receive a Database
explicitly so tests can hand them an in-memory one.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db: Optional[Database] = None
if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL)
    db = _client[DATABASE_NAME]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Union[str, ObjectId, None]) -> Optional[ObjectId]:
    """Parse an id coming from a caller; None when it is not a valid ObjectId."""
    if isinstance(value, ObjectId):
        return value
    if value and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def create_document(database: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> str:
    """Insert a document with created_at/updated_at stamps and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump(exclude_none=True)
    else:
        data_dict = {k: v for k, v in data.items() if v is not None}
    data_dict.pop("id", None)
    now = utcnow()
    data_dict["created_at"] = now
    data_dict["updated_at"] = now
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def to_public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Copy of a stored document with `_id` exposed as a string `id`."""
    if not doc:
        return doc
    doc = {**doc}
    if "_id" in doc:
        doc["id"] = str(doc.pop("_id"))
    for key in ("user_id", "template_id", "created_by"):
        if isinstance(doc.get(key), ObjectId):
            doc[key] = str(doc[key])
    return doc


def ensure_indexes(database: Database) -> None:
    portfolios = database["portfolios"]
    # Subdomains are stored lowercase, so a plain unique index is case-insensitive.
    portfolios.create_index([("subdomain", ASCENDING)], unique=True, name="subdomain_unique")
    portfolios.create_index([("custom_domain", ASCENDING)], unique=True, sparse=True, name="custom_domain_unique")
    portfolios.create_index([("user_id", ASCENDING)], name="user_id")
    portfolios.create_index([("template_id", ASCENDING)], name="template_id")

    templates = database["templates"]
    templates.create_index([("category", ASCENDING)], name="category")
    templates.create_index([("is_featured", ASCENDING)], name="is_featured")
    templates.create_index([("rating.average", DESCENDING)], name="rating_average")


def get_db() -> Database:
    """FastAPI dependency; main.py overrides it in tests."""
    if db is None:
        raise RuntimeError("Database is not configured (set DATABASE_URL and DATABASE_NAME)")
    return db
