"""
MongoDB access shared by every store.

`db` is None when DATABASE_URL is not configured; routes that need the
database fail with a 503 in that case (see main.get_db).
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from pydantic import BaseModel
from pymongo import MongoClient

from config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

client: Optional[MongoClient] = None
db = None

if settings.database_url:
    client = MongoClient(settings.database_url, serverSelectionTimeoutMS=5000)
    db = client[settings.database_name]
    logger.info(f"MongoDB client created for database '{settings.database_name}'")


def now() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: str) -> Optional[ObjectId]:
    """Return an ObjectId for a valid hex id, or None."""
    if isinstance(value, ObjectId):
        return value
    if not value or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def serialize(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Replace Mongo's `_id` with a string `id`."""
    if doc is None:
        return None
    out = dict(doc)
    if "_id" in out:
        out["id"] = str(out.pop("_id"))
    return out


def create_document(database, collection_name: str, data: Union[BaseModel, Dict[str, Any]],
                    doc_id: Optional[str] = None) -> str:
    """Insert a document with created_at/updated_at stamps and return its id as a string."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    ts = now()
    data_dict.setdefault("created_at", ts)
    data_dict.setdefault("updated_at", ts)
    if doc_id is not None:
        data_dict["_id"] = doc_id
    result = database[collection_name].insert_one(data_dict)
    return str(result.inserted_id)


def get_documents(database, collection_name: str, filter_dict: Optional[Dict[str, Any]] = None,
                  sort: Optional[List[tuple]] = None, limit: int = 0) -> List[Dict[str, Any]]:
    kwargs: Dict[str, Any] = {}
    if sort:
        kwargs["sort"] = sort
    if limit:
        kwargs["limit"] = limit
    docs = database[collection_name].find(filter_dict or {}, **kwargs)
    return [serialize(d) for d in docs]
