"""
Items repository: listings CRUD, filtered paging and naive search.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from database import create_document, now, serialize, to_object_id
from errors import InvalidInputError, NotFoundError
from schemas import Item

logger = logging.getLogger(__name__)

PAGE_ORDER = [("created_at", DESCENDING), ("_id", DESCENDING)]


class ItemsRepository:

    def __init__(self, db):
        self.items = db["item"]
        self.users = db["user"]
        self.db = db

    def create_item(self, user_id: str, item_data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            item = Item(**dict(item_data, owner_id=user_id, view_count=0, liked_by=[], status="available"))
        except ValidationError as e:
            raise InvalidInputError(f"Invalid item: {e.errors()[0]['msg']}")

        try:
            item_id = create_document(self.db, "item", item)

            # track on the owner's profile
            self.users.update_one({"_id": user_id}, {"$addToSet": {"items_listed": item_id}})
            return {"success": True, "item_id": item_id}
        except PyMongoError as e:
            logger.error(f"Error creating item: {e}")
            raise

    def get_item_by_id(self, item_id: str) -> Dict[str, Any]:
        oid = to_object_id(item_id)
        if oid is None:
            raise NotFoundError("Item not found")
        try:
            doc = self.items.find_one({"_id": oid})
        except PyMongoError as e:
            logger.error(f"Error fetching item {item_id}: {e}")
            raise
        if not doc:
            raise NotFoundError("Item not found")
        return serialize(doc)

    def update_item(self, item_id: str, update_data: Dict[str, Any]) -> Dict[str, Any]:
        oid = to_object_id(item_id)
        if oid is None:
            raise NotFoundError("Item not found")
        try:
            result = self.items.update_one({"_id": oid}, {"$set": dict(update_data, updated_at=now())})
        except PyMongoError as e:
            logger.error(f"Error updating item {item_id}: {e}")
            raise
        if result.matched_count == 0:
            raise NotFoundError("Item not found")
        return {"success": True}

    def delete_item(self, item_id: str, user_id: str) -> Dict[str, Any]:
        oid = to_object_id(item_id)
        if oid is None:
            raise NotFoundError("Item not found")
        try:
            self.items.delete_one({"_id": oid})
            self.users.update_one({"_id": user_id}, {"$pull": {"items_listed": item_id}})
            return {"success": True}
        except PyMongoError as e:
            logger.error(f"Error deleting item {item_id}: {e}")
            raise

    def get_items(self, filters: Optional[Dict[str, Any]] = None, last_visible: Optional[str] = None,
                  page_size: int = 10) -> Dict[str, Any]:
        """
        One page of available items, newest first.

        `last_visible` is the id of the last item on the previous page; the
        returned `last_visible` is the cursor for the next one.
        """
        filters = filters or {}
        query: Dict[str, Any] = {"status": "available"}

        for field in ("category", "condition", "owner_id"):
            if filters.get(field):
                query[field] = filters[field]

        price: Dict[str, Any] = {}
        if filters.get("min_price") is not None:
            price["$gte"] = filters["min_price"]
        if filters.get("max_price") is not None:
            price["$lte"] = filters["max_price"]
        if price:
            query["price"] = price

        try:
            if last_visible:
                anchor = self.items.find_one({"_id": to_object_id(last_visible)}, {"created_at": 1})
                if anchor:
                    # _id breaks ties between items listed in the same millisecond
                    ts = anchor["created_at"]
                    query["$or"] = [
                        {"created_at": {"$lt": ts}},
                        {"created_at": ts, "_id": {"$lt": anchor["_id"]}},
                    ]

            docs = self.items.find(query, sort=PAGE_ORDER, limit=page_size)
            items = [serialize(d) for d in docs]
        except PyMongoError as e:
            logger.error(f"Error fetching items: {e}")
            raise

        return {
            "items": items,
            "last_visible": items[-1]["id"] if items else None,
            "has_more": len(items) == page_size,
        }

    def search_items(self, search_term: str, page_size: int = 10) -> List[Dict[str, Any]]:
        # Only the newest page_size listings are scanned; matching is done here, not in the database
        term = (search_term or "").strip().lower()
        try:
            docs = self.items.find({"status": "available"}, sort=[("created_at", DESCENDING)], limit=page_size)
        except PyMongoError as e:
            logger.error(f"Error searching items: {e}")
            raise

        results = []
        for d in docs:
            haystack = f"{d.get('name', '')} {d.get('description', '')} {d.get('category', '')}".lower()
            if term in haystack:
                results.append(serialize(d))
        return results

    def get_recent_items(self, limit: int = 10) -> List[Dict[str, Any]]:
        try:
            docs = self.items.find({"status": "available"}, sort=[("created_at", DESCENDING)], limit=limit)
            return [serialize(d) for d in docs]
        except PyMongoError as e:
            logger.error(f"Error fetching recent items: {e}")
            raise

    def increment_view_count(self, item_id: str) -> None:
        oid = to_object_id(item_id)
        if oid is None:
            return
        try:
            self.items.update_one({"_id": oid}, {"$inc": {"view_count": 1}})
        except PyMongoError as e:
            logger.warning(f"Error incrementing view count for {item_id}: {e}")
