"""
Barter request workflow.

A request links a sender, the item's owner (receiver) and the item. It
starts out pending and is moved to accepted or declined by a status update.
Creating a request also appends a notification to the receiver's profile;
the two writes are independent, so a failure between them leaves a request
without a notification.
"""

import logging
from typing import Any, Dict, List, Union

from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from database import create_document, now, serialize, to_object_id
from errors import InvalidInputError, NotFoundError
from schemas import BarterRequest, Notification, RequestRole, RequestStatus

logger = logging.getLogger(__name__)


class RequestsRepository:

    def __init__(self, db):
        self.db = db
        self.requests = db["request"]
        self.items = db["item"]
        self.users = db["user"]

    def create_request(self, sender_id: str, receiver_id: str, item_id: str, message: str = "") -> Dict[str, Any]:
        oid = to_object_id(item_id)
        item = self.items.find_one({"_id": oid}, {"owner_id": 1}) if oid else None
        if not item:
            raise NotFoundError("Item not found")
        if item.get("owner_id") == sender_id:
            raise InvalidInputError("You cannot send a request for your own item")

        request = BarterRequest(sender_id=sender_id, receiver_id=receiver_id, item_id=item_id, message=message)
        try:
            data = request.model_dump()
            data["status"] = request.status.value
            request_id = create_document(self.db, "request", data)

            notification = Notification(
                sender_id=sender_id,
                item_id=item_id,
                request_id=request_id,
                created_at=now(),
            )
            self.users.update_one({"_id": receiver_id}, {"$push": {"notifications": notification.model_dump()}})
        except PyMongoError as e:
            logger.error(f"Error creating request for item {item_id}: {e}")
            raise

        logger.info(f"Barter request {request_id} created: {sender_id} -> {receiver_id} for item {item_id}")
        return {"success": True, "request_id": request_id}

    def get_request_by_id(self, request_id: str) -> Dict[str, Any]:
        oid = to_object_id(request_id)
        doc = self.requests.find_one({"_id": oid}) if oid else None
        if not doc:
            raise NotFoundError("Request not found")
        return serialize(doc)

    def get_user_requests(self, user_id: str, role: Union[RequestRole, str] = RequestRole.RECEIVER) -> List[Dict[str, Any]]:
        try:
            role = RequestRole(role)
        except ValueError:
            raise InvalidInputError(f"Invalid role: {role}")
        field = "receiver_id" if role == RequestRole.RECEIVER else "sender_id"
        try:
            docs = self.requests.find({field: user_id}, sort=[("created_at", DESCENDING)])
            return [serialize(d) for d in docs]
        except PyMongoError as e:
            logger.error(f"Error fetching {role.value} requests for {user_id}: {e}")
            raise

    def update_request_status(self, request_id: str, status: Union[RequestStatus, str]) -> Dict[str, Any]:
        # No check on the current status or on who is calling
        try:
            status = RequestStatus(status)
        except ValueError:
            raise InvalidInputError(f"Invalid status: {status}")
        oid = to_object_id(request_id)
        if oid is None:
            raise NotFoundError("Request not found")
        try:
            result = self.requests.update_one({"_id": oid}, {"$set": {"status": status.value, "updated_at": now()}})
        except PyMongoError as e:
            logger.error(f"Error updating request {request_id}: {e}")
            raise
        if result.matched_count == 0:
            raise NotFoundError("Request not found")
        return {"success": True}
