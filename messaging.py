"""Two-party conversations between traders."""

import logging
from typing import Any, Dict, List

from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document, get_documents, now, serialize
from errors import NotFoundError
from schemas import Conversation, Message

logger = logging.getLogger(__name__)


def conversation_id_for(user_a: str, user_b: str) -> str:
    return "_".join(sorted([user_a, user_b]))


class ConversationsRepository:

    def __init__(self, db):
        self.db = db
        self.conversations = db["conversation"]

    def create_conversation(self, user_a: str, user_b: str) -> str:
        """Return the conversation id for the pair, creating the conversation if needed."""
        conversation_id = conversation_id_for(user_a, user_b)
        try:
            if self.conversations.find_one({"_id": conversation_id}) is None:
                conversation = Conversation(participants=[user_a, user_b], last_message_time=now())
                create_document(self.db, "conversation", conversation, doc_id=conversation_id)
        except DuplicateKeyError:
            # created concurrently by the other participant
            pass
        except PyMongoError as e:
            logger.error(f"Error creating conversation {conversation_id}: {e}")
            raise
        return conversation_id

    def get_conversation(self, conversation_id: str) -> Dict[str, Any]:
        doc = self.conversations.find_one({"_id": conversation_id})
        if not doc:
            raise NotFoundError("Conversation not found")
        return serialize(doc)

    def get_user_conversations(self, user_id: str) -> List[Dict[str, Any]]:
        return get_documents(self.db, "conversation", {"participants": user_id},
                             sort=[("last_message_time", DESCENDING)])

    def send_message(self, conversation_id: str, sender_id: str, text: str) -> Dict[str, Any]:
        message = Message(conversation_id=conversation_id, sender_id=sender_id, text=text)
        try:
            message_id = create_document(self.db, "message", message)
            self.conversations.update_one({"_id": conversation_id}, {"$set": {
                "last_message": text,
                "last_message_time": now(),
                "last_message_sender_id": sender_id,
            }})
        except PyMongoError as e:
            logger.error(f"Error sending message to {conversation_id}: {e}")
            raise
        return {"success": True, "message_id": message_id}

    def get_messages(self, conversation_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        # newest `limit` messages, oldest first
        messages = get_documents(self.db, "message", {"conversation_id": conversation_id},
                                 sort=[("created_at", DESCENDING)], limit=limit)
        messages.reverse()
        return messages
