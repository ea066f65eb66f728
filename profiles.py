"""
Profile store.

The user collection mirrors identity-provider accounts (one document per
uid). Display name and photo changes are pushed back to the provider so
both copies stay in step.
"""

import logging
from typing import Any, Dict, List, Optional

from pymongo.errors import PyMongoError

from auth_provider import IdentityProvider
from database import create_document, now, serialize
from errors import AuthProviderError, InvalidInputError, NotFoundError
from media import CloudinaryService
from schemas import RequestStatus, User

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = {"full_name", "username", "phone_number", "registration_no", "bio", "location", "website"}
COMPLETION_FIELDS = ["full_name", "username", "profile_picture", "bio", "location"]
MIN_PASSWORD_LENGTH = 6


class ProfileService:

    def __init__(self, db, auth: Optional[IdentityProvider] = None, media: Optional[CloudinaryService] = None):
        self.db = db
        self.users = db["user"]
        self.auth = auth or IdentityProvider()
        self.media = media or CloudinaryService()

    def get_profile(self, user_id: str) -> Dict[str, Any]:
        try:
            doc = self.users.find_one({"_id": user_id})
        except PyMongoError as e:
            logger.error(f"Error fetching profile {user_id}: {e}")
            return {"success": False, "error": str(e) or "Failed to fetch profile"}
        if not doc:
            return {"success": False, "error": "User profile not found"}
        return {"success": True, "data": serialize(doc)}

    def create_user_profile(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        profile = User(
            uid=user_id,
            email=data.get("email") or None,
            full_name=data.get("full_name") or "",
            username=(data.get("username") or "").lower(),
            phone_number=data.get("phone_number") or "",
            registration_no=data.get("registration_no") or "",
            profile_picture=data.get("profile_picture") or None,
        )
        try:
            create_document(self.db, "user", profile, doc_id=user_id)
        except PyMongoError as e:
            logger.error(f"Error creating user profile {user_id}: {e}")
            return {"success": False, "error": str(e) or "Failed to create user profile"}
        logger.info(f"Created profile for user {user_id}")
        return {"success": True, "data": dict(profile.model_dump(), id=user_id)}

    def get_user_by_username(self, username: str, exclude_user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        query: Dict[str, Any] = {"username": username.strip().lower()}
        if exclude_user_id:
            query["_id"] = {"$ne": exclude_user_id}
        return serialize(self.users.find_one(query))

    def update_profile(self, user_id: str, data: Dict[str, Any], id_token: Optional[str] = None) -> bool:
        unknown = set(data) - EDITABLE_FIELDS
        if unknown:
            raise InvalidInputError(f"Fields cannot be updated: {', '.join(sorted(unknown))}")

        update = dict(data)
        if "full_name" in update:
            if not (update["full_name"] or "").strip():
                raise InvalidInputError("Full name cannot be empty")
            update["full_name"] = update["full_name"].strip()

        if "username" in update:
            username = (update["username"] or "").strip().lower()
            if not username:
                raise InvalidInputError("Username cannot be empty")
            # read-then-write; two users can still race for the same name
            if self.get_user_by_username(username, exclude_user_id=user_id):
                raise InvalidInputError("Username is already taken")
            update["username"] = username

        update["updated_at"] = now()
        try:
            result = self.users.update_one({"_id": user_id}, {"$set": update})
        except PyMongoError as e:
            logger.error(f"Error updating profile {user_id}: {e}")
            raise
        if result.matched_count == 0:
            raise NotFoundError("User profile not found")

        if id_token and "full_name" in update:
            try:
                self.auth.update_account(id_token, display_name=update["full_name"])
            except AuthProviderError as e:
                logger.warning(f"Failed to update auth profile for {user_id}: {e.message}")
        return True

    def update_profile_picture(self, user_id: str, image_url: str, public_id: Optional[str],
                               id_token: Optional[str] = None) -> bool:
        doc = self.users.find_one({"_id": user_id}, {"profile_picture_public_id": 1})
        if not doc:
            raise NotFoundError("User profile not found")
        old_public_id = doc.get("profile_picture_public_id")

        self.users.update_one({"_id": user_id}, {"$set": {
            "profile_picture": image_url,
            "profile_picture_public_id": public_id,
            "updated_at": now(),
        }})

        if id_token:
            try:
                self.auth.update_account(id_token, photo_url=image_url)
            except AuthProviderError as e:
                logger.warning(f"Failed to update auth photo for {user_id}: {e.message}")

        if old_public_id and old_public_id != public_id:
            result = self.media.delete_image(old_public_id)
            if not result["success"]:
                logger.warning(f"Old profile picture {old_public_id} not deleted: {result['error']}")
        return True

    def change_password(self, email: str, current_password: str, new_password: str) -> Dict[str, Any]:
        if not email:
            return {"success": False, "error": "User not authenticated"}
        if not current_password or not new_password:
            return {"success": False, "error": "Current and new passwords are required"}
        if len(new_password) < MIN_PASSWORD_LENGTH:
            return {"success": False, "error": f"New password must be at least {MIN_PASSWORD_LENGTH} characters"}

        try:
            fresh = self.auth.sign_in_with_password(email, current_password)
        except AuthProviderError:
            return {"success": False, "error": "Current password is incorrect"}

        try:
            updated = self.auth.update_account(fresh.id_token, password=new_password)
        except AuthProviderError as e:
            logger.error(f"Error changing password for {email}: {e.message}")
            return {"success": False, "error": e.message or "Failed to change password"}
        # the provider revokes earlier tokens on a password change
        return {
            "success": True,
            "message": "Password changed successfully",
            "id_token": updated.get("idToken"),
            "refresh_token": updated.get("refreshToken"),
            "expires_in": int(updated.get("expiresIn", 3600)),
        }

    def get_user_stats(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            doc = self.users.find_one({"_id": user_id})
            if not doc:
                return None
            items_listed = self.db["item"].count_documents({"owner_id": user_id})
            items_traded = self.db["request"].count_documents({
                "status": RequestStatus.ACCEPTED.value,
                "$or": [{"sender_id": user_id}, {"receiver_id": user_id}],
            })
        except PyMongoError as e:
            logger.error(f"Error fetching user stats for {user_id}: {e}")
            return {"items_listed": 0, "items_traded": 0, "rating": 5.0}

        return {
            "items_listed": items_listed,
            "items_traded": items_traded,
            "rating": doc.get("rating", 5.0),
            "join_date": doc.get("created_at"),
            "account_status": doc.get("account_status", "active"),
        }

    def get_profile_completion(self, user_id: str) -> int:
        doc = self.users.find_one({"_id": user_id})
        if not doc:
            return 0
        filled = 0
        for field in COMPLETION_FIELDS:
            value = doc.get(field)
            if isinstance(value, str):
                value = value.strip()
            if value:
                filled += 1
        return round(filled / len(COMPLETION_FIELDS) * 100)

    def update_user_rating(self, user_id: str, new_rating: float) -> Dict[str, Any]:
        if new_rating < 1 or new_rating > 5:
            return {"success": False, "error": "Rating must be between 1 and 5"}
        doc = self.users.find_one({"_id": user_id}, {"rating": 1, "review_count": 1})
        if not doc:
            return {"success": False, "error": "User not found"}

        current = doc.get("rating", 5.0)
        count = doc.get("review_count", 0)
        average = (current * count + new_rating) / (count + 1)
        self.users.update_one({"_id": user_id}, {"$set": {
            "rating": round(average, 1),
            "review_count": count + 1,
            "updated_at": now(),
        }})
        return {"success": True, "rating": average}

    def get_notifications(self, user_id: str, unread_only: bool = False) -> List[Dict[str, Any]]:
        doc = self.users.find_one({"_id": user_id}, {"notifications": 1})
        if not doc:
            raise NotFoundError("User profile not found")
        notifications = doc.get("notifications") or []
        if unread_only:
            notifications = [n for n in notifications if not n.get("read")]
        return sorted(notifications, key=lambda n: n.get("created_at"), reverse=True)

    def mark_notifications_read(self, user_id: str) -> Dict[str, Any]:
        self.users.update_one({"_id": user_id}, {"$set": {"notifications.$[].read": True}})
        return {"success": True}
