"""
Database Schemas for BarterX (peer-to-peer barter marketplace)

Each Pydantic model maps to a MongoDB collection (lowercased class name;
BarterRequest is stored in "request").
Use these for validation and to keep collections consistent.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr

CATEGORIES = [
    "Electronics",
    "Clothes",
    "Books",
    "Tools",
    "Furniture",
    "Sports",
    "Home & Kitchen",
    "Art & Collectibles",
    "Toys",
    "Project Kits",
    "Hostel Essentials",
    "Sports Gear/Equipment",
    "Other",
]

CONDITIONS = ["New", "Like New", "Good", "Fair", "Poor"]


class RequestStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"


class RequestRole(str, Enum):
    SENDER = "sender"
    RECEIVER = "receiver"


# Profile mirror of an identity-provider account; _id is the provider uid
class User(BaseModel):
    uid: str
    email: Optional[EmailStr] = None
    full_name: str = ""
    username: str = Field("", description="Lowercased handle")
    phone_number: str = ""
    registration_no: str = ""
    bio: str = Field("", max_length=500)
    location: str = ""
    website: str = ""
    profile_picture: Optional[str] = None
    profile_picture_public_id: Optional[str] = None
    rating: float = Field(5.0, ge=0, le=5)
    review_count: int = Field(0, ge=0)
    total_trades: int = Field(0, ge=0)
    account_status: Literal["active", "suspended"] = "active"
    items_listed: List[str] = Field(default_factory=list)
    notifications: List[dict] = Field(default_factory=list)


class ItemImage(BaseModel):
    url: str
    public_id: Optional[str] = None


# An item offered for barter
class Item(BaseModel):
    owner_id: str = Field(..., description="Owner user id")
    owner_name: Optional[str] = None
    owner_phone: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=140)
    description: str = Field(..., min_length=1, max_length=5000)
    category: str = Field(..., description="One of CATEGORIES")
    condition: str = Field(..., description="One of CONDITIONS")
    price: float = Field(..., gt=0)
    images: List[ItemImage] = Field(default_factory=list, max_length=2)
    view_count: int = Field(0, ge=0)
    liked_by: List[str] = Field(default_factory=list)
    status: Literal["available", "traded", "unavailable"] = "available"


# A proposal from sender to the owner (receiver) of an item
class BarterRequest(BaseModel):
    sender_id: str
    receiver_id: str
    item_id: str
    status: RequestStatus = RequestStatus.PENDING
    message: str = Field("", max_length=1000)


# Appended to user.notifications, never pruned
class Notification(BaseModel):
    type: Literal["barter_request"] = "barter_request"
    sender_id: str
    item_id: str
    request_id: str
    read: bool = False
    created_at: datetime


# Two-party thread; _id is the sorted participant ids joined by "_"
class Conversation(BaseModel):
    participants: List[str] = Field(..., min_length=2, max_length=2)
    last_message: str = ""
    last_message_time: Optional[datetime] = None
    last_message_sender_id: Optional[str] = None


class Message(BaseModel):
    conversation_id: str
    sender_id: str
    text: str = Field(..., min_length=1, max_length=5000)
    read: bool = Field(False)
