"""
Request models for the marketplace API.

Field names follow the camelCase JSON contract of the web client.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OrderStatus(str, Enum):
    """Order lifecycle states."""
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class OrderReview(CamelModel):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class OrderCreateRequest(CamelModel):
    """Payload for posting a new job."""
    customer_id: str = Field(..., alias="customerId")
    worker_id: Optional[str] = Field(None, alias="workerId")
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    category: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    location: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    status: OrderStatus = OrderStatus.PENDING
    ai_suggested: bool = Field(False, alias="aiSuggested")


class OrderUpdateRequest(CamelModel):
    """Partial order update; unset fields are left untouched."""
    worker_id: Optional[str] = Field(None, alias="workerId")
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    location: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    status: Optional[OrderStatus] = None
    review: Optional[OrderReview] = None

    @field_validator("title", "category", "price", "status", mode="before")
    @classmethod
    def reject_null(cls, value):
        # Every order carries these; omit them to leave them unchanged.
        if value is None:
            raise ValueError("may not be null")
        return value


class ChatCreateRequest(CamelModel):
    participant_ids: List[str] = Field(..., alias="participantIds", min_length=2)


class MessageCreateRequest(CamelModel):
    chat_id: str = Field(..., alias="chatId")
    sender_id: str = Field(..., alias="senderId")
    content: str = ""
    attachments: List[str] = Field(default_factory=list)


class NotificationCreateRequest(CamelModel):
    user_id: str = Field(..., alias="userId")
    title: str
    message: str
    type: str = "info"
