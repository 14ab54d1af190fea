from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer


class ChatStart(BaseModel):
    chatId: int


class ChatSummary(BaseModel):
    id: int
    listing_id: int
    buyer_id: int
    seller_id: int
    created_at: datetime

    listing_title: str
    listing_image: str
    listing_price: Decimal
    buyer_username: str
    seller_username: str

    unread_count: int = 0
    last_message: Optional[str] = None
    last_message_at: Optional[datetime] = None

    @field_serializer("listing_price")
    def _price_as_number(self, price: Decimal) -> float:
        return float(price)


class MessageCreate(BaseModel):
    # the web client posts {"message": ...}
    body: str = Field(
        min_length=1,
        max_length=5000,
        validation_alias=AliasChoices("body", "message"),
    )


class MessageRead(BaseModel):
    id: int
    chat_id: int
    sender_id: int
    sender_username: str
    body: str
    created_at: datetime
    read_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MessageThread(BaseModel):
    messages: List[MessageRead]
    # how many of the other participant's messages this read flipped to read
    marked_read: int = 0
