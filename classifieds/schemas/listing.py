from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from classifieds.models.listing import Condition


class ListingBase(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(ge=0)
    category: str = Field(min_length=1, max_length=100)
    condition: Condition


class ListingCreate(ListingBase):
    """Metadata sent as the JSON ``data`` field next to the image file."""


class ListingRead(BaseModel):
    id: int
    owner_id: int
    username: Optional[str] = None
    title: str
    description: Optional[str] = None
    price: Decimal
    category: str
    condition: str
    image_url: str
    likes: int = 0
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_serializer("price")
    def _price_as_number(self, price: Decimal) -> float:
        return float(price)


class ListingPage(BaseModel):
    listings: List[ListingRead]
    total: int
    page: int
    pages: int
    limit: int


class LikeToggle(BaseModel):
    liked: bool
