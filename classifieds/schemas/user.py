from datetime import datetime
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints

from classifieds.schemas.listing import ListingRead

# surrounding whitespace is dropped before the length check
Username = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=50)]


class UserCreate(BaseModel):
    username: Username
    email: EmailStr
    password: str = Field(min_length=6, max_length=128)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserUpdate(BaseModel):
    username: Optional[Username] = None
    email: Optional[EmailStr] = None


class UserRead(BaseModel):
    id: int
    username: str
    email: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class UserProfile(BaseModel):
    """Public profile: no email."""

    id: int
    username: str
    created_at: datetime
    listings: List[ListingRead] = []


class Token(BaseModel):
    token: str
    username: Optional[str] = None
