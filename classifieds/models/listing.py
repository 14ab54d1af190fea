from enum import Enum

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from classifieds.core.database import Base, utcnow


class Condition(str, Enum):
    NEW = "New"
    LIKE_NEW = "Like New"
    GOOD = "Good"
    FAIR = "Fair"
    POOR = "Poor"


class Listing(Base):
    __tablename__ = "listings"
    __table_args__ = (
        CheckConstraint(
            "condition IN ('New', 'Like New', 'Good', 'Fair', 'Poor')",
            name="ck_listings_condition",
        ),
        CheckConstraint("price >= 0", name="ck_listings_price"),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    price = Column(Numeric(10, 2), nullable=False, default=0)
    category = Column(String(100), nullable=False, index=True)
    condition = Column(String(20), nullable=False)

    # "/images/<hex>.<ext>", served from media_root
    image_url = Column(String(512), nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    owner = relationship("User", back_populates="listings")
