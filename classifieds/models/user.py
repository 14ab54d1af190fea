from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from classifieds.core.database import Base, utcnow


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    listings = relationship("Listing", back_populates="owner")
