from sqlalchemy import Column, DateTime, ForeignKey, Integer

from classifieds.core.database import Base, utcnow


class Like(Base):
    __tablename__ = "likes"

    # composite key: at most one like per (user, listing)
    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id"), primary_key=True, index=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
