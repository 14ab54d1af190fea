import logging
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from classifieds.core.errors import Conflict, NotFound, Unauthorized, ValidationError
from classifieds.core.security import hash_password, verify_password
from classifieds.models.user import User
from classifieds.schemas.user import UserProfile
from classifieds.services.catalog import CatalogEngine

logger = logging.getLogger(__name__)


def _username(value: str) -> str:
    value = value.strip()
    if not 3 <= len(value) <= 50:
        raise ValidationError("username must be 3-50 characters")
    return value


class AccountService:
    def __init__(self, db: Session, password_hash_rounds: int = 12):
        self.db = db
        self.password_hash_rounds = password_hash_rounds

    def _taken(self, column, value: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(User.id).where(column == value)
        if exclude_id is not None:
            stmt = stmt.where(User.id != exclude_id)
        return self.db.scalar(stmt) is not None

    def register(self, username: str, email: str, password: str) -> User:
        username = _username(username)
        email = email.strip().lower()

        existing = self.db.scalar(
            select(User.id).where(or_(User.email == email, User.username == username))
        )
        if existing is not None:
            raise Conflict("User already exists")

        user = User(
            username=username,
            email=email,
            hashed_password=hash_password(password, self.password_hash_rounds),
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError:
            # another registration took the name/email in between
            self.db.rollback()
            raise Conflict("User already exists")

        logger.info("registered user %s (%s)", user.id, username)
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.db.scalar(select(User).where(User.email == email.strip().lower()))
        if user is None or not verify_password(password, user.hashed_password):
            raise Unauthorized("Invalid credentials")
        return user

    def get(self, user_id: int) -> User:
        user = self.db.get(User, user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    def get_profile(self, username: str) -> UserProfile:
        user = self.db.scalar(select(User).where(User.username == username))
        if user is None:
            raise NotFound("User not found")

        return UserProfile(
            id=user.id,
            username=user.username,
            created_at=user.created_at,
            listings=CatalogEngine(self.db).list_by_owner(user.id),
        )

    def update_profile(
        self,
        user_id: int,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> User:
        user = self.get(user_id)

        if username is not None:
            username = _username(username)
            if self._taken(User.username, username, exclude_id=user_id):
                raise Conflict("Username already taken")
        if email:
            email = email.strip().lower()
            if self._taken(User.email, email, exclude_id=user_id):
                raise Conflict("Email already in use")

        if username:
            user.username = username
        if email:
            user.email = email

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict("Username or email already in use")

        self.db.refresh(user)
        return user
