from datetime import datetime, timedelta, timezone
from functools import lru_cache

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from classifieds.core.config import Settings
from classifieds.core.database import get_db
from classifieds.core.errors import Unauthorized
from classifieds.models.user import User

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache
def _pwd_context(rounds: int) -> CryptContext:
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__default_rounds=rounds)


def hash_password(password: str, rounds: int = 12) -> str:
    return _pwd_context(rounds).hash(password)


def verify_password(password: str, hashed: str) -> bool:
    # rounds are read back from the hash itself
    return _pwd_context(12).verify(password, hashed)


def create_access_token(user_id: int, settings: Settings) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    return jwt.encode({"id": user_id, "exp": expire}, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str, settings: Settings) -> int:
    """Return the user id carried by ``token`` or raise ``Unauthorized``."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        raise Unauthorized("Invalid or expired token")

    user_id = payload.get("id")
    if not isinstance(user_id, int):
        raise Unauthorized("Invalid or expired token")
    return user_id


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> User:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise Unauthorized("Missing bearer token")

    user_id = decode_access_token(credentials.credentials, settings)
    user = db.get(User, user_id)
    if user is None:
        raise Unauthorized("Invalid or expired token")
    return user
