from fastapi import APIRouter, Depends

from classifieds.core.config import Settings
from classifieds.core.dependencies import get_accounts
from classifieds.core.security import create_access_token, get_app_settings, get_current_user
from classifieds.models.user import User
from classifieds.schemas.user import Token, UserCreate, UserLogin, UserRead
from classifieds.services.accounts import AccountService

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=Token, response_model_exclude_none=True)
def register(
    user_in: UserCreate,
    accounts: AccountService = Depends(get_accounts),
    settings: Settings = Depends(get_app_settings),
):
    user = accounts.register(user_in.username, user_in.email, user_in.password)
    return Token(token=create_access_token(user.id, settings))


@router.post("/login", response_model=Token)
def login(
    credentials: UserLogin,
    accounts: AccountService = Depends(get_accounts),
    settings: Settings = Depends(get_app_settings),
):
    user = accounts.authenticate(credentials.email, credentials.password)
    return Token(token=create_access_token(user.id, settings), username=user.username)


@router.get("/me", response_model=UserRead)
def me(current_user: User = Depends(get_current_user)):
    return current_user
