from typing import List

from fastapi import APIRouter, Depends

from classifieds.core.dependencies import get_accounts, get_catalog
from classifieds.core.security import get_current_user
from classifieds.models.user import User
from classifieds.schemas.listing import ListingRead
from classifieds.schemas.user import UserProfile, UserRead, UserUpdate
from classifieds.services.accounts import AccountService
from classifieds.services.catalog import CatalogEngine

router = APIRouter(prefix="/api/users", tags=["users"])


# the /me routes are declared before /{username} so "me" is never a username lookup
@router.get("/me/likes", response_model=List[ListingRead])
def my_likes(
    catalog: CatalogEngine = Depends(get_catalog),
    current_user: User = Depends(get_current_user),
):
    return catalog.list_liked_by(current_user.id)


@router.get("/me/listings", response_model=List[ListingRead])
def my_listings(
    catalog: CatalogEngine = Depends(get_catalog),
    current_user: User = Depends(get_current_user),
):
    return catalog.list_by_owner(current_user.id)


@router.patch("/me", response_model=UserRead)
def update_me(
    user_in: UserUpdate,
    accounts: AccountService = Depends(get_accounts),
    current_user: User = Depends(get_current_user),
):
    # exclude_unset: fields that were not sent stay untouched
    data = user_in.model_dump(exclude_unset=True)
    return accounts.update_profile(
        current_user.id,
        username=data.get("username"),
        email=data.get("email"),
    )


@router.get("/{username}", response_model=UserProfile)
def get_profile(username: str, accounts: AccountService = Depends(get_accounts)):
    return accounts.get_profile(username)
