from fastapi import Depends, Request
from sqlalchemy.orm import Session

from classifieds.core.config import Settings
from classifieds.core.database import get_db
from classifieds.core.security import get_app_settings
from classifieds.services.accounts import AccountService
from classifieds.services.catalog import CatalogEngine
from classifieds.services.chat import ChatEngine
from classifieds.services.media import MediaStore


def get_media(request: Request) -> MediaStore:
    return request.app.state.media


def get_catalog(
    db: Session = Depends(get_db),
    media: MediaStore = Depends(get_media),
    settings: Settings = Depends(get_app_settings),
) -> CatalogEngine:
    return CatalogEngine(
        db,
        media=media,
        default_page_size=settings.default_page_size,
        max_page_size=settings.max_page_size,
    )


def get_chat(db: Session = Depends(get_db)) -> ChatEngine:
    return ChatEngine(db)


def get_accounts(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> AccountService:
    return AccountService(db, password_hash_rounds=settings.password_hash_rounds)
