import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from pydantic import ValidationError as PydanticValidationError

from classifieds.core.dependencies import get_catalog, get_media
from classifieds.core.errors import DomainError, ValidationError
from classifieds.core.security import get_current_user
from classifieds.models.user import User
from classifieds.schemas.listing import LikeToggle, ListingCreate, ListingPage, ListingRead
from classifieds.services.catalog import CatalogEngine, ListingFilters
from classifieds.services.media import MediaStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/listings", tags=["listings"])


def _parse_metadata(data: Optional[str]) -> ListingCreate:
    if not data:
        raise ValidationError("Listing data is required")
    try:
        return ListingCreate.model_validate_json(data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "data"
        raise ValidationError(f"{field}: {first.get('msg')}")


@router.get("", response_model=ListingPage)
def search_listings(
    search: Optional[str] = None,
    category: Optional[str] = None,
    condition: Optional[str] = None,
    min_price: Optional[Decimal] = Query(default=None, alias="minPrice"),
    max_price: Optional[Decimal] = Query(default=None, alias="maxPrice"),
    page: int = 1,
    limit: Optional[int] = None,
    catalog: CatalogEngine = Depends(get_catalog),
):
    filters = ListingFilters(
        search=search,
        category=category,
        condition=condition,
        min_price=min_price,
        max_price=max_price,
    )
    return catalog.search(filters, page=page, limit=limit)


@router.get("/{listing_id}", response_model=ListingRead)
def get_listing(listing_id: int, catalog: CatalogEngine = Depends(get_catalog)):
    return catalog.get(listing_id)


@router.post("", response_model=ListingRead, status_code=status.HTTP_201_CREATED)
async def create_listing(
    file: Optional[UploadFile] = File(default=None),
    data: Optional[str] = Form(default=None),
    catalog: CatalogEngine = Depends(get_catalog),
    media: MediaStore = Depends(get_media),
    current_user: User = Depends(get_current_user),
):
    if file is None or not file.filename:
        raise ValidationError("Image is required")

    # validate metadata before anything touches the disk
    listing_in = _parse_metadata(data)

    # one byte past the limit is enough for MediaStore.save to reject it
    contents = await file.read(media.max_bytes + 1) if media.max_bytes is not None else await file.read()
    image_ref = media.save(file.filename, contents)

    try:
        return catalog.create(
            owner_id=current_user.id,
            title=listing_in.title,
            description=listing_in.description,
            price=listing_in.price,
            category=listing_in.category,
            condition=listing_in.condition,
            image_ref=image_ref,
        )
    except DomainError:
        try:
            media.delete(image_ref)
        except OSError:
            logger.exception("Error removing image %s after failed create", image_ref)
        raise


@router.post("/{listing_id}/like", response_model=LikeToggle)
def toggle_like(
    listing_id: int,
    catalog: CatalogEngine = Depends(get_catalog),
    current_user: User = Depends(get_current_user),
):
    return LikeToggle(liked=catalog.toggle_like(current_user.id, listing_id))


@router.delete("/{listing_id}")
def delete_listing(
    listing_id: int,
    catalog: CatalogEngine = Depends(get_catalog),
    current_user: User = Depends(get_current_user),
):
    catalog.delete(current_user.id, listing_id)
    return {"success": True}
