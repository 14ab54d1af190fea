import logging
import math
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import DataError, IntegrityError
from sqlalchemy.orm import Session, aliased

from classifieds.core.errors import Conflict, NotFound, NotFoundOrUnauthorized, ValidationError
from classifieds.models.chat import Chat, Message
from classifieds.models.like import Like
from classifieds.models.listing import Condition, Listing
from classifieds.models.user import User
from classifieds.schemas.listing import ListingPage, ListingRead
from classifieds.services.media import MediaStore

logger = logging.getLogger(__name__)

# listings.price is Numeric(10, 2)
MAX_PRICE = Decimal("99999999.99")


def _text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _condition(value) -> str:
    try:
        return Condition(value).value
    except ValueError:
        raise ValidationError(
            f"condition must be one of: {', '.join(c.value for c in Condition)}"
        )


def _price(value, field: str) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")
    if not price.is_finite() or price < 0:
        raise ValidationError(f"{field} must be a non-negative number")
    return price


def _listing_price(value) -> Decimal:
    price = _price(value, "price")
    if price > MAX_PRICE:
        raise ValidationError(f"price must not exceed {MAX_PRICE}")
    if price != price.quantize(Decimal("0.01")):
        raise ValidationError("price must have at most 2 decimal places")
    return price


@dataclass
class ListingFilters:
    """Optional, conjunctive search filters.

    ``clauses()`` turns each supplied filter into one SQLAlchemy predicate;
    values travel as bound parameters, never through string formatting.
    """

    search: Optional[str] = None
    category: Optional[str] = None
    condition: Optional[str] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None

    def clauses(self) -> list:
        clauses = []

        search = _text(self.search)
        if search:
            # title OR description, case-insensitive substring, % and _ literal
            clauses.append(
                Listing.title.icontains(search, autoescape=True)
                | Listing.description.icontains(search, autoescape=True)
            )

        category = _text(self.category)
        if category:
            clauses.append(Listing.category == category)

        condition = _text(self.condition)
        if condition:
            clauses.append(Listing.condition == _condition(condition))

        if self.min_price is not None:
            clauses.append(Listing.price >= _price(self.min_price, "minPrice"))

        if self.max_price is not None:
            clauses.append(Listing.price <= _price(self.max_price, "maxPrice"))

        return clauses


class CatalogEngine:
    def __init__(
        self,
        db: Session,
        media: MediaStore | None = None,
        default_page_size: int = 20,
        max_page_size: int = 100,
    ):
        self.db = db
        self.media = media
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    # ---------------------------
    # queries
    # ---------------------------
    def _listing_query(self):
        likes = (
            select(func.count())
            .select_from(Like)
            .where(Like.listing_id == Listing.id)
            .correlate(Listing)
            .scalar_subquery()
        )
        return select(Listing, User.username, likes.label("likes")).join(
            User, User.id == Listing.owner_id
        )

    @staticmethod
    def _to_read(listing: Listing, username: str, likes: int) -> ListingRead:
        data = ListingRead.model_validate(listing)
        data.username = username
        data.likes = likes or 0
        return data

    def _rows(self, stmt) -> List[ListingRead]:
        return [self._to_read(l, username, likes) for l, username, likes in self.db.execute(stmt).all()]

    def _page_window(self, page: int, limit: Optional[int]) -> tuple[int, int]:
        if limit is None:
            limit = self.default_page_size
        if page < 1:
            raise ValidationError("page must be >= 1")
        if limit < 1:
            raise ValidationError("limit must be >= 1")
        return page, min(limit, self.max_page_size)

    def search(
        self,
        filters: ListingFilters | None = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> ListingPage:
        filters = filters or ListingFilters()
        page, limit = self._page_window(page, limit)
        clauses = filters.clauses()

        total = self.db.scalar(select(func.count(Listing.id)).where(*clauses)) or 0

        stmt = (
            self._listing_query()
            .where(*clauses)
            .order_by(Listing.created_at.desc(), Listing.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )

        return ListingPage(
            listings=self._rows(stmt),
            total=total,
            page=page,
            pages=math.ceil(total / limit),
            limit=limit,
        )

    def get(self, listing_id: int) -> ListingRead:
        row = self.db.execute(self._listing_query().where(Listing.id == listing_id)).first()
        if row is None:
            raise NotFound("Listing not found")
        return self._to_read(*row)

    def list_by_owner(self, owner_id: int) -> List[ListingRead]:
        stmt = (
            self._listing_query()
            .where(Listing.owner_id == owner_id)
            .order_by(Listing.created_at.desc(), Listing.id.desc())
        )
        return self._rows(stmt)

    def list_liked_by(self, user_id: int) -> List[ListingRead]:
        liked = aliased(Like)
        stmt = (
            self._listing_query()
            .join(liked, liked.listing_id == Listing.id)
            .where(liked.user_id == user_id)
            .order_by(liked.created_at.desc(), Listing.id.desc())
        )
        return self._rows(stmt)

    # ---------------------------
    # mutations
    # ---------------------------
    def create(
        self,
        owner_id: int,
        title: str,
        description: Optional[str],
        price,
        category: str,
        condition,
        image_ref: str,
    ) -> ListingRead:
        title = _text(title)
        category = _text(category)
        if not title:
            raise ValidationError("title is required")
        if not category:
            raise ValidationError("category is required")
        if not image_ref:
            raise ValidationError("Image is required")

        listing = Listing(
            owner_id=owner_id,
            title=title,
            description=description,
            price=_listing_price(price),
            category=category,
            condition=_condition(condition),
            image_url=image_ref,
        )
        self.db.add(listing)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise Conflict("Listing could not be stored")
        except DataError:
            self.db.rollback()
            raise ValidationError("Listing data out of range")

        logger.info("listing %s created by user %s", listing.id, owner_id)
        return self.get(listing.id)

    def toggle_like(self, user_id: int, listing_id: int) -> bool:
        """Flip the (user, listing) like; returns the new state."""
        if self.db.get(Listing, listing_id) is None:
            raise NotFound("Listing not found")

        removed = self.db.execute(
            delete(Like).where(Like.user_id == user_id, Like.listing_id == listing_id),
            execution_options={"synchronize_session": False},
        ).rowcount
        if removed:
            self.db.commit()
            return False

        self.db.add(Like(user_id=user_id, listing_id=listing_id))
        try:
            self.db.commit()
        except IntegrityError:
            # a concurrent toggle inserted the same pair first; the pair is liked
            self.db.rollback()
            logger.warning("like race on user %s / listing %s", user_id, listing_id)
        return True

    def delete(self, requester_id: int, listing_id: int) -> None:
        listing = self.db.scalar(
            select(Listing).where(Listing.id == listing_id, Listing.owner_id == requester_id)
        )
        if listing is None:
            raise NotFoundOrUnauthorized("Listing not found or unauthorized")

        image_ref = listing.image_url
        no_sync = {"synchronize_session": False}
        chat_ids = select(Chat.id).where(Chat.listing_id == listing_id)

        self.db.execute(delete(Message).where(Message.chat_id.in_(chat_ids)), execution_options=no_sync)
        self.db.execute(delete(Chat).where(Chat.listing_id == listing_id), execution_options=no_sync)
        self.db.execute(delete(Like).where(Like.listing_id == listing_id), execution_options=no_sync)
        self.db.delete(listing)
        self.db.commit()
        logger.info("listing %s deleted by owner %s", listing_id, requester_id)

        if self.media is not None and image_ref:
            try:
                self.media.delete(image_ref)
            except (OSError, ValueError):
                logger.exception("Error deleting image %s of listing %s", image_ref, listing_id)
