import logging
from typing import List

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, aliased

from classifieds.core.database import utcnow
from classifieds.core.errors import Conflict, NotFound, ValidationError
from classifieds.models.chat import Chat, Message
from classifieds.models.listing import Listing
from classifieds.models.user import User
from classifieds.schemas.chat import ChatSummary, MessageRead, MessageThread

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 5000


def _message_read(message: Message, sender_username: str) -> MessageRead:
    return MessageRead(
        id=message.id,
        chat_id=message.chat_id,
        sender_id=message.sender_id,
        sender_username=sender_username,
        body=message.body,
        created_at=message.created_at,
        read_at=message.read_at,
    )


class ChatEngine:
    """One thread per (listing, buyer, seller); only the two participants see it.

    Chats are never closed. A message stays unread until the participant who
    did not send it opens the thread with ``get_messages``.
    """

    def __init__(self, db: Session, max_start_attempts: int = 3):
        self.db = db
        self.max_start_attempts = max_start_attempts

    def _find(self, listing_id: int, buyer_id: int, seller_id: int) -> Chat | None:
        return self.db.scalar(
            select(Chat).where(
                Chat.listing_id == listing_id,
                Chat.buyer_id == buyer_id,
                Chat.seller_id == seller_id,
            )
        )

    def _participant_chat(self, chat_id: int, user_id: int) -> Chat:
        # non-participants get the same answer as for a missing chat
        chat = self.db.scalar(
            select(Chat).where(
                Chat.id == chat_id,
                or_(Chat.buyer_id == user_id, Chat.seller_id == user_id),
            )
        )
        if chat is None:
            raise NotFound("Chat not found")
        return chat

    def start_or_get(self, listing_id: int, buyer_id: int) -> int:
        listing = self.db.get(Listing, listing_id)
        if listing is None:
            raise NotFound("Listing not found")

        seller_id = listing.owner_id
        if buyer_id == seller_id:
            raise ValidationError("Cannot start chat with yourself")

        for _ in range(self.max_start_attempts):
            chat = self._find(listing_id, buyer_id, seller_id)
            if chat is not None:
                return chat.id

            chat = Chat(listing_id=listing_id, buyer_id=buyer_id, seller_id=seller_id)
            self.db.add(chat)
            try:
                self.db.commit()
            except IntegrityError:
                # lost the insert race on the unique triple; read the winner
                self.db.rollback()
                logger.warning(
                    "chat start race on listing %s buyer %s, re-reading", listing_id, buyer_id
                )
                continue

            logger.info("chat %s started on listing %s by user %s", chat.id, listing_id, buyer_id)
            return chat.id

        raise Conflict("Could not start chat, please retry")

    def list_for_user(self, user_id: int) -> List[ChatSummary]:
        unread = (
            select(func.count(Message.id))
            .where(
                Message.chat_id == Chat.id,
                Message.sender_id != user_id,
                Message.read_at.is_(None),
            )
            .correlate(Chat)
            .scalar_subquery()
        )
        latest = (
            select(Message)
            .where(Message.chat_id == Chat.id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(1)
            .correlate(Chat)
        )
        last_message = latest.with_only_columns(Message.body).scalar_subquery()
        last_message_at = (
            latest.with_only_columns(Message.created_at).scalar_subquery().label("last_message_at")
        )

        buyer = aliased(User)
        seller = aliased(User)
        stmt = (
            select(
                Chat,
                Listing.title,
                Listing.image_url,
                Listing.price,
                buyer.username,
                seller.username,
                unread.label("unread_count"),
                last_message.label("last_message"),
                last_message_at,
            )
            .join(Listing, Listing.id == Chat.listing_id)
            .join(buyer, buyer.id == Chat.buyer_id)
            .join(seller, seller.id == Chat.seller_id)
            .where(or_(Chat.buyer_id == user_id, Chat.seller_id == user_id))
            .order_by(last_message_at.desc().nulls_last(), Chat.id.desc())
        )

        summaries = []
        for chat, title, image, price, buyer_name, seller_name, unread_count, body, body_at in self.db.execute(stmt):
            summaries.append(
                ChatSummary(
                    id=chat.id,
                    listing_id=chat.listing_id,
                    buyer_id=chat.buyer_id,
                    seller_id=chat.seller_id,
                    created_at=chat.created_at,
                    listing_title=title,
                    listing_image=image,
                    listing_price=price,
                    buyer_username=buyer_name,
                    seller_username=seller_name,
                    unread_count=unread_count or 0,
                    last_message=body,
                    last_message_at=body_at,
                )
            )
        return summaries

    def get_messages(self, chat_id: int, requester_id: int) -> MessageThread:
        """Return the thread oldest-first, marking the other side's messages read.

        ``marked_read`` on the result is the number of messages this call
        flipped from unread to read; viewing a thread twice marks nothing the
        second time, and the sender's own messages are never marked.
        """
        chat = self._participant_chat(chat_id, requester_id)

        marked = self.db.execute(
            update(Message)
            .where(
                Message.chat_id == chat.id,
                Message.sender_id != requester_id,
                Message.read_at.is_(None),
            )
            .values(read_at=utcnow()),
            execution_options={"synchronize_session": False},
        ).rowcount
        self.db.commit()

        rows = self.db.execute(
            select(Message, User.username)
            .join(User, User.id == Message.sender_id)
            .where(Message.chat_id == chat.id)
            .order_by(Message.created_at.asc(), Message.id.asc())
            .execution_options(populate_existing=True)
        ).all()

        return MessageThread(
            messages=[_message_read(m, username) for m, username in rows],
            marked_read=marked or 0,
        )

    def send_message(self, chat_id: int, sender_id: int, body: str) -> MessageRead:
        chat = self._participant_chat(chat_id, sender_id)

        body = (body or "").strip()
        if not body:
            raise ValidationError("Message cannot be empty")
        if len(body) > MAX_MESSAGE_LENGTH:
            raise ValidationError(f"Message exceeds {MAX_MESSAGE_LENGTH} characters")

        message = Message(chat_id=chat.id, sender_id=sender_id, body=body)
        self.db.add(message)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise NotFound("Chat not found")

        username = self.db.scalar(select(User.username).where(User.id == sender_id))
        return _message_read(message, username)
