from typing import List

from fastapi import APIRouter, Depends

from classifieds.core.dependencies import get_chat
from classifieds.core.security import get_current_user
from classifieds.models.user import User
from classifieds.schemas.chat import ChatStart, ChatSummary, MessageCreate, MessageRead, MessageThread
from classifieds.services.chat import ChatEngine

router = APIRouter(prefix="/api", tags=["chat"])


@router.post("/chat/start/{listing_id}", response_model=ChatStart)
def start_chat(
    listing_id: int,
    chat: ChatEngine = Depends(get_chat),
    current_user: User = Depends(get_current_user),
):
    return ChatStart(chatId=chat.start_or_get(listing_id, current_user.id))


@router.get("/chats", response_model=List[ChatSummary])
def list_chats(
    chat: ChatEngine = Depends(get_chat),
    current_user: User = Depends(get_current_user),
):
    return chat.list_for_user(current_user.id)


@router.get("/chats/{chat_id}/messages", response_model=MessageThread)
def get_messages(
    chat_id: int,
    chat: ChatEngine = Depends(get_chat),
    current_user: User = Depends(get_current_user),
):
    # opening the thread marks the other participant's messages read
    return chat.get_messages(chat_id, current_user.id)


@router.post("/chats/{chat_id}/messages", response_model=MessageRead)
def send_message(
    chat_id: int,
    message_in: MessageCreate,
    chat: ChatEngine = Depends(get_chat),
    current_user: User = Depends(get_current_user),
):
    return chat.send_message(chat_id, current_user.id, message_in.body)
