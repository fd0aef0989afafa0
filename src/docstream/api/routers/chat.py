from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status

from ...domain.message_models import ChatSessionCreate, ConversationMessage, ResponseMessagesCreate
from ...infrastructure.chat_store import get_chat_store
from ...security.auth import User, get_current_user
from ...services.message_merger import merge_messages, sanitize_response_messages

router = APIRouter(prefix="/chats", tags=["chats"])


def _require_session(chat_id: str, user: User) -> None:
    sess = get_chat_store().get_session(chat_id)
    if not sess:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Chat not found")
    if sess.created_by != user.email:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


@router.post("", status_code=status.HTTP_201_CREATED)
def create_chat(body: ChatSessionCreate, user: User = Depends(get_current_user)) -> Dict[str, Any]:
    return get_chat_store().create_session(created_by=user.email, title=body.title).to_wire()


@router.post("/{chat_id}/messages", status_code=status.HTTP_201_CREATED)
def add_message(chat_id: str, body: ConversationMessage, user: User = Depends(get_current_user)) -> Dict[str, Any]:
    _require_session(chat_id, user)
    return get_chat_store().add_message(chat_id, body).to_wire()


@router.post("/{chat_id}/responses", status_code=status.HTTP_201_CREATED)
def add_response(chat_id: str, body: ResponseMessagesCreate, user: User = Depends(get_current_user)) -> List[Dict[str, Any]]:
    """Persist a generated turn; dangling tool calls and empty parts are dropped first."""
    _require_session(chat_id, user)
    store = get_chat_store()
    saved = [store.add_message(chat_id, m) for m in sanitize_response_messages(body.messages, body.reasoning)]
    return [m.to_wire() for m in saved]


@router.get("/{chat_id}/messages")
def list_messages(chat_id: str, user: User = Depends(get_current_user)) -> List[Dict[str, Any]]:
    _require_session(chat_id, user)
    return [m.to_wire() for m in merge_messages(get_chat_store().list_messages(chat_id))]
