from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from threading import RLock
from typing import Dict, List, Optional, Protocol
import os
import uuid

from ..domain.message_models import ChatSession, ConversationMessage


class ChatStore(Protocol):
    def create_session(self, created_by: str, title: Optional[str] = None) -> ChatSession: ...

    def get_session(self, chat_id: str) -> Optional[ChatSession]: ...

    def add_message(self, chat_id: str, message: ConversationMessage) -> ConversationMessage: ...

    def list_messages(self, chat_id: str) -> List[ConversationMessage]: ...


@dataclass
class _Session:
    chat_id: str
    title: str
    created_by: str
    created_at: datetime
    updated_at: datetime
    messages: List[ConversationMessage] = field(default_factory=list)


class InMemoryChatStore:
    def __init__(self) -> None:
        self._sessions: Dict[str, _Session] = {}
        self._lock = RLock()

    def _session_model(self, sess: _Session) -> ChatSession:
        return ChatSession(
            chat_id=sess.chat_id,
            title=sess.title,
            created_by=sess.created_by,
            created_at=sess.created_at,
            updated_at=sess.updated_at,
        )

    def create_session(self, created_by: str, title: Optional[str] = None) -> ChatSession:
        with self._lock:
            now = datetime.now(UTC)
            sess = _Session(
                chat_id=uuid.uuid4().hex,
                title=title or "New Chat",
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
            self._sessions[sess.chat_id] = sess
            return self._session_model(sess)

    def get_session(self, chat_id: str) -> Optional[ChatSession]:
        with self._lock:
            sess = self._sessions.get(chat_id)
            if not sess:
                return None
            return self._session_model(sess)

    def add_message(self, chat_id: str, message: ConversationMessage) -> ConversationMessage:
        with self._lock:
            sess = self._sessions.get(chat_id)
            if not sess:
                raise KeyError("Session not found")
            now = datetime.now(UTC)
            stored = message.model_copy(update={"created_at": message.created_at or now}, deep=True)
            sess.messages.append(stored)
            sess.updated_at = now
            return stored

    def list_messages(self, chat_id: str) -> List[ConversationMessage]:
        with self._lock:
            sess = self._sessions.get(chat_id)
            if not sess:
                return []
            return [m.model_copy(deep=True) for m in sess.messages]


_store: ChatStore | None = None


def get_chat_store() -> ChatStore:
    global _store
    if _store is not None:
        return _store
    impl = os.getenv("DOCSTREAM_CHAT_STORE_IMPL", "memory").lower()
    if impl != "memory":
        raise RuntimeError(f"Unsupported chat store implementation: {impl}")
    _store = InMemoryChatStore()
    return _store


def reset_chat_store() -> None:
    global _store
    _store = None
