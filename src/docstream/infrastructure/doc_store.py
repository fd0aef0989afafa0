from __future__ import annotations

import os
import uuid
from datetime import UTC, datetime, timedelta
from threading import RLock
from typing import Any, Dict, List, Optional, Protocol

from ..domain.artifact_models import Document, Suggestion


class DocumentStore(Protocol):
    def save_document(self, *, id: str, title: str, kind: str, content: str, user_id: str) -> Document: ...
    def get_document_by_id(self, *, id: str) -> Optional[Document]: ...
    def get_documents_by_id(self, *, id: str) -> List[Document]: ...
    def save_suggestions(self, *, suggestions: List[Suggestion]) -> None: ...
    def get_suggestions(self, *, document_id: str) -> List[Suggestion]: ...


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _ensure_utc(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    return _utc_now()


def new_document_id() -> str:
    return str(uuid.uuid4())


class InMemoryDocumentStore:
    """Version history per document id, oldest first."""

    def __init__(self) -> None:
        self._versions: Dict[str, List[Document]] = {}
        self._suggestions: Dict[str, List[Suggestion]] = {}
        self._lock = RLock()

    def save_document(self, *, id: str, title: str, kind: str, content: str, user_id: str) -> Document:
        with self._lock:
            versions = self._versions.setdefault(id, [])
            created_at = _utc_now()
            # versions are keyed by created_at; keep them strictly increasing
            if versions and created_at <= versions[-1].created_at:
                created_at = versions[-1].created_at + timedelta(microseconds=1)
            doc = Document(id=id, title=title, kind=kind, content=content, user_id=user_id, created_at=created_at)
            versions.append(doc)
            return doc.model_copy()

    def get_document_by_id(self, *, id: str) -> Optional[Document]:
        with self._lock:
            versions = self._versions.get(id) or []
            return versions[-1].model_copy() if versions else None

    def get_documents_by_id(self, *, id: str) -> List[Document]:
        with self._lock:
            return [doc.model_copy() for doc in self._versions.get(id, [])]

    def save_suggestions(self, *, suggestions: List[Suggestion]) -> None:
        with self._lock:
            for suggestion in suggestions:
                self._suggestions.setdefault(suggestion.document_id, []).append(suggestion.model_copy())

    def get_suggestions(self, *, document_id: str) -> List[Suggestion]:
        with self._lock:
            return [s.model_copy() for s in self._suggestions.get(document_id, [])]


class MongoDocumentStore:
    """Mongo-backed document store.

    If Mongo is unreachable and DOCSTREAM_DOC_STORE_REQUIRE_MONGO is not true,
    operations fall back to an internal in-memory store to avoid breaking dev/CI.
    """

    def __init__(self) -> None:
        self._fallback = InMemoryDocumentStore()
        self._client = None
        self._db = None
        try:
            from pymongo import ASCENDING, MongoClient  # type: ignore

            mongo_url = os.getenv("MONGO_URL", "mongodb://localhost:27017")
            mongo_db = os.getenv("MONGO_DB", "docstream")
            self._client = MongoClient(mongo_url, serverSelectionTimeoutMS=500)
            # Trigger server selection
            self._client.server_info()
            self._db = self._client[mongo_db]
            self._documents = self._db["documents"]
            self._documents.create_index([("id", ASCENDING), ("created_at", ASCENDING)], unique=True)
            self._suggestions = self._db["suggestions"]
            self._suggestions.create_index([("document_id", ASCENDING)])
        except Exception:
            # Remain in fallback mode
            self._client = None
            self._db = None

    def _use_fallback(self) -> bool:
        if self._client is not None and self._db is not None:
            return False
        if os.getenv("DOCSTREAM_DOC_STORE_REQUIRE_MONGO", "false").lower() in ("1", "true", "yes"):  # pragma: no cover
            raise RuntimeError("Mongo document store required but not available")
        return True

    @staticmethod
    def _to_document(row: Dict[str, Any]) -> Document:
        return Document(
            id=str(row.get("id")),
            title=str(row.get("title") or ""),
            kind=row.get("kind") or "text",
            content=str(row.get("content") or ""),
            user_id=str(row.get("user_id") or ""),
            created_at=_ensure_utc(row.get("created_at")),
        )

    def save_document(self, *, id: str, title: str, kind: str, content: str, user_id: str) -> Document:
        if self._use_fallback():
            return self._fallback.save_document(id=id, title=title, kind=kind, content=content, user_id=user_id)
        created_at = _utc_now()
        last = self.get_document_by_id(id=id)
        if last is not None and created_at <= last.created_at:
            created_at = last.created_at + timedelta(milliseconds=1)
        row = {"id": id, "title": title, "kind": kind, "content": content, "user_id": user_id, "created_at": created_at}
        self._documents.insert_one(dict(row))
        return self._to_document(row)

    def get_document_by_id(self, *, id: str) -> Optional[Document]:
        if self._use_fallback():
            return self._fallback.get_document_by_id(id=id)
        row = next(iter(self._documents.find({"id": id}).sort("created_at", -1).limit(1)), None)
        return self._to_document(row) if row else None

    def get_documents_by_id(self, *, id: str) -> List[Document]:
        if self._use_fallback():
            return self._fallback.get_documents_by_id(id=id)
        return [self._to_document(row) for row in self._documents.find({"id": id}).sort("created_at", 1)]

    def save_suggestions(self, *, suggestions: List[Suggestion]) -> None:
        if self._use_fallback():
            return self._fallback.save_suggestions(suggestions=suggestions)
        if suggestions:
            self._suggestions.insert_many([s.model_dump() for s in suggestions])

    def get_suggestions(self, *, document_id: str) -> List[Suggestion]:
        if self._use_fallback():
            return self._fallback.get_suggestions(document_id=document_id)
        rows = self._suggestions.find({"document_id": document_id}, {"_id": 0})
        return [Suggestion.model_validate(row) for row in rows]


_doc_store_singleton: DocumentStore | None = None


def get_doc_store() -> DocumentStore:
    global _doc_store_singleton
    if _doc_store_singleton is not None:
        return _doc_store_singleton
    impl = os.getenv("DOCSTREAM_DOC_STORE_IMPL", "memory").lower()
    if impl == "mongo":
        _doc_store_singleton = MongoDocumentStore()
        return _doc_store_singleton
    _doc_store_singleton = InMemoryDocumentStore()
    return _doc_store_singleton


def reset_doc_store() -> None:
    global _doc_store_singleton
    _doc_store_singleton = None
