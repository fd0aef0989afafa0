from __future__ import annotations

"""Suggestion generation for an existing document.

The provider answers with a JSON array of suggestion objects. Each object is
validated and written to the delta channel as soon as its closing brace
arrives; the whole batch is persisted once the stream ends.
"""

import json
import logging
import uuid
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..config import StreamSettings
from ..domain.artifact_models import Suggestion, SuggestionCategory, SuggestionImpact
from ..domain.base import CamelModel
from ..domain.stream_models import StreamPart, StreamPartType
from ..infrastructure.doc_store import DocumentStore
from .prompts import SUGGESTIONS_PROMPT
from .providers import FragmentProvider, stream_with_idle_timeout
from .streaming import DataStream

logger = logging.getLogger("docstream.suggestions")

MAX_SUGGESTIONS = 5


class SuggestionDraft(CamelModel):
    original_text: str
    suggested_text: str
    description: str = ""
    message_index: Optional[int] = None
    category: SuggestionCategory
    impact: SuggestionImpact


class JsonArrayScanner:
    """Pulls complete top-level objects out of a streamed JSON array."""

    def __init__(self) -> None:
        self._depth = 0
        self._in_string = False
        self._escaped = False
        self._current: List[str] = []

    def feed(self, chunk: str) -> List[Dict[str, Any]]:
        found: List[Dict[str, Any]] = []
        for ch in chunk:
            if self._depth > 0:
                self._current.append(ch)
            if self._in_string:
                if self._escaped:
                    self._escaped = False
                elif ch == "\\":
                    self._escaped = True
                elif ch == '"':
                    self._in_string = False
                continue
            if ch == '"' and self._depth > 0:
                self._in_string = True
            elif ch == "{":
                if self._depth == 0:
                    self._current = [ch]
                self._depth += 1
            elif ch == "}" and self._depth > 0:
                self._depth -= 1
                if self._depth == 0:
                    text = "".join(self._current)
                    self._current = []
                    try:
                        obj = json.loads(text)
                    except json.JSONDecodeError:
                        logger.debug("suggestion_object_unparseable", extra={"chars": len(text)})
                        continue
                    if isinstance(obj, dict):
                        found.append(obj)
        return found


class SuggestionService:
    def __init__(self, store: DocumentStore, provider: FragmentProvider, settings: Optional[StreamSettings] = None) -> None:
        self.store = store
        self.provider = provider
        self.settings = settings or StreamSettings()

    async def request_suggestions(self, *, document_id: str, user_id: Optional[str], stream: DataStream) -> Dict[str, Any]:
        document = self.store.get_document_by_id(id=document_id)
        if document is None or not document.content:
            return {"error": "Document not found"}

        scanner = JsonArrayScanner()
        suggestions: List[Suggestion] = []
        async for event in stream_with_idle_timeout(
            self.provider,
            model=self.settings.artifact_model,
            system_prompt=SUGGESTIONS_PROMPT,
            prompt=document.content,
            max_tokens=self.settings.max_tokens,
            idle_timeout=self.settings.stream_idle_timeout,
        ):
            for element in scanner.feed(event.text_delta):
                if len(suggestions) >= MAX_SUGGESTIONS:
                    break
                try:
                    draft = SuggestionDraft.model_validate(element)
                except ValidationError as exc:
                    logger.info("suggestion_rejected", extra={"document_id": document_id, "errors": exc.error_count()})
                    continue
                suggestion = Suggestion(
                    id=str(uuid.uuid4()),
                    document_id=document_id,
                    is_resolved=False,
                    **draft.model_dump(),
                )
                stream.write(StreamPart(type=StreamPartType.SUGGESTION.value, content=suggestion))
                suggestions.append(suggestion)

        if user_id:
            now = datetime.now(UTC)
            self.store.save_suggestions(
                suggestions=[
                    s.model_copy(update={"user_id": user_id, "created_at": now, "document_created_at": document.created_at})
                    for s in suggestions
                ]
            )
        logger.info("suggestions_generated", extra={"document_id": document_id, "count": len(suggestions)})
        return {
            "id": document_id,
            "title": document.title,
            "kind": document.kind,
            "message": "Suggestions have been added to the document",
        }
