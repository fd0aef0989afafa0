from __future__ import annotations

"""Server-side generation of one document version.

A pass runs the provider's fragment stream through a ``DocumentLifecycle``
and writes the resulting deltas to a ``DataStream``:

    id, title, kind, clear, <kind>-delta..., <kind>-delta (complete), finish

The final payload is persisted before ``finish`` is written, so a client
that sees ``finish`` can reload the document and get the same bytes back.
Only one pass per document id may run at a time; a second one is skipped.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..config import StreamSettings
from ..domain.artifact_models import Document
from ..domain.stream_models import StreamPart, StreamPartType, delta_type_for
from ..infrastructure.doc_store import DocumentStore, new_document_id
from ..observability.metrics import DOCUMENTS_TOTAL, LOCK_REJECTIONS, STREAM_SECONDS
from .decoders import LANGUAGE_MARKER, get_decoder
from .lifecycle import DocumentLifecycle
from .locks import UpdateLockRegistry
from .prompts import create_document_prompt, update_document_prompt
from .providers import FragmentProvider, stream_with_idle_timeout
from .streaming import DataStream

logger = logging.getLogger("docstream.orchestrator")


class GenerationError(RuntimeError):
    """The provider stream failed; whatever had arrived was saved."""

    def __init__(self, document_id: str, partial_content: str, message: str = "generation failed") -> None:
        super().__init__(f"{message}: {document_id}")
        self.document_id = document_id
        self.partial_content = partial_content


class GenerationTimeout(GenerationError):
    pass


class DocumentNotFound(LookupError):
    pass


@dataclass
class GenerationOutcome:
    document_id: str
    kind: str
    skipped: bool = False
    document: Optional[Document] = None
    language: Optional[str] = None


class DocumentOrchestrator:
    def __init__(
        self,
        store: DocumentStore,
        provider: FragmentProvider,
        locks: Optional[UpdateLockRegistry] = None,
        settings: Optional[StreamSettings] = None,
    ) -> None:
        self.store = store
        self.provider = provider
        self.locks = locks or UpdateLockRegistry()
        self.settings = settings or StreamSettings()

    async def create_document(
        self,
        *,
        title: str,
        kind: str,
        user_id: str,
        stream: DataStream,
        document_id: Optional[str] = None,
    ) -> GenerationOutcome:
        document_id = document_id or new_document_id()
        return await self._run(
            operation="create",
            document_id=document_id,
            title=title,
            kind=kind,
            user_id=user_id,
            stream=stream,
            system_prompt=create_document_prompt(kind),
            prompt=title,
        )

    async def update_document(
        self,
        *,
        document_id: str,
        description: str,
        user_id: str,
        stream: DataStream,
    ) -> GenerationOutcome:
        existing = self.store.get_document_by_id(id=document_id)
        if existing is None:
            raise DocumentNotFound(document_id)
        language = None
        if existing.kind == "code":
            language = self._language_of(existing)
        return await self._run(
            operation="update",
            document_id=document_id,
            title=existing.title,
            kind=existing.kind,
            user_id=user_id,
            stream=stream,
            system_prompt=update_document_prompt(existing.content, existing.kind),
            prompt=description,
            language=language,
        )

    def _language_of(self, document: Document) -> Optional[str]:
        return get_decoder("code", self.settings).decode(document.content).subtype

    async def _run(
        self,
        *,
        operation: str,
        document_id: str,
        title: str,
        kind: str,
        user_id: str,
        stream: DataStream,
        system_prompt: str,
        prompt: str,
        language: Optional[str] = None,
    ) -> GenerationOutcome:
        with self.locks.hold(document_id) as acquired:
            if not acquired:
                LOCK_REJECTIONS.inc()
                DOCUMENTS_TOTAL.labels(kind=kind, operation=operation, outcome="skipped").inc()
                logger.warning("document_update_in_progress", extra={"document_id": document_id, "operation": operation})
                return GenerationOutcome(document_id=document_id, kind=kind, skipped=True)

            lifecycle = DocumentLifecycle(settings=self.settings)
            for part in (
                StreamPart(type=StreamPartType.ID.value, content=document_id),
                StreamPart(type=StreamPartType.TITLE.value, content=title),
                StreamPart(type=StreamPartType.KIND.value, content=kind),
                StreamPart(type=StreamPartType.CLEAR.value, content=title),
            ):
                lifecycle.apply(part)
                stream.write(part)

            emitter = _DeltaEmitter(stream, lifecycle, self.settings)
            if language:
                lifecycle.scratch["language"] = language
                emitter.announce_language(language)

            started = time.perf_counter()
            try:
                async for event in stream_with_idle_timeout(
                    self.provider,
                    model=self.settings.artifact_model,
                    system_prompt=system_prompt,
                    prompt=prompt,
                    max_tokens=self.settings.max_tokens,
                    idle_timeout=self.settings.stream_idle_timeout,
                ):
                    if event.type != "text-delta":
                        logger.debug("provider_event_skipped", extra={"type": event.type})
                        continue
                    emitter.push(lifecycle.ingest(event.text_delta))
            except Exception as exc:
                timed_out = isinstance(exc, asyncio.TimeoutError)
                lifecycle.drain()
                partial = lifecycle.content
                self._save_partial(document_id, title, kind, user_id, partial)
                DOCUMENTS_TOTAL.labels(kind=kind, operation=operation, outcome="timeout" if timed_out else "failed").inc()
                if timed_out:
                    logger.warning("provider_stream_timeout", extra={"document_id": document_id})
                    raise GenerationTimeout(document_id, partial, "provider stream stalled") from exc
                logger.exception("provider_stream_failed", extra={"document_id": document_id})
                raise GenerationError(document_id, partial) from exc
            finally:
                STREAM_SECONDS.labels(kind=kind).observe(time.perf_counter() - started)

            emitter.push(lifecycle.drain())
            emitter.flush()
            result = lifecycle.final_result()
            if kind == "code" and result.subtype:
                emitter.announce_language(result.subtype)
            stream.write(StreamPart(type=delta_type_for(kind), content=result.payload, complete=True))

            document = self.store.save_document(
                id=document_id, title=title, kind=kind, content=result.payload, user_id=user_id
            )
            lifecycle.settle()
            stream.write(StreamPart(type=StreamPartType.FINISH.value, content=""))
            DOCUMENTS_TOTAL.labels(kind=kind, operation=operation, outcome="completed").inc()
            logger.info(
                "document_generated",
                extra={"document_id": document_id, "kind": kind, "operation": operation, "chars": len(result.payload)},
            )
            return GenerationOutcome(
                document_id=document_id,
                kind=kind,
                document=document,
                language=result.subtype if kind == "code" else None,
            )

    def _save_partial(self, document_id: str, title: str, kind: str, user_id: str, content: str) -> None:
        if not content:
            return
        try:
            self.store.save_document(id=document_id, title=title, kind=kind, content=content, user_id=user_id)
            logger.warning("partial_document_saved", extra={"document_id": document_id, "chars": len(content)})
        except Exception:
            # the provider failure is what gets reported to the caller
            logger.exception("partial_document_save_failed", extra={"document_id": document_id})


class _DeltaEmitter:
    """Buffers appended pieces into deltas of a sensible size.

    Text and code flush once the buffer reaches the threshold; sheet pieces
    are already whole rows and are flushed as they come.
    """

    def __init__(self, stream: DataStream, lifecycle: DocumentLifecycle, settings: StreamSettings) -> None:
        self.stream = stream
        self.lifecycle = lifecycle
        self.kind = lifecycle.artifact.kind
        self.delta_type = delta_type_for(self.kind)
        self.threshold = settings.flush_threshold
        self.buffer = ""
        self.language: Optional[str] = None

    def announce_language(self, language: str) -> None:
        if language == self.language:
            return
        self.language = language
        # written ahead of any buffered code so the client picks its editor first
        self.stream.write(StreamPart(type=self.delta_type, content=f"{LANGUAGE_MARKER}{language}\n"))

    def push(self, piece: str) -> None:
        if self.kind == "code" and self.language is None:
            detected = self.lifecycle.decoder.probe_language(self.lifecycle.content, self.lifecycle.scratch)
            if detected:
                self.announce_language(detected)
        if not piece:
            return
        self.buffer += piece
        if self.kind == "sheet" or self.kind == "image" or len(self.buffer) >= self.threshold:
            self.flush()

    def flush(self) -> None:
        if self.buffer:
            self.stream.write(StreamPart(type=self.delta_type, content=self.buffer))
            self.buffer = ""
