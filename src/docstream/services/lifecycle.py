from __future__ import annotations

"""Per-document lifecycle: the only code path that mutates an Artifact.

Phases are ``empty -> streaming -> idle``. Records from the delta channel are
dispatched through ``_HANDLERS``; each handler enforces its own precondition
and logs (rather than raises) when a record arrives in the wrong phase.

Content is append-only while streaming. Fragments are deduplicated against a
hidden raw buffer (what the generator actually produced), decoded into payload
pieces, shaped against the visible content tail and appended. ``finish``
replaces the content once with the authoritative decode of the raw buffer, or
with the ``complete`` payload the server sent, when one arrived.

``visibility`` is never touched here.
"""

import logging
from enum import Enum
from typing import Callable, Dict, Iterable, Optional

from ..config import StreamSettings
from ..domain.artifact_models import INIT_DOCUMENT_ID, ARTIFACT_KINDS, Artifact, ArtifactMetadata, Suggestion
from ..domain.stream_models import DELTA_KINDS, StreamPart, StreamPartType
from ..observability.metrics import FRAGMENTS_DEDUPLICATED
from .decoders import DecodeResult, Decoder, get_decoder
from .dedupe import overlap_length


logger = logging.getLogger("docstream.lifecycle")


class DocumentPhase(str, Enum):
    EMPTY = "empty"
    STREAMING = "streaming"
    IDLE = "idle"


class DocumentLifecycle:
    def __init__(
        self,
        artifact: Optional[Artifact] = None,
        metadata: Optional[ArtifactMetadata] = None,
        settings: Optional[StreamSettings] = None,
    ) -> None:
        self.artifact = artifact or Artifact()
        self.metadata = metadata or ArtifactMetadata()
        self.settings = settings or StreamSettings()
        if self.artifact.status == "streaming":
            self.phase = DocumentPhase.STREAMING
        elif self.artifact.document_id != INIT_DOCUMENT_ID:
            # rebuilt from a persisted snapshot
            self.phase = DocumentPhase.IDLE
        else:
            self.phase = DocumentPhase.EMPTY
        self.kind_locked = self.phase != DocumentPhase.EMPTY
        self._raw = ""
        self._final: Optional[str] = None
        self._decoders: Dict[str, Decoder] = {}

    # -- accessors --------------------------------------------------------
    @property
    def raw(self) -> str:
        return self._raw

    @property
    def content(self) -> str:
        return self.artifact.content

    @property
    def decoder(self) -> Decoder:
        kind = self.artifact.kind
        if kind not in self._decoders:
            self._decoders[kind] = get_decoder(kind, self.settings)
        return self._decoders[kind]

    @property
    def scratch(self) -> Dict:
        return self.metadata.scratch_for(self.artifact.kind)

    @property
    def language(self) -> Optional[str]:
        return self.metadata.scratch.get("code", {}).get("language")

    @property
    def is_streaming(self) -> bool:
        return self.phase == DocumentPhase.STREAMING

    # -- record dispatch --------------------------------------------------
    def apply(self, part: StreamPart) -> None:
        try:
            kind = StreamPartType(part.type)
        except ValueError:
            logger.warning("unknown_stream_record", extra={"type": part.type, "document_id": self.artifact.document_id})
            return
        _HANDLERS[kind](self, part)

    def apply_all(self, parts: Iterable[StreamPart]) -> None:
        for part in parts:
            self.apply(part)

    def _set_phase(self, phase: DocumentPhase) -> None:
        self.phase = phase
        self.artifact.status = "streaming" if phase == DocumentPhase.STREAMING else "idle"

    def _begin_pass(self, reset_content: bool) -> None:
        self._raw = ""
        self._final = None
        self.metadata.scratch.clear()
        self._decoders.clear()
        if reset_content:
            self.artifact.content = ""
        self._set_phase(DocumentPhase.STREAMING)

    def _ignored(self, event: str, part: StreamPart) -> None:
        logger.info(
            "stream_record_ignored",
            extra={"event": event, "type": part.type, "phase": self.phase.value, "document_id": self.artifact.document_id},
        )

    def _on_id(self, part: StreamPart) -> None:
        new_id = part.text
        same = new_id == self.artifact.document_id
        if self.phase == DocumentPhase.STREAMING and same:
            return
        if self.phase == DocumentPhase.STREAMING:
            logger.warning("document_switched_mid_stream", extra={"from": self.artifact.document_id, "to": new_id})
        if not same:
            # a different document may have a different kind
            self.kind_locked = False
        self.artifact.document_id = new_id
        self._begin_pass(reset_content=not same)

    def _on_title(self, part: StreamPart) -> None:
        self.artifact.title = part.text
        if self.phase == DocumentPhase.EMPTY:
            self._set_phase(DocumentPhase.STREAMING)

    def _on_kind(self, part: StreamPart) -> None:
        kind = part.text
        if self.phase == DocumentPhase.IDLE:
            self._ignored("kind", part)
            return
        if kind not in ARTIFACT_KINDS:
            logger.warning("unknown_document_kind", extra={"kind": kind, "document_id": self.artifact.document_id})
            return
        if self.kind_locked and kind != self.artifact.kind:
            logger.warning(
                "kind_change_rejected",
                extra={"kind": self.artifact.kind, "requested": kind, "document_id": self.artifact.document_id},
            )
            return
        self.artifact.kind = kind  # type: ignore[assignment]
        self.kind_locked = True
        if self.phase == DocumentPhase.EMPTY:
            self._set_phase(DocumentPhase.STREAMING)

    def _on_clear(self, part: StreamPart) -> None:
        if self.phase == DocumentPhase.STREAMING:
            self._raw = ""
            self._final = None
            self.scratch.clear()
            self.artifact.content = ""
            return
        self._ignored("clear", part)

    def _on_delta(self, part: StreamPart) -> None:
        if self.phase != DocumentPhase.STREAMING:
            self._ignored("delta", part)
            return
        delta_kind = DELTA_KINDS[part.type]
        if delta_kind != self.artifact.kind:
            if self.kind_locked:
                logger.warning(
                    "delta_kind_mismatch",
                    extra={"kind": self.artifact.kind, "delta": part.type, "document_id": self.artifact.document_id},
                )
                return
            self.artifact.kind = delta_kind  # type: ignore[assignment]
            self.kind_locked = True
        if part.complete:
            self._final = part.text
            return
        self.ingest(part.text)

    def _on_suggestion(self, part: StreamPart) -> None:
        if isinstance(part.content, Suggestion):
            self.metadata.suggestions.append(part.content)
        else:
            logger.warning("malformed_suggestion_record", extra={"document_id": self.artifact.document_id})

    def _on_finish(self, part: StreamPart) -> None:
        if self.phase != DocumentPhase.STREAMING:
            self._ignored("finish", part)
            return
        self.settle()

    # -- pipeline ---------------------------------------------------------
    def ingest(self, fragment: str) -> str:
        """Run one raw fragment through the pipeline and return what was appended."""

        if self.phase != DocumentPhase.STREAMING or not fragment:
            return ""
        decoder = self.decoder
        scratch = self.scratch
        fragment = decoder.intercept(fragment, scratch)
        if not fragment:
            return ""

        overlap = overlap_length(self._raw, fragment, decoder.dedupe_policy)
        if overlap:
            FRAGMENTS_DEDUPLICATED.labels(kind=decoder.kind).inc()
            logger.debug("fragment_overlap_stripped", extra={"chars": overlap, "kind": decoder.kind})
            fragment = fragment[overlap:]
            if not fragment:
                return ""

        fragment = decoder.heal(self._raw, fragment, scratch)
        self._raw += fragment
        piece = decoder.shape(self.artifact.content, decoder.feed(fragment, scratch))
        if piece:
            self.artifact.content += piece
        return piece

    def drain(self) -> str:
        """Flush whatever the decoder is still holding back into the content."""

        if self.phase != DocumentPhase.STREAMING:
            return ""
        decoder = self.decoder
        piece = decoder.shape(self.artifact.content, decoder.drain(self.scratch))
        if piece:
            self.artifact.content += piece
        return piece

    def final_result(self) -> DecodeResult:
        if self._final is not None:
            return DecodeResult(payload=self._final, subtype=self.language)
        result = self.decoder.decode(self._raw)
        subtype = self.language if self.artifact.kind == "code" and self.language else result.subtype
        if not result.payload and self.artifact.content:
            # nothing decodable; keep what the user already saw
            return DecodeResult(payload=self.artifact.content, subtype=subtype)
        return DecodeResult(payload=result.payload, subtype=subtype)

    def settle(self) -> str:
        """Close the streaming phase, replacing content with the final payload."""

        self.drain()
        result = self.final_result()
        if self.artifact.kind == "code" and result.subtype and not self.language:
            self.scratch["language"] = result.subtype
        self.artifact.content = result.payload
        self._set_phase(DocumentPhase.IDLE)
        return result.payload


_HANDLERS: Dict[StreamPartType, Callable[[DocumentLifecycle, StreamPart], None]] = {
    StreamPartType.ID: DocumentLifecycle._on_id,
    StreamPartType.TITLE: DocumentLifecycle._on_title,
    StreamPartType.KIND: DocumentLifecycle._on_kind,
    StreamPartType.CLEAR: DocumentLifecycle._on_clear,
    StreamPartType.TEXT_DELTA: DocumentLifecycle._on_delta,
    StreamPartType.CODE_DELTA: DocumentLifecycle._on_delta,
    StreamPartType.SHEET_DELTA: DocumentLifecycle._on_delta,
    StreamPartType.IMAGE_DELTA: DocumentLifecycle._on_delta,
    StreamPartType.SUGGESTION: DocumentLifecycle._on_suggestion,
    StreamPartType.FINISH: DocumentLifecycle._on_finish,
}


def replay(parts: Iterable[StreamPart], settings: Optional[StreamSettings] = None) -> DocumentLifecycle:
    """Build a fresh lifecycle from a recorded delta stream."""

    lifecycle = DocumentLifecycle(settings=settings)
    lifecycle.apply_all(parts)
    return lifecycle
