from __future__ import annotations

"""Client-side state for one artifact and the handler that feeds it.

``ArtifactStore`` holds the artifact a viewer is looking at. Streaming
records reach it only through ``StreamHandler``; panel visibility changes
only through ``expand``/``collapse``.
"""

import logging
from typing import Any, List, Mapping, Optional, Sequence, Union

from ..config import StreamSettings
from ..domain.artifact_models import Artifact, ArtifactMetadata, BoundingBox, Document
from ..domain.stream_models import StreamPart, parse_stream_part
from .lifecycle import DocumentLifecycle

logger = logging.getLogger("docstream.client")

StreamRecord = Union[StreamPart, Mapping[str, Any]]


class ArtifactStore:
    def __init__(self, settings: Optional[StreamSettings] = None) -> None:
        self.settings = settings
        self.lifecycle = DocumentLifecycle(settings=settings)

    @property
    def artifact(self) -> Artifact:
        return self.lifecycle.artifact

    @property
    def metadata(self) -> ArtifactMetadata:
        return self.lifecycle.metadata

    def expand(self, bounding_box: Optional[BoundingBox] = None) -> None:
        if bounding_box is not None:
            self.artifact.bounding_box = bounding_box
        self.artifact.visibility = "expanded"

    def collapse(self) -> None:
        self.artifact.visibility = "collapsed"

    def load_document(self, document: Document) -> None:
        """Rebuild the artifact from a persisted snapshot, as after a reload."""

        current = self.artifact
        artifact = Artifact(
            document_id=document.id,
            kind=document.kind,
            title=document.title,
            content=document.content,
            status="idle",
            visibility=current.visibility,
            bounding_box=current.bounding_box,
        )
        suggestions = list(self.metadata.suggestions) if current.document_id == document.id else []
        self.lifecycle = DocumentLifecycle(artifact, ArtifactMetadata(suggestions=suggestions), settings=self.settings)


class StreamHandler:
    """Applies a growing list of stream records exactly once, in order."""

    def __init__(self, store: ArtifactStore) -> None:
        self.store = store
        self.last_processed_index = -1

    def process(self, data_stream: Sequence[StreamRecord]) -> int:
        if not data_stream:
            return 0
        if len(data_stream) - 1 < self.last_processed_index:
            # a shorter list means a new stream; start over from its beginning
            logger.info("data_stream_restarted", extra={"length": len(data_stream)})
            self.last_processed_index = -1
        fresh: List[StreamRecord] = list(data_stream[self.last_processed_index + 1:])
        self.last_processed_index = len(data_stream) - 1
        for record in fresh:
            part = record if isinstance(record, StreamPart) else parse_stream_part(record)
            self.store.lifecycle.apply(part)
        return len(fresh)
