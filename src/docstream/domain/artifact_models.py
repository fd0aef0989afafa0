from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from .base import CamelModel


ArtifactKind = Literal["text", "code", "sheet", "image"]
ARTIFACT_KINDS: tuple[str, ...] = ("text", "code", "sheet", "image")

ArtifactStatus = Literal["streaming", "idle"]
Visibility = Literal["collapsed", "expanded"]

SuggestionCategory = Literal["clarity", "grammar", "structure", "organization", "flow"]
SuggestionImpact = Literal["high", "medium", "low"]

# documentId placeholder before the `id` record arrives
INIT_DOCUMENT_ID = "init"


class BoundingBox(CamelModel):
    top: float = 0
    left: float = 0
    width: float = 0
    height: float = 0


class Artifact(CamelModel):
    """Live, possibly still streaming, representation of one document."""

    document_id: str = INIT_DOCUMENT_ID
    kind: ArtifactKind = "text"
    title: str = ""
    content: str = ""
    status: ArtifactStatus = "idle"
    visibility: Visibility = "collapsed"
    bounding_box: BoundingBox = Field(default_factory=BoundingBox)


class Suggestion(CamelModel):
    id: str
    document_id: str
    original_text: str
    suggested_text: str
    description: str = ""
    category: SuggestionCategory = "clarity"
    impact: SuggestionImpact = "medium"
    message_index: Optional[int] = None
    is_resolved: bool = False
    user_id: Optional[str] = None
    created_at: Optional[datetime] = None
    document_created_at: Optional[datetime] = None


class ArtifactMetadata(CamelModel):
    suggestions: List[Suggestion] = Field(default_factory=list)
    # per-kind decoder scratch; each decoder only ever touches its own entry
    scratch: Dict[str, Dict[str, Any]] = Field(default_factory=dict)

    def scratch_for(self, kind: str) -> Dict[str, Any]:
        return self.scratch.setdefault(kind, {})


class Document(CamelModel):
    """Persisted snapshot of an artifact; one row per version."""

    id: str
    title: str
    kind: ArtifactKind
    content: str = ""
    user_id: str
    created_at: datetime
