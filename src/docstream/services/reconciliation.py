from __future__ import annotations

"""Decide what a viewer renders for an artifact.

Content source, in order: the live artifact while streaming; the persisted
document once idle; the artifact's last content while that document is
still being fetched. The inline preview and the expanded panel never both
carry the content: when the panel is open the inline view is header only.
"""

import difflib
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Dict, Literal, Optional, Sequence

from ..domain.artifact_models import Artifact, Document
from .decoders import get_decoder

ViewMode = Literal["edit", "diff"]

KIND_ICONS: Dict[str, str] = {
    "text": "file-text",
    "code": "code",
    "sheet": "table",
    "image": "image",
}

KIND_EDITORS: Dict[str, str] = {
    "text": "text-editor",
    "code": "code-editor",
    "sheet": "sheet-editor",
    "image": "image-editor",
}

LOADER_ICON = "loader"

_TOOL_RESULT_VERBS = {"create": "Created", "update": "Updated"}


@dataclass(frozen=True)
class HeaderView:
    title: str
    icon: str
    is_streaming: bool


@dataclass(frozen=True)
class InlineView:
    header: HeaderView
    content: Optional[str]
    show_skeleton: bool
    editor: Optional[str]
    summary: Optional[str] = None


@dataclass(frozen=True)
class PanelView:
    header: HeaderView
    content: str
    editor: str
    mode: ViewMode
    version_index: int
    is_current_version: bool
    language: Optional[str] = None
    diff: Optional[str] = None


def resolve_content(artifact: Artifact, document: Optional[Document]) -> str:
    if artifact.status == "streaming":
        return artifact.content
    if document is not None:
        return document.content
    return artifact.content


def render_header(artifact: Artifact, document: Optional[Document] = None) -> HeaderView:
    streaming = artifact.status == "streaming"
    title = artifact.title or (document.title if document is not None else "")
    icon = LOADER_ICON if streaming else KIND_ICONS.get(artifact.kind, KIND_ICONS["text"])
    return HeaderView(title=title, icon=icon, is_streaming=streaming)


def tool_result_summary(artifact: Artifact, operation: str = "create") -> str:
    verb = _TOOL_RESULT_VERBS.get(operation, "Updated")
    return f'{verb} "{artifact.title}"'


def render_inline(artifact: Artifact, document: Optional[Document] = None, operation: str = "create") -> InlineView:
    header = render_header(artifact, document)
    if artifact.visibility == "expanded":
        return InlineView(
            header=header,
            content=None,
            show_skeleton=False,
            editor=None,
            summary=tool_result_summary(artifact, operation),
        )
    content = resolve_content(artifact, document)
    skeleton = not content and artifact.status != "streaming"
    return InlineView(
        header=header,
        content=None if skeleton else content,
        show_skeleton=skeleton,
        editor=None if skeleton else KIND_EDITORS.get(artifact.kind, KIND_EDITORS["text"]),
    )


def compute_diff(old: str, new: str) -> str:
    lines = difflib.unified_diff(old.splitlines(), new.splitlines(), fromfile="previous", tofile="current", lineterm="")
    return "\n".join(lines)


def render_panel(
    artifact: Artifact,
    documents: Sequence[Document] = (),
    *,
    version_index: Optional[int] = None,
    mode: ViewMode = "edit",
    language: Optional[str] = None,
) -> Optional[PanelView]:
    """The expanded editor, or ``None`` while the panel is collapsed."""

    if artifact.visibility != "expanded":
        return None
    latest = len(documents) - 1
    current = documents[latest] if documents else None
    streaming = artifact.status == "streaming"
    index = latest if version_index is None or streaming else max(0, min(version_index, latest))
    is_current = streaming or index == latest

    if is_current:
        content = resolve_content(artifact, current)
    else:
        content = documents[index].content

    diff = None
    if mode == "diff" and not streaming and index > 0:
        diff = compute_diff(documents[index - 1].content, documents[index].content)
    else:
        mode = "edit"

    if artifact.kind == "code" and language is None:
        language = get_decoder("code").decode(content).subtype

    return PanelView(
        header=render_header(artifact, current),
        content=content,
        editor=KIND_EDITORS.get(artifact.kind, KIND_EDITORS["text"]),
        mode=mode,
        version_index=max(index, 0),
        is_current_version=is_current,
        language=language,
        diff=diff,
    )


def get_document_timestamp_by_index(documents: Sequence[Document], index: int) -> datetime:
    if not documents or index < 0 or index >= len(documents):
        return datetime.now(UTC)
    return documents[index].created_at
