from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel

from .artifact_models import Suggestion


class StreamPartType(str, Enum):
    ID = "id"
    TITLE = "title"
    KIND = "kind"
    CLEAR = "clear"
    TEXT_DELTA = "text-delta"
    CODE_DELTA = "code-delta"
    SHEET_DELTA = "sheet-delta"
    IMAGE_DELTA = "image-delta"
    SUGGESTION = "suggestion"
    FINISH = "finish"


DELTA_KINDS: Dict[str, str] = {
    StreamPartType.TEXT_DELTA.value: "text",
    StreamPartType.CODE_DELTA.value: "code",
    StreamPartType.SHEET_DELTA.value: "sheet",
    StreamPartType.IMAGE_DELTA.value: "image",
}


def delta_type_for(kind: str) -> str:
    return f"{kind}-delta"


class StreamPart(BaseModel):
    """One record on the server->client delta channel.

    ``type`` is kept as a plain string so records from newer servers survive
    parsing; consumers decide what to do with types they do not know.
    """

    type: str
    content: Union[Suggestion, str, None] = None
    complete: bool = False

    def to_wire(self) -> Dict[str, Any]:
        content: Any = self.content
        if isinstance(content, Suggestion):
            content = content.to_wire()
        data: Dict[str, Any] = {"type": self.type, "content": content}
        if self.complete:
            data["complete"] = True
        return data

    @property
    def text(self) -> str:
        return self.content if isinstance(self.content, str) else ""


def parse_stream_part(data: Mapping[str, Any]) -> StreamPart:
    kind = str(data.get("type") or "")
    content: Optional[Any] = data.get("content")
    if kind == StreamPartType.SUGGESTION.value and isinstance(content, Mapping):
        content = Suggestion.model_validate(content)
    elif content is not None and not isinstance(content, str):
        content = str(content)
    return StreamPart(type=kind, content=content, complete=bool(data.get("complete", False)))
