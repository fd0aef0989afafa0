from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import Field

from .base import CamelModel


Role = Literal["system", "user", "assistant", "tool"]


class MessagePart(CamelModel):
    type: Literal["text", "tool-call", "tool-result", "reasoning"]
    text: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_name: Optional[str] = None
    args: Optional[Dict[str, Any]] = None
    reasoning: Optional[str] = None
    result: Any = None


class ConversationMessage(CamelModel):
    id: str
    role: Role
    content: Union[str, List[MessagePart]]
    created_at: Optional[datetime] = None


class ToolInvocation(CamelModel):
    state: Literal["call", "result"] = "call"
    tool_call_id: str
    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class UIMessage(CamelModel):
    """Display-ready message produced by the merger."""

    id: str
    role: Role
    content: str = ""
    reasoning: Optional[str] = None
    tool_invocations: List[ToolInvocation] = Field(default_factory=list)
    # ids of the persisted messages folded into this one; non-empty means merged
    merged_message_ids: List[str] = Field(default_factory=list)


class ChatSession(CamelModel):
    chat_id: str
    title: str
    created_by: str
    created_at: datetime
    updated_at: datetime


class ChatSessionCreate(CamelModel):
    title: Optional[str] = None


class ResponseMessagesCreate(CamelModel):
    """One generated turn, persisted after sanitizing."""

    messages: List[ConversationMessage] = Field(min_length=1)
    reasoning: Optional[str] = None
