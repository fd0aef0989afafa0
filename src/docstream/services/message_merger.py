from __future__ import annotations

"""Turn persisted conversation messages into display messages.

The chat transport sometimes persists one assistant turn as two messages:
the lead-in sentence and then the document tool call. ``merge_messages``
folds such pairs back together so a reloaded conversation reads the way it
streamed.
"""

import logging
import re
from typing import List, Optional, Sequence, Union

from ..domain.message_models import ConversationMessage, MessagePart, ToolInvocation, UIMessage
from .normalizer import normalize

logger = logging.getLogger("docstream.merger")

DOCUMENT_TOOLS = ("createDocument", "updateDocument")

# a second message opening with one of these continues the first one's line
CONTINUATION_PHRASES = ("I've created", "I have created", "I've updated", "I have updated")

_BLANK_RUN = re.compile(r"\n{3,}")

AnyMessage = Union[ConversationMessage, UIMessage]


def _display_text(text: str) -> str:
    return normalize(text, preserve_newlines=True, preserve_markdown_headings=True)


def has_document_tools(message: UIMessage) -> bool:
    return any(inv.tool_name in DOCUMENT_TOOLS for inv in message.tool_invocations)


def combine_content(first: str, second: str) -> str:
    if not first:
        return second or ""
    if not second:
        return first
    head = _BLANK_RUN.sub("\n\n", first.strip())
    tail = _BLANK_RUN.sub("\n\n", second.strip())
    if tail.startswith(CONTINUATION_PHRASES):
        return f"{head} {tail}"
    return f"{head}\n\n{tail}"


def _fold_tool_results(message: ConversationMessage, converted: List[UIMessage]) -> None:
    if isinstance(message.content, str):
        return
    results = {part.tool_call_id: part.result for part in message.content if part.type == "tool-result" and part.tool_call_id}
    if not results:
        return
    for ui in converted:
        for index, inv in enumerate(ui.tool_invocations):
            if inv.tool_call_id in results:
                ui.tool_invocations[index] = inv.model_copy(update={"state": "result", "result": results[inv.tool_call_id]})


def _convert(message: ConversationMessage) -> UIMessage:
    if isinstance(message.content, str):
        return UIMessage(id=message.id, role=message.role, content=_display_text(message.content))

    texts: List[str] = []
    invocations: List[ToolInvocation] = []
    reasoning: Optional[str] = None
    for part in message.content:
        if part.type == "text" and part.text is not None:
            texts.append(_display_text(part.text))
        elif part.type == "tool-call" and part.tool_call_id and part.tool_name:
            invocations.append(
                ToolInvocation(state="call", tool_call_id=part.tool_call_id, tool_name=part.tool_name, args=part.args or {})
            )
        elif part.type == "reasoning" and part.reasoning:
            reasoning = part.reasoning
    return UIMessage(
        id=message.id,
        role=message.role,
        content="\n\n".join(texts),
        reasoning=reasoning,
        tool_invocations=invocations,
    )


def to_ui_messages(messages: Sequence[AnyMessage]) -> List[UIMessage]:
    """First pass: flatten structured parts; tool messages update earlier calls."""

    converted: List[UIMessage] = []
    for message in messages:
        if isinstance(message, UIMessage):
            converted.append(message.model_copy(deep=True))
        elif message.role == "tool":
            _fold_tool_results(message, converted)
        else:
            converted.append(_convert(message))
    return converted


def merge_messages(messages: Sequence[AnyMessage]) -> List[UIMessage]:
    """Flatten, then merge adjacent assistant messages around a document tool call.

    A message that is already the product of a merge is never merged again,
    which keeps ``merge_messages`` idempotent.
    """

    converted = to_ui_messages(messages)
    merged: List[UIMessage] = []
    i = 0
    while i < len(converted):
        current = converted[i]
        following = converted[i + 1] if i + 1 < len(converted) else None
        if (
            following is not None
            and current.role == "assistant"
            and following.role == "assistant"
            and not current.merged_message_ids
            and not following.merged_message_ids
            and (has_document_tools(current) or has_document_tools(following))
        ):
            merged.append(
                current.model_copy(
                    update={
                        "content": combine_content(current.content, following.content),
                        "reasoning": current.reasoning or following.reasoning,
                        "tool_invocations": list(current.tool_invocations) + list(following.tool_invocations),
                        "merged_message_ids": [current.id, following.id],
                    }
                )
            )
            logger.debug("messages_merged", extra={"first": current.id, "second": following.id})
            i += 2
            continue
        merged.append(current)
        i += 1
    return merged


def sanitize_response_messages(
    messages: Sequence[ConversationMessage], reasoning: Optional[str] = None
) -> List[ConversationMessage]:
    """Clean generated messages before they are persisted.

    Tool calls without a result and empty text parts are dropped, the
    reasoning (if any) is attached to every assistant message, and messages
    left with no content are removed.
    """

    result_ids = {
        part.tool_call_id
        for message in messages
        if message.role == "tool" and isinstance(message.content, list)
        for part in message.content
        if part.type == "tool-result"
    }

    sanitized: List[ConversationMessage] = []
    for message in messages:
        if message.role != "assistant" or isinstance(message.content, str):
            sanitized.append(message)
            continue
        parts = [
            part
            for part in message.content
            if (part.type != "tool-call" or part.tool_call_id in result_ids)
            and (part.type != "text" or bool(part.text))
        ]
        if reasoning:
            parts.append(MessagePart(type="reasoning", reasoning=reasoning))
        sanitized.append(message.model_copy(update={"content": parts}))
    return [m for m in sanitized if len(m.content) > 0]


def get_most_recent_user_message(messages: Sequence[AnyMessage]) -> Optional[AnyMessage]:
    for message in reversed(messages):
        if message.role == "user":
            return message
    return None
