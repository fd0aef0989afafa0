from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

from src.docstream.domain.stream_models import StreamPart
from src.docstream.services.providers import ProviderEvent
from src.docstream.services.streaming import DataStream


class ScriptedProvider:
    """Yields fixed fragments; can wait on a gate, stall, or fail part way."""

    def __init__(
        self,
        fragments: Sequence[str],
        *,
        gate: Optional[asyncio.Event] = None,
        fail_at: Optional[int] = None,
        stall_at: Optional[int] = None,
    ) -> None:
        self.fragments = list(fragments)
        self.gate = gate
        self.fail_at = fail_at
        self.stall_at = stall_at
        self.calls: List[Dict[str, Any]] = []

    async def stream_text(self, *, model: str, system_prompt: str, prompt: str, max_tokens: int):
        self.calls.append({"model": model, "system_prompt": system_prompt, "prompt": prompt, "max_tokens": max_tokens})
        for index, fragment in enumerate(self.fragments):
            if self.gate is not None:
                await self.gate.wait()
            if self.fail_at == index:
                raise RuntimeError("provider exploded")
            if self.stall_at == index:
                await asyncio.sleep(3600)
            yield ProviderEvent(text_delta=fragment)


def wire(stream: DataStream) -> List[Dict[str, Any]]:
    return [part.to_wire() for part in stream.parts]


def types_of(stream: DataStream) -> List[str]:
    return [part.type for part in stream.parts]


def part(type_: str, content: Any = "", complete: bool = False) -> StreamPart:
    return StreamPart(type=type_, content=content, complete=complete)
