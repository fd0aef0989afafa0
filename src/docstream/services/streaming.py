from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Dict, Iterable, Iterator, List

from ..domain.stream_models import StreamPart

_DONE = object()


def iter_as_async(it: Iterable[Dict[str, Any]]) -> AsyncIterator[Dict[str, Any]]:
    """Drive a blocking iterator from a worker thread, one item per await."""

    async def gen() -> AsyncIterator[Dict[str, Any]]:
        iterator: Iterator[Dict[str, Any]] = iter(it)
        while True:
            item = await asyncio.to_thread(next, iterator, _DONE)
            if item is _DONE:
                return
            yield item

    return gen()


class DataStream:
    """Ordered delta channel between the orchestrator and one HTTP response.

    Every written part is kept in ``parts`` (so a late reader can replay the
    whole stream) and pushed to an asyncio queue for the live reader.
    """

    def __init__(self) -> None:
        self.parts: List[StreamPart] = []
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self.closed = False

    def write(self, part: StreamPart) -> None:
        if self.closed:
            raise RuntimeError("write to a closed data stream")
        self.parts.append(part)
        self._queue.put_nowait(part.to_wire())

    def write_error(self, message: str) -> None:
        # not a StreamPart type; clients that do not know it skip it
        self._queue.put_nowait({"type": "error", "content": message})

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_DONE)

    async def records(self) -> AsyncIterator[Dict[str, Any]]:
        while True:
            item = await self._queue.get()
            if item is _DONE:
                return
            yield item

    async def ndjson(self) -> AsyncIterator[str]:
        async for record in self.records():
            yield json.dumps(record) + "\n"
