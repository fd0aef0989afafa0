from __future__ import annotations

"""Generation providers: anything that turns a prompt into an async fragment stream.

``OpenAICompatibleProvider`` talks to any ``/v1/chat/completions`` endpoint
that streams server-sent events. With no API key configured,
``FallbackProvider`` produces a deterministic document instead so the service
still works end to end.
"""

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterator, List, Optional, Protocol

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..config import provider_name
from .streaming import iter_as_async

LOG = logging.getLogger("docstream.provider")

_STREAM_TIMEOUT = (int(os.getenv("DOCSTREAM_LLM_CONNECT_TIMEOUT", "3")), int(os.getenv("DOCSTREAM_LLM_READ_TIMEOUT", "60")))
DEFAULT_BASE_URL = "https://api.openai.com/v1"


@dataclass(frozen=True)
class ProviderEvent:
    text_delta: str
    type: str = "text-delta"


class FragmentProvider(Protocol):
    def stream_text(self, *, model: str, system_prompt: str, prompt: str, max_tokens: int) -> AsyncIterator[ProviderEvent]: ...


def _build_session() -> requests.Session:
    session = requests.Session()
    retry = Retry(
        total=2,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=frozenset(["POST"]),
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class OpenAICompatibleProvider:
    def __init__(self, api_key: str, base_url: Optional[str] = None) -> None:
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self._session = _build_session()

    def _stream_openai(self, messages: List[Dict[str, str]], model: str, max_tokens: int) -> Iterator[Dict[str, Any]]:
        LOG.debug("provider_stream", extra={"model": model, "base_url": self.base_url})
        payload = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "stream": True,
        }
        with self._session.post(
            f"{self.base_url}/chat/completions",
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=_STREAM_TIMEOUT,
            stream=True,
        ) as resp:
            resp.raise_for_status()
            for raw_line in resp.iter_lines():
                if not raw_line:
                    continue
                line = raw_line.decode("utf-8") if isinstance(raw_line, bytes) else raw_line
                if not line.startswith("data: "):
                    continue
                data = line[6:].strip()
                if data == "[DONE]":
                    break
                try:
                    parsed = json.loads(data)
                except json.JSONDecodeError:
                    continue
                delta = (parsed.get("choices") or [{}])[0].get("delta") or {}
                token = delta.get("content") or ""
                if token:
                    yield {"token": token}

    async def stream_text(self, *, model: str, system_prompt: str, prompt: str, max_tokens: int) -> AsyncIterator[ProviderEvent]:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": prompt},
        ]
        async for item in iter_as_async(self._stream_openai(messages, model, max_tokens)):
            yield ProviderEvent(text_delta=item["token"])


_WORD = re.compile(r"\s*\S+\s*|\s+")


def _chunks(text: str) -> Iterator[str]:
    """Word-sized fragments, the way hosted models tend to stream."""
    for match in _WORD.finditer(text):
        yield match.group(0)


class FallbackProvider:
    """Deterministic output shaped after the system prompt's document kind."""

    def _compose(self, system_prompt: str, prompt: str) -> str:
        lowered = system_prompt.split("\n", 1)[0].lower()
        subject = " ".join(prompt.split()) or "Untitled"
        if "suggestions" in lowered:
            first = prompt.strip().split("\n")[0].strip()
            if not first:
                return "[]"
            return json.dumps(
                [
                    {
                        "originalText": first,
                        "suggestedText": first.rstrip(".") + ", stated more directly.",
                        "description": "Tighten the opening sentence.",
                        "category": "clarity",
                        "impact": "medium",
                    }
                ]
            )
        if "spreadsheet" in lowered:
            return f"Item,Notes\n{subject.replace(',', ' ')},N/A\nTotal,0\n"
        if "code" in lowered:
            return f"python\ndef main() -> None:\n    print({subject!r})\n\n\nmain()\n"
        return f"# {subject}\n\nThis document covers {subject}.\n\n## Summary\n\n- Overview of {subject}.\n"

    async def stream_text(self, *, model: str, system_prompt: str, prompt: str, max_tokens: int) -> AsyncIterator[ProviderEvent]:
        for chunk in _chunks(self._compose(system_prompt, prompt)):
            yield ProviderEvent(text_delta=chunk)


def _has_api_key() -> bool:
    return bool(os.getenv("OPENAI_API_KEY"))


def get_provider() -> FragmentProvider:
    name = provider_name()
    if name == "fallback" or (name is None and not _has_api_key()):
        return FallbackProvider()
    if name not in (None, "openai"):
        raise RuntimeError(f"Unknown provider override: {name}")
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY is required for the openai provider")
    return OpenAICompatibleProvider(api_key=api_key, base_url=os.getenv("OPENAI_BASE_URL"))


async def stream_with_idle_timeout(
    provider: FragmentProvider,
    *,
    model: str,
    system_prompt: str,
    prompt: str,
    max_tokens: int,
    idle_timeout: float,
) -> AsyncIterator[ProviderEvent]:
    """Provider events, each awaited for at most ``idle_timeout`` seconds.

    A stalled provider surfaces as ``asyncio.TimeoutError``.
    """

    events = provider.stream_text(
        model=model, system_prompt=system_prompt, prompt=prompt, max_tokens=max_tokens
    ).__aiter__()
    try:
        while True:
            try:
                event = await asyncio.wait_for(events.__anext__(), timeout=idle_timeout)
            except StopAsyncIteration:
                return
            yield event
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()
