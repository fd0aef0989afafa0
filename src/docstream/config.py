from __future__ import annotations

"""Environment-driven settings for the streaming core.

Values are read lazily through ``StreamSettings.from_env()`` so tests can
monkeypatch the environment and build a fresh settings object per case.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
        return value if value > 0 else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
        return value if value > 0 else default
    except ValueError:
        return default


@dataclass(frozen=True)
class StreamSettings:
    flush_threshold: int = 150
    dedupe_window: int = 100
    text_min_overlap: int = 4
    code_min_overlap: int = 32
    language_probe_chars: int = 20
    stream_idle_timeout: float = 60.0
    max_tokens: int = 4000
    artifact_model: str = "gpt-4o-mini"

    @staticmethod
    def from_env() -> "StreamSettings":
        return StreamSettings(
            flush_threshold=_env_int("DOCSTREAM_FLUSH_THRESHOLD", 150),
            dedupe_window=_env_int("DOCSTREAM_DEDUPE_WINDOW", 100),
            text_min_overlap=_env_int("DOCSTREAM_TEXT_MIN_OVERLAP", 4),
            code_min_overlap=_env_int("DOCSTREAM_CODE_MIN_OVERLAP", 32),
            language_probe_chars=_env_int("DOCSTREAM_LANGUAGE_PROBE_CHARS", 20),
            stream_idle_timeout=_env_float("DOCSTREAM_STREAM_IDLE_TIMEOUT", 60.0),
            max_tokens=_env_int("DOCSTREAM_MAX_TOKENS", 4000),
            artifact_model=os.getenv("DOCSTREAM_ARTIFACT_MODEL") or "gpt-4o-mini",
        )


def provider_name() -> Optional[str]:
    """Explicit provider override, or ``None`` to auto-select."""

    value = (os.getenv("DOCSTREAM_PROVIDER") or "").strip().lower()
    return value or None
