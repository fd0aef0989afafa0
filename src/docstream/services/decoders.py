"""Kind-specific payload extraction for streamed documents.

Every decoder has two faces:

* the incremental face (``heal``/``feed``/``shape``/``drain``) used while
  fragments are still arriving; it is best-effort and may hold back partial
  input in its scratch dict;
* ``decode``, the authoritative pass over the complete raw buffer that
  produces the payload persisted at ``finish``.

A decoder that finds no recognisable payload hands back the raw content
instead of failing.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, MutableMapping, Optional, Tuple

from ..config import StreamSettings
from .dedupe import DISABLED, DedupePolicy
from .languages import DEFAULT_LANGUAGE, detect_language, is_supported_language
from .normalizer import normalize, normalize_fragment, split_fenced


logger = logging.getLogger("docstream.decoders")

Scratch = MutableMapping[str, Any]

# client-side marker carrying the detected language ahead of the code itself
LANGUAGE_MARKER = "language:"


@dataclass(frozen=True)
class DecodeResult:
    payload: str
    subtype: Optional[str] = None


class Decoder:
    kind: str = "base"

    def __init__(self, settings: Optional[StreamSettings] = None) -> None:
        self.settings = settings or StreamSettings()

    @property
    def dedupe_policy(self) -> DedupePolicy:
        return DedupePolicy(window=self.settings.dedupe_window, min_overlap=self.settings.text_min_overlap)

    def intercept(self, fragment: str, scratch: Scratch) -> str:
        """Consume in-band metadata records; returns what is left as content."""
        return fragment

    def heal(self, raw: str, fragment: str, scratch: Scratch) -> str:
        """Repair ``fragment`` before it joins the raw buffer."""
        return fragment

    def feed(self, fragment: str, scratch: Scratch) -> str:
        """Return the payload carried by a newly appended raw fragment."""
        return fragment

    def shape(self, content: str, piece: str) -> str:
        return piece

    def drain(self, scratch: Scratch) -> str:
        """Release anything ``feed`` was still holding back."""
        return ""

    def probe_language(self, content: str, scratch: Scratch) -> Optional[str]:
        return None

    def decode(self, raw: str) -> DecodeResult:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Text
# ---------------------------------------------------------------------------
_HEADING_LINE = re.compile(r"^(#{1,6}) ", re.MULTILINE)


def enforce_heading_rules(text: str) -> str:
    """Keep a single H1 and cap heading depth at H3, outside code fences."""

    seen_h1 = False
    shaped: List[str] = []
    for is_code, chunk in split_fenced(text):
        if is_code:
            shaped.append(chunk)
            continue

        def _fix(match: "re.Match[str]") -> str:
            nonlocal seen_h1
            level = len(match.group(1))
            if level == 1:
                if seen_h1:
                    return "## "
                seen_h1 = True
                return "# "
            return "#" * min(level, 3) + " "

        shaped.append(_HEADING_LINE.sub(_fix, chunk))
    return "\n".join(shaped)


class TextDecoder(Decoder):
    kind = "text"

    def shape(self, content: str, piece: str) -> str:
        return normalize_fragment(content, piece)

    def decode(self, raw: str) -> DecodeResult:
        payload = normalize(raw, preserve_newlines=True, preserve_markdown_headings=True)
        payload = enforce_heading_rules(payload)
        if not payload.strip():
            return DecodeResult(payload=raw)
        return DecodeResult(payload=payload)


# ---------------------------------------------------------------------------
# Code
# ---------------------------------------------------------------------------
_FENCED_BLOCK = re.compile(r"```([a-z]+(?:-?[a-z0-9]+)*)\n([\s\S]+?)\n```")
_OPENING_FENCE = re.compile(r"^([a-z]+(?:-?[a-z0-9]+)*)\n")

MARKDOWN_CLEANERS: List[Tuple[re.Pattern[str], str]] = [
    (re.compile(r"^#+\s+[A-Z*][^\n]*$", re.MULTILINE), ""),  # markdown headers
    (re.compile(r"\*\*([A-Za-z][^*\n]*?)\*\*"), r"\1"),  # bold markers
]

CODE_CLEANERS: List[Tuple[re.Pattern[str], str]] = [
    (re.compile(r"```[a-z]*\n?"), ""),  # stray fences
    (re.compile(r"^[ \t]*-{3,}[ \t]*$", re.MULTILINE), ""),  # separator lines
]


def clean_code(code: str, language: str = DEFAULT_LANGUAGE) -> str:
    # "# Title" and "**kwargs" are both valid python
    cleaners = CODE_CLEANERS if language == "python" else MARKDOWN_CLEANERS + CODE_CLEANERS
    for pattern, replacement in cleaners:
        code = pattern.sub(replacement, code)
    return code.strip("\n").rstrip()


def _tag_from_line(line: str) -> Optional[str]:
    candidate = line.strip().lower()
    if candidate.startswith(LANGUAGE_MARKER):
        candidate = candidate[len(LANGUAGE_MARKER):].strip()
    return candidate if is_supported_language(candidate) else None


def process_code_output(content: str, detector: Callable[[str], str] = detect_language) -> DecodeResult:
    """Pull ``(code, language)`` out of raw model output.

    Tried in order: a bare language tag on the first line, a complete fenced
    block, an unterminated fence, then pattern-based guessing on the body.
    """

    if not content or not content.strip():
        return DecodeResult(payload="", subtype=DEFAULT_LANGUAGE)

    lines = content.strip("\n").split("\n")
    if len(lines) > 1:
        tag = _tag_from_line(lines[0])
        if tag:
            return DecodeResult(payload="\n".join(lines[1:]).strip("\n").rstrip(), subtype=tag)

    match = _FENCED_BLOCK.search(content)
    if match and is_supported_language(match.group(1)):
        return DecodeResult(payload=match.group(2).strip("\n").rstrip(), subtype=match.group(1))

    code = content
    if "```" in content:
        opened = content.split("```")[1]
        lang = _OPENING_FENCE.match(opened)
        if lang and is_supported_language(lang.group(1)):
            return DecodeResult(payload=opened[lang.end():].strip("\n").rstrip(), subtype=lang.group(1))
        code = opened

    language = detector(code)
    cleaned = clean_code(code, language)
    if not cleaned:
        return DecodeResult(payload=content, subtype=language)
    return DecodeResult(payload=cleaned, subtype=language)


class CodeDecoder(Decoder):
    """Strips the leading language line while streaming.

    Scratch keys: ``language`` (detected tag or ``None``), ``header_done`` and
    ``pending`` (first-line text not yet classified).
    """

    kind = "code"

    def __init__(self, settings: Optional[StreamSettings] = None, detector: Callable[[str], str] = detect_language) -> None:
        super().__init__(settings)
        self.detector = detector

    @property
    def dedupe_policy(self) -> DedupePolicy:
        return DedupePolicy(window=self.settings.dedupe_window, min_overlap=self.settings.code_min_overlap)

    def intercept(self, fragment: str, scratch: Scratch) -> str:
        if not fragment.startswith(LANGUAGE_MARKER):
            return fragment
        line, sep, rest = fragment.partition("\n")
        tag = _tag_from_line(line)
        if not tag or not sep:
            return fragment
        scratch["language"] = tag
        if not scratch.get("header_done") and not scratch.get("pending"):
            scratch["header_done"] = True
        return rest

    def feed(self, fragment: str, scratch: Scratch) -> str:
        if scratch.get("header_done"):
            return fragment

        pending = scratch.get("pending", "") + fragment
        if "\n" not in pending:
            scratch["pending"] = pending
            return ""
        first, _, rest = pending.partition("\n")
        scratch["pending"] = ""
        scratch["header_done"] = True
        tag = _tag_from_line(first)
        if tag:
            scratch["language"] = tag
            return rest
        stripped = first.strip()
        if stripped.startswith("```"):
            fence_tag = stripped[3:].strip().lower()
            if is_supported_language(fence_tag):
                scratch["language"] = fence_tag
            return rest
        return pending

    def drain(self, scratch: Scratch) -> str:
        pending = scratch.get("pending", "")
        scratch["pending"] = ""
        tag = _tag_from_line(pending) if pending else None
        if tag:
            scratch["language"] = tag
            return ""
        return pending

    def probe_language(self, content: str, scratch: Scratch) -> Optional[str]:
        """Language known so far, or ``None`` while it is still undecided."""

        if scratch.get("language"):
            return scratch["language"]
        if len(content) < self.settings.language_probe_chars:
            return None
        guess = self.detector(content)
        return None if guess == DEFAULT_LANGUAGE else guess

    def decode(self, raw: str) -> DecodeResult:
        return process_code_output(raw, self.detector)


# ---------------------------------------------------------------------------
# Sheet
# ---------------------------------------------------------------------------
_CSV_BLOCK = re.compile(r"```(?:csv)?\n([\s\S]+?)\n```")
# prose lead-ins; a column named "ID" or "Item" is still a row
_PROSE_LINE = re.compile(r"^(?:Here|This|I|The)\b(?!\s*,)")
_JOIN_BEFORE = re.compile(r"[a-zA-Z0-9,:;\-_(\[{]$")
_JOIN_AFTER = re.compile(r"^[a-zA-Z0-9)\]},]")


def looks_like_row(line: str) -> bool:
    stripped = line.strip()
    if "," not in line or line.startswith(("#", "//")) or stripped.startswith("```"):
        return False
    return not _PROSE_LINE.match(stripped)


def extract_csv_content(content: str) -> str:
    match = _CSV_BLOCK.search(content)
    if match:
        return match.group(1).strip()
    rows = [line for line in content.split("\n") if looks_like_row(line)]
    if rows:
        return "\n".join(rows)
    return content


class SheetDecoder(Decoder):
    """CSV rows only, emitted a whole line at a time.

    Scratch keys: ``header_seen`` (a newline has arrived, so row data has
    started) and ``pending`` (an incomplete trailing line).
    """

    kind = "sheet"

    @property
    def dedupe_policy(self) -> DedupePolicy:
        return DedupePolicy(window=self.settings.dedupe_window, min_overlap=self.settings.code_min_overlap)

    def heal(self, raw: str, fragment: str, scratch: Scratch) -> str:
        if scratch.get("header_seen") or not raw or not fragment:
            return fragment
        if raw[-1].isspace() or fragment[0].isspace():
            return fragment
        if _JOIN_BEFORE.search(raw) and _JOIN_AFTER.match(fragment):
            return " " + fragment
        return fragment

    def feed(self, fragment: str, scratch: Scratch) -> str:
        if "\n" in fragment:
            scratch["header_seen"] = True
        pending = scratch.get("pending", "") + fragment
        if "\n" not in pending:
            scratch["pending"] = pending
            return ""
        complete, _, remainder = pending.rpartition("\n")
        scratch["pending"] = remainder
        rows = [line for line in complete.split("\n") if looks_like_row(line)]
        return "".join(row + "\n" for row in rows)

    def drain(self, scratch: Scratch) -> str:
        pending = scratch.get("pending", "")
        scratch["pending"] = ""
        return pending if looks_like_row(pending) else ""

    def decode(self, raw: str) -> DecodeResult:
        return DecodeResult(payload=extract_csv_content(raw))


# ---------------------------------------------------------------------------
# Image
# ---------------------------------------------------------------------------
class ImageDecoder(Decoder):
    """Opaque base64/URL payload, passed through as-is."""

    kind = "image"

    @property
    def dedupe_policy(self) -> DedupePolicy:
        return DISABLED

    def decode(self, raw: str) -> DecodeResult:
        return DecodeResult(payload=raw.strip())


_DECODERS: Dict[str, type] = {
    "text": TextDecoder,
    "code": CodeDecoder,
    "sheet": SheetDecoder,
    "image": ImageDecoder,
}


def get_decoder(kind: str, settings: Optional[StreamSettings] = None) -> Decoder:
    try:
        return _DECODERS[kind](settings)
    except KeyError:
        logger.warning("unknown_document_kind", extra={"kind": kind})
        return TextDecoder(settings)
