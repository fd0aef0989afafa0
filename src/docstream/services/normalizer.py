"""Text shaping for document and conversational rendering.

``normalize`` is the whole-text pass used for final payloads and persisted
messages. ``normalize_fragment`` is the streaming counterpart: it shapes one
fragment against the tail it will be appended to and never rewrites text that
has already been emitted.

Fenced code blocks inside a document are passed through untouched.
"""

from __future__ import annotations

import re
from typing import List, Tuple

_HSPACE = re.compile(r"[\t\f\v\r ]+")
_TRAILING_HSPACE = re.compile(r" +$", re.MULTILINE)
_BLANK_RUN = re.compile(r"\n{3,}")
_ANY_NEWLINES = re.compile(r" *\n[\n ]*")

_HEADING_MARKER = re.compile(r"^(#{1,6})(?=[^\s#])", re.MULTILINE)
_ORDERED_MARKER = re.compile(r"^(\d+)\.(?=[^\d\s.])", re.MULTILINE)
_DASH_MARKER = re.compile(r"^-(?=[^\s-])", re.MULTILINE)
# a lone leading star is a bullet; a star with a closing partner is emphasis
_STAR_MARKER = re.compile(r"^\*(?=[^\s*])(?![^\n]*\*)", re.MULTILINE)

# run-on sentences such as "end.Next"; decimals, file names and "U.S." are left alone
_SENTENCE_GAP = re.compile(r"(?<=[a-z0-9)\]][.!?])(?=[A-Z])")
_GAP_BEFORE = re.compile(r"[a-z0-9)\]]")

FENCE = "```"

TECHNICAL_TERM_FIXES: List[Tuple[re.Pattern[str], str]] = [
    (re.compile(r"Next\. js"), "Next.js"),
    (re.compile(r"Node\. js"), "Node.js"),
    (re.compile(r"Type\. ?Script"), "TypeScript"),
    (re.compile(r"Java\. ?Script"), "JavaScript"),
    (re.compile(r"React\. ?js"), "React.js"),
    (re.compile(r"Vue\. ?js"), "Vue.js"),
    (re.compile(r"(\d+)\. (\d+)\. (\d+)"), r"\1.\2.\3"),
]


def fix_technical_terms(text: str) -> str:
    # every fix drops a space, so repeating until nothing changes terminates
    while True:
        fixed = text
        for pattern, replacement in TECHNICAL_TERM_FIXES:
            fixed = pattern.sub(replacement, fixed)
        if fixed == text:
            return fixed
        text = fixed


def _fix_markdown_markers(text: str) -> str:
    text = _HEADING_MARKER.sub(r"\1 ", text)
    text = _ORDERED_MARKER.sub(r"\1. ", text)
    text = _DASH_MARKER.sub("- ", text)
    return _STAR_MARKER.sub("* ", text)


def _shape_prose(text: str, markdown: bool) -> str:
    text = _HSPACE.sub(" ", text)
    text = _TRAILING_HSPACE.sub("", text)
    if markdown:
        text = _fix_markdown_markers(text)
        text = _BLANK_RUN.sub("\n\n", text)
    text = _SENTENCE_GAP.sub(" ", text)
    return fix_technical_terms(text)


def split_fenced(text: str) -> List[Tuple[bool, str]]:
    """Split ``text`` into ``(is_code, chunk)`` runs of whole lines.

    Joining the chunks with ``"\\n"`` reproduces the input exactly. An
    unterminated fence runs to the end of the text.
    """

    segments: List[Tuple[bool, List[str]]] = []
    current: List[str] = []
    in_code = False
    for line in text.split("\n"):
        is_fence = line.lstrip().startswith(FENCE)
        if is_fence and not in_code:
            if current:
                segments.append((False, current))
            current = [line]
            in_code = True
        elif is_fence:
            current.append(line)
            segments.append((True, current))
            current = []
            in_code = False
        else:
            current.append(line)
    if current or not segments:
        segments.append((in_code, current))
    return [(is_code, "\n".join(lines)) for is_code, lines in segments]


def normalize(
    text: str,
    *,
    preserve_newlines: bool = False,
    preserve_markdown_headings: bool = False,
) -> str:
    """Canonicalize whitespace, sentence spacing and markdown markers.

    Document mode is ``preserve_newlines=True, preserve_markdown_headings=True``;
    the conversational path flattens everything to one line of prose. The
    result is stable under repeated application.
    """

    if not text:
        return ""
    processed = text.replace("\r\n", "\n").strip()

    if not preserve_newlines:
        processed = _ANY_NEWLINES.sub(" ", processed)
        return _shape_prose(processed, preserve_markdown_headings).strip()

    shaped = [
        chunk if is_code else _shape_prose(chunk, preserve_markdown_headings)
        for is_code, chunk in split_fenced(processed)
    ]
    return "\n".join(shaped).strip()


def normalize_fragment(tail: str, fragment: str) -> str:
    """Shape a streamed document fragment so it can be appended to ``tail``.

    Edge whitespace is kept (it carries word boundaries between fragments),
    while runs are collapsed across the join and blank lines are capped at one.
    """

    if not fragment:
        return ""
    piece = fragment.replace("\r\n", "\n")
    if tail.count(FENCE) % 2 == 1:
        return piece

    piece = _HSPACE.sub(" ", piece)
    if not tail or tail.endswith((" ", "\n")):
        piece = piece.lstrip(" ")
    if piece.startswith("\n"):
        trailing = len(tail) - len(tail.rstrip("\n"))
        leading = len(piece) - len(piece.lstrip("\n"))
        allowed = max(0, 2 - trailing) if tail else 0
        piece = "\n" * min(leading, allowed) + piece[leading:]
    piece = _BLANK_RUN.sub("\n\n", piece)
    if not piece:
        return ""

    # the prefix decides whether the first line of the piece counts as a line start
    at_line_start = not tail or tail.endswith("\n")
    prefix = "\n" if at_line_start else "x"
    piece = _fix_markdown_markers(prefix + piece)[1:]

    if len(tail) > 1 and tail[-1] in ".!?" and _GAP_BEFORE.match(tail[-2]) and piece[:1].isupper():
        piece = " " + piece
    return _SENTENCE_GAP.sub(" ", piece)
