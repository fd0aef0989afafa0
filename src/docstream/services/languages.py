"""Language tags for code documents and a pluggable guesser.

``LanguageDetector`` walks an ordered list of ``(predicate, tag)`` rules and
returns the first match. Pass a different rule list (or any callable with the
same signature) to swap the strategy without touching the decoders.
"""

from __future__ import annotations

import re
from typing import Callable, List, Optional, Sequence, Tuple

SUPPORTED_LANGUAGES: Tuple[str, ...] = ("text", "python", "javascript", "jsx", "typescript", "java", "cpp")
DEFAULT_LANGUAGE = "text"

Predicate = Callable[[str], bool]


def is_supported_language(value: Optional[str]) -> bool:
    return bool(value) and value.strip().lower() in SUPPORTED_LANGUAGES


def _matches(pattern: str) -> Predicate:
    compiled = re.compile(pattern)
    return lambda code: bool(compiled.search(code))


DEFAULT_RULES: List[Tuple[Predicate, str]] = [
    (_matches(r"def\s+\w+\s*\(.*\)\s*(->\s*[\w\[\], .]+)?\s*:"), "python"),
    (_matches(r"import\s+React|useState|from\s+['\"]react['\"]"), "jsx"),
    (_matches(r"\binterface\s+\w+|\btype\s+\w+\s*=|:\s*(string|number|boolean)\b"), "typescript"),
    (_matches(r"function\s*\w*\s*\(.*\)\s*\{|console\.log|=>\s*\{"), "javascript"),
    (_matches(r"(public|private|protected)\s+(static\s+)?(class|void)"), "java"),
    (_matches(r"#include\s*[<\"]|std::"), "cpp"),
]


class LanguageDetector:
    def __init__(self, rules: Optional[Sequence[Tuple[Predicate, str]]] = None, default: str = DEFAULT_LANGUAGE) -> None:
        self._rules = list(rules if rules is not None else DEFAULT_RULES)
        self._default = default

    def __call__(self, code: str) -> str:
        if not code:
            return self._default
        for predicate, tag in self._rules:
            if predicate(code):
                return tag
        return self._default


detect_language = LanguageDetector()
