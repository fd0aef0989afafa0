from __future__ import annotations

"""System prompts handed to the generation provider, one per document kind."""

from typing import Dict, Optional

from .languages import SUPPORTED_LANGUAGES

TEXT_PROMPT = (
    "Write about the given topic. Markdown is supported. Use a single top-level heading "
    "and at most three heading levels."
)

CODE_PROMPT = (
    "You are a code generator creating self-contained, executable code snippets. "
    "Start your response with the programming language on the first line, one of: "
    + ", ".join(SUPPORTED_LANGUAGES)
    + ". Put only the code after that line, without markdown fences or commentary."
)

SHEET_PROMPT = (
    "You are a spreadsheet creation assistant. Create structured CSV data with a header row "
    "of column names, consistent data types per column and no empty cells."
)

SUGGESTIONS_PROMPT = (
    "You are a writing assistant. Given a piece of writing, offer at most five suggestions to improve it. "
    "Respond with a JSON array of objects with the keys originalText, suggestedText, description, "
    "category (clarity, grammar, structure, organization or flow) and impact (high, medium or low)."
)

_CREATE_PROMPTS: Dict[str, str] = {
    "text": TEXT_PROMPT,
    "code": CODE_PROMPT,
    "sheet": SHEET_PROMPT,
}

_UPDATE_GUIDES: Dict[str, str] = {
    "text": "Update the text document based on the given prompt.",
    "code": "Update the code based on the given prompt.",
    "sheet": "Update the spreadsheet based on the given prompt.",
}


def create_document_prompt(kind: str) -> str:
    return _CREATE_PROMPTS.get(kind, TEXT_PROMPT)


def update_document_prompt(current_content: Optional[str], kind: str) -> str:
    guide = _UPDATE_GUIDES.get(kind, _UPDATE_GUIDES["text"])
    if not current_content:
        return guide
    return (
        f"{guide}\n\nCurrent content:\n{current_content}\n\n"
        "Preserve the existing structure and keep unmodified content as is."
    )
