import pytest

from src.docstream.services.normalizer import fix_technical_terms, normalize, normalize_fragment, split_fenced


DOC = dict(preserve_newlines=True, preserve_markdown_headings=True)

SAMPLES = [
    "#Heading\n\n\n\n-item one\n-item two\n1.first\nSentence one.Sentence two.",
    "Built with Next. js and Type. Script on version 14. 2. 1",
    "Intro paragraph.\n\n```python\nx  =  1\n\n\n\ny = 2\n```\n\nOutro   text.",
    "*star bullet\n*emphasis* stays\n\n\n\nlast line   ",
    "Plain prose with  double   spaces.And a run-on.",
    "Node.\njs",
    "v1.\n2. 3",
    "Built on Next.\njs today",
    "Steps 1. 2. 3. 4. 5 done",
    "",
]


@pytest.mark.parametrize("text", SAMPLES)
def test_normalize_is_idempotent_in_document_mode(text):
    once = normalize(text, **DOC)
    assert normalize(once, **DOC) == once


@pytest.mark.parametrize("text", SAMPLES)
def test_normalize_is_idempotent_in_conversational_mode(text):
    once = normalize(text)
    assert normalize(once) == once


def test_markdown_markers_and_blank_lines():
    out = normalize("#Heading\n\n\n\n-item one\n1.first", **DOC)
    assert out == "# Heading\n\n- item one\n1. first"


def test_technical_terms_are_rejoined():
    assert fix_technical_terms("Next. js and Node. js") == "Next.js and Node.js"
    assert normalize("Upgrade to 14. 2. 1 today") == "Upgrade to 14.2.1 today"


def test_conversational_mode_joins_lines_before_fixing_terms():
    assert normalize("Built on Next.\njs today") == "Built on Next.js today"
    assert normalize("v1.\n2. 3") == "v1.2.3"
    assert normalize("Steps 1. 2. 3. 4. 5 done") == "Steps 1.2.3.4.5 done"


def test_sentence_gap_only_between_sentences():
    assert normalize("It ended.Then it began.") == "It ended. Then it began."
    # decimals, file names and abbreviations are left alone
    assert normalize("Pi is 3.14 in main.py for the U.S. team") == "Pi is 3.14 in main.py for the U.S. team"


def test_conversational_mode_flattens_newlines():
    assert normalize("line one\n\nline two\n") == "line one line two"


def test_fenced_code_is_untouched():
    text = "Intro.\n```python\nx  =  1\n\n\n\ny = 2\n```"
    out = normalize(text, **DOC)
    assert "x  =  1\n\n\n\ny = 2" in out


def test_split_fenced_round_trips_and_flags_code():
    text = "a\n```js\nlet x\n```\nb"
    segments = split_fenced(text)
    assert "\n".join(chunk for _, chunk in segments) == text
    assert [is_code for is_code, _ in segments] == [False, True, False]


def test_fragment_keeps_word_boundaries_and_collapses_runs():
    assert normalize_fragment("Hello", " world") == " world"
    assert normalize_fragment("Hello ", "  world") == "world"
    assert normalize_fragment("", "  Start") == "Start"


def test_fragment_caps_blank_lines_across_the_join():
    assert normalize_fragment("para one\n\n", "\n\n\nnext") == "next"
    assert normalize_fragment("para one\n", "\n\n\nnext") == "\nnext"


def test_fragment_fixes_markers_only_at_line_start():
    assert normalize_fragment("Intro\n", "#Title") == "# Title"
    assert normalize_fragment("Intro ", "#hashtag") == "#hashtag"


def test_fragment_inserts_sentence_gap_across_the_join():
    assert normalize_fragment("It ended.", "Then more") == " Then more"


def test_fragment_inside_open_fence_passes_through():
    assert normalize_fragment("```python\n", "x  =  1") == "x  =  1"
