import pytest

from src.docstream.domain.artifact_models import Suggestion
from src.docstream.services.lifecycle import DocumentLifecycle, DocumentPhase, replay

from .utils import part


def _started(kind="text", document_id="doc-1"):
    lifecycle = DocumentLifecycle()
    lifecycle.apply_all(
        [
            part("id", document_id),
            part("title", "My doc"),
            part("kind", kind),
            part("clear", "My doc"),
        ]
    )
    return lifecycle


def test_starts_empty_and_id_starts_streaming():
    lifecycle = DocumentLifecycle()
    assert lifecycle.phase == DocumentPhase.EMPTY
    lifecycle.apply(part("id", "doc-1"))
    assert lifecycle.phase == DocumentPhase.STREAMING
    assert lifecycle.artifact.status == "streaming"
    assert lifecycle.artifact.document_id == "doc-1"


def test_content_is_append_only_while_streaming():
    lifecycle = _started()
    lengths = []
    for fragment in ["Hello", " world.", "Next", " sentence", "\n\n\n\n", "## Part", " two", "  spaced   out"]:
        lifecycle.apply(part("text-delta", fragment))
        lengths.append(len(lifecycle.content))
    assert lengths == sorted(lengths)
    assert lifecycle.content.startswith("Hello world. Next sentence")


def test_redelivered_fragment_is_deduplicated():
    lifecycle = _started()
    lifecycle.apply(part("text-delta", "The cat sat"))
    lifecycle.apply(part("text-delta", "cat sat on the mat"))
    assert lifecycle.content == "The cat sat on the mat"


def test_finish_settles_and_ignores_late_deltas():
    lifecycle = _started()
    lifecycle.apply(part("text-delta", "#Title\n\nBody text."))
    lifecycle.apply(part("finish"))
    assert lifecycle.phase == DocumentPhase.IDLE
    assert lifecycle.artifact.status == "idle"
    assert lifecycle.content == "# Title\n\nBody text."

    lifecycle.apply(part("text-delta", "late"))
    lifecycle.apply(part("finish"))
    assert lifecycle.content == "# Title\n\nBody text."


def test_complete_payload_replaces_content_at_finish():
    lifecycle = _started()
    lifecycle.apply(part("text-delta", "draft"))
    lifecycle.apply(part("text-delta", "Authoritative.", complete=True))
    assert lifecycle.content == "draft"
    lifecycle.apply(part("finish"))
    assert lifecycle.content == "Authoritative."


def test_kind_cannot_change_once_set():
    lifecycle = _started(kind="text")
    lifecycle.apply(part("kind", "code"))
    assert lifecycle.artifact.kind == "text"
    lifecycle.apply(part("code-delta", "print(1)"))
    assert lifecycle.content == ""


def test_unknown_kind_is_rejected():
    lifecycle = DocumentLifecycle()
    lifecycle.apply(part("id", "doc-1"))
    lifecycle.apply(part("kind", "hologram"))
    assert lifecycle.artifact.kind == "text"


def test_unknown_record_type_is_skipped(caplog):
    lifecycle = _started()
    lifecycle.apply(part("mystery-delta", "???"))
    lifecycle.apply(part("text-delta", "still works"))
    assert lifecycle.content == "still works"
    assert any(r.getMessage() == "unknown_stream_record" for r in caplog.records)


def test_clear_resets_content_only_while_streaming():
    lifecycle = _started()
    lifecycle.apply(part("text-delta", "first"))
    lifecycle.apply(part("clear"))
    assert lifecycle.content == ""
    lifecycle.apply(part("text-delta", "second"))
    lifecycle.apply(part("finish"))
    lifecycle.apply(part("clear"))
    assert lifecycle.content == "second"


def test_title_does_not_reopen_an_idle_document():
    lifecycle = _started()
    lifecycle.apply(part("finish"))
    lifecycle.apply(part("title", "Renamed"))
    assert lifecycle.artifact.title == "Renamed"
    assert lifecycle.phase == DocumentPhase.IDLE


def test_same_id_reopens_idle_document_and_keeps_content_until_clear():
    lifecycle = _started()
    lifecycle.apply(part("text-delta", "version one"))
    lifecycle.apply(part("finish"))
    lifecycle.apply(part("id", "doc-1"))
    assert lifecycle.is_streaming
    assert lifecycle.content == "version one"
    lifecycle.apply(part("clear"))
    assert lifecycle.content == ""


def test_new_id_resets_content_and_unlocks_kind():
    lifecycle = _started(kind="text")
    lifecycle.apply(part("text-delta", "old"))
    lifecycle.apply(part("finish"))
    lifecycle.apply(part("id", "doc-2"))
    lifecycle.apply(part("kind", "sheet"))
    assert lifecycle.content == ""
    assert lifecycle.artifact.kind == "sheet"


def test_visibility_is_never_touched():
    lifecycle = DocumentLifecycle()
    lifecycle.artifact.visibility = "expanded"
    lifecycle.apply_all([part("id", "doc-1"), part("kind", "text"), part("text-delta", "x"), part("finish")])
    assert lifecycle.artifact.visibility == "expanded"
    lifecycle.artifact.visibility = "collapsed"
    lifecycle.apply_all([part("id", "doc-2"), part("finish")])
    assert lifecycle.artifact.visibility == "collapsed"


def test_suggestions_accumulate_in_any_phase():
    lifecycle = _started()
    lifecycle.apply(part("finish"))
    suggestion = Suggestion(id="s1", document_id="doc-1", original_text="a", suggested_text="b")
    lifecycle.apply(part("suggestion", suggestion))
    assert lifecycle.metadata.suggestions == [suggestion]


def test_code_stream_with_language_marker():
    lifecycle = replay(
        [
            part("id", "doc-1"),
            part("title", "Snippet"),
            part("kind", "code"),
            part("clear", "Snippet"),
            part("code-delta", "language:python\n"),
            part("code-delta", "def f():\n    return 1\n"),
            part("finish"),
        ]
    )
    assert lifecycle.content == "def f():\n    return 1"
    assert lifecycle.language == "python"


def test_code_stream_with_language_first_line():
    lifecycle = replay(
        [
            part("id", "doc-1"),
            part("kind", "code"),
            part("code-delta", "pyth"),
            part("code-delta", "on\ndef f():\n"),
            part("code-delta", "    return 1\n"),
        ]
    )
    assert lifecycle.content == "def f():\n    return 1\n"
    lifecycle.apply(part("finish"))
    assert lifecycle.content == "def f():\n    return 1"
    assert lifecycle.language == "python"


def test_sheet_stream_appends_whole_rows():
    lifecycle = _started(kind="sheet")
    lifecycle.apply(part("sheet-delta", "Here are the rows:\na,b\n1,"))
    assert lifecycle.content == "a,b\n"
    lifecycle.apply(part("sheet-delta", "2\n"))
    assert lifecycle.content == "a,b\n1,2\n"
    lifecycle.apply(part("finish"))
    assert lifecycle.content == "a,b\n1,2"


@pytest.mark.parametrize("kind", ["text", "code", "sheet", "image"])
def test_delta_of_the_other_kind_is_ignored(kind):
    lifecycle = _started(kind=kind)
    other = "image" if kind != "image" else "text"
    lifecycle.apply(part(f"{other}-delta", "payload, value"))
    assert lifecycle.content == ""
