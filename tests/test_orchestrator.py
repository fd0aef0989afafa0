import asyncio

import pytest

from src.docstream.config import StreamSettings
from src.docstream.infrastructure.doc_store import InMemoryDocumentStore
from src.docstream.services.locks import UpdateLockRegistry
from src.docstream.services.orchestrator import (
    DocumentNotFound,
    DocumentOrchestrator,
    GenerationError,
    GenerationTimeout,
)
from src.docstream.services.stream_handler import ArtifactStore, StreamHandler
from src.docstream.services.reconciliation import render_inline
from src.docstream.services.streaming import DataStream

from .utils import ScriptedProvider, types_of, wire


def _orchestrator(fragments, settings=None, **provider_kwargs):
    store = InMemoryDocumentStore()
    provider = ScriptedProvider(fragments, **provider_kwargs)
    return DocumentOrchestrator(store, provider, UpdateLockRegistry(), settings or StreamSettings()), store, provider


@pytest.mark.asyncio
async def test_create_emits_records_in_order_and_persists_before_finish():
    orch, store, _ = _orchestrator(["# Rivers\n\n", "Rivers flow", " downhill."])
    stream = DataStream()
    outcome = await orch.create_document(title="Rivers", kind="text", user_id="u@example.com", stream=stream, document_id="doc-1")

    types = types_of(stream)
    assert types[:4] == ["id", "title", "kind", "clear"]
    assert types[-2:] == ["text-delta", "finish"]
    assert stream.parts[-2].complete is True
    assert stream.parts[-2].content == "# Rivers\n\nRivers flow downhill."

    saved = store.get_document_by_id(id="doc-1")
    assert saved is not None
    assert saved.content == stream.parts[-2].content
    assert saved.user_id == "u@example.com"
    assert outcome.document == saved
    assert not outcome.skipped
    assert not orch.locks.is_locked("doc-1")


@pytest.mark.asyncio
async def test_text_deltas_are_buffered_up_to_the_threshold():
    fragments = [f"w{i:02d} " for i in range(12)]
    orch, _, _ = _orchestrator(fragments, settings=StreamSettings(flush_threshold=20))
    stream = DataStream()
    await orch.create_document(title="Words", kind="text", user_id="u", stream=stream)
    partial = [p.content for p in stream.parts if p.type == "text-delta" and not p.complete]
    assert [len(p) for p in partial] == [20, 20, 8]
    assert "".join(partial) == "".join(fragments)


@pytest.mark.asyncio
async def test_sheet_deltas_are_whole_rows():
    orch, _, _ = _orchestrator(["a,b\n1,", "2\n3,4"])
    stream = DataStream()
    await orch.create_document(title="Grid", kind="sheet", user_id="u", stream=stream)
    partial = [p.content for p in stream.parts if p.type == "sheet-delta" and not p.complete]
    assert partial == ["a,b\n", "1,2\n", "3,4"]
    assert stream.parts[-2].content == "a,b\n1,2\n3,4"


@pytest.mark.asyncio
async def test_code_language_is_announced_before_code():
    orch, _, _ = _orchestrator(["python\n", "def f():\n", "    return 1\n"])
    stream = DataStream()
    outcome = await orch.create_document(title="Snippet", kind="code", user_id="u", stream=stream)
    deltas = [p.content for p in stream.parts if p.type == "code-delta"]
    assert deltas[0] == "language:python\n"
    assert deltas[-1] == "def f():\n    return 1"
    assert outcome.language == "python"


@pytest.mark.asyncio
async def test_code_update_reuses_existing_language():
    orch, store, provider = _orchestrator(["def g():\n", "    return 2\n"])
    store.save_document(id="doc-1", title="Snippet", kind="code", content="def f():\n    return 1", user_id="u")
    stream = DataStream()
    outcome = await orch.update_document(document_id="doc-1", description="rename to g", user_id="u", stream=stream)
    deltas = [p.content for p in stream.parts if p.type == "code-delta"]
    assert deltas[0] == "language:python\n"
    assert outcome.language == "python"
    assert "def f():" in provider.calls[0]["system_prompt"]
    assert provider.calls[0]["prompt"] == "rename to g"
    assert [d.content for d in store.get_documents_by_id(id="doc-1")] == ["def f():\n    return 1", "def g():\n    return 2"]


@pytest.mark.asyncio
async def test_update_of_unknown_document_raises():
    orch, _, _ = _orchestrator(["x"])
    with pytest.raises(DocumentNotFound):
        await orch.update_document(document_id="missing", description="d", user_id="u", stream=DataStream())


@pytest.mark.asyncio
async def test_concurrent_updates_only_one_runs():
    gate = asyncio.Event()
    orch, store, _ = _orchestrator(["Updated ", "content."], gate=gate)
    store.save_document(id="doc-1", title="Doc", kind="text", content="Original.", user_id="u")

    first_stream = DataStream()
    first = asyncio.create_task(
        orch.update_document(document_id="doc-1", description="first", user_id="u", stream=first_stream)
    )
    while not orch.locks.is_locked("doc-1"):
        await asyncio.sleep(0)

    second_stream = DataStream()
    second = await orch.update_document(document_id="doc-1", description="second", user_id="u", stream=second_stream)
    assert second.skipped is True
    assert second_stream.parts == []
    assert orch.locks.is_locked("doc-1")

    gate.set()
    outcome = await first
    assert outcome.skipped is False
    versions = store.get_documents_by_id(id="doc-1")
    assert [v.content for v in versions] == ["Original.", "Updated content."]
    assert not orch.locks.is_locked("doc-1")


@pytest.mark.asyncio
async def test_provider_failure_saves_partial_and_releases_lock():
    orch, store, _ = _orchestrator(["Hello ", "world. ", "never sent"], fail_at=2)
    stream = DataStream()
    with pytest.raises(GenerationError) as excinfo:
        await orch.create_document(title="Hi", kind="text", user_id="u", stream=stream, document_id="doc-1")
    assert not isinstance(excinfo.value, GenerationTimeout)
    assert excinfo.value.partial_content == "Hello world. "
    assert store.get_document_by_id(id="doc-1").content == "Hello world. "
    assert "finish" not in types_of(stream)
    assert not orch.locks.is_locked("doc-1")


@pytest.mark.asyncio
async def test_stalled_provider_times_out_and_releases_lock():
    settings = StreamSettings(stream_idle_timeout=0.05)
    orch, store, _ = _orchestrator(["Hello ", "world. ", "stuck"], settings=settings, stall_at=2)
    stream = DataStream()
    with pytest.raises(GenerationTimeout) as excinfo:
        await orch.create_document(title="Hi", kind="text", user_id="u", stream=stream, document_id="doc-1")
    assert excinfo.value.document_id == "doc-1"
    assert store.get_document_by_id(id="doc-1").content == "Hello world. "
    assert not orch.locks.is_locked("doc-1")

    # the lock is free for the next attempt
    retry, _, _ = _orchestrator(["Fresh."])
    retry.store = store
    retry.locks = orch.locks
    outcome = await retry.create_document(title="Hi", kind="text", user_id="u", stream=DataStream(), document_id="doc-1")
    assert outcome.document.content == "Fresh."


@pytest.mark.asyncio
async def test_failure_before_any_content_saves_nothing():
    orch, store, _ = _orchestrator(["never"], fail_at=0)
    with pytest.raises(GenerationError):
        await orch.create_document(title="Hi", kind="text", user_id="u", stream=DataStream(), document_id="doc-1")
    assert store.get_document_by_id(id="doc-1") is None


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kind,fragments",
    [
        ("text", ["#Title\n", "\n\n\nFirst para.", "Second para with Next. js"]),
        ("code", ["```javascript\n", "function add(a, b) {\n", "  return a + b;\n}\n```"]),
        ("sheet", ["Here is the data:\n", "name,qty\n", "apple,3\n", "pear,4"]),
    ],
)
async def test_finish_content_matches_reloaded_document(kind, fragments):
    orch, store, _ = _orchestrator(fragments, settings=StreamSettings(flush_threshold=8))
    stream = DataStream()
    await orch.create_document(title="Doc", kind=kind, user_id="u", stream=stream, document_id="doc-1")

    client = ArtifactStore()
    StreamHandler(client).process(wire(stream))
    at_finish = render_inline(client.artifact).content

    reloaded = ArtifactStore()
    persisted = store.get_document_by_id(id="doc-1")
    reloaded.load_document(persisted)
    after_reload = render_inline(reloaded.artifact, persisted).content

    assert client.artifact.status == "idle"
    assert at_finish == after_reload == persisted.content
