import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _fresh_services(monkeypatch):
    """Deterministic provider and empty in-memory stores for every test."""
    from src.docstream.api.routers import documents
    from src.docstream.infrastructure import chat_store, doc_store

    monkeypatch.setenv("DOCSTREAM_PROVIDER", "fallback")
    monkeypatch.setenv("DOCSTREAM_DOC_STORE_IMPL", "memory")
    doc_store.reset_doc_store()
    chat_store.reset_chat_store()
    documents.reset_services()
    yield
    doc_store.reset_doc_store()
    chat_store.reset_chat_store()
    documents.reset_services()
