from __future__ import annotations

"""Document endpoints.

Create, update and suggestion requests answer with an NDJSON stream of
stream parts (one JSON object per line); generation runs as a background
task that writes into the stream and closes it when done.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import Field

from ...config import StreamSettings
from ...domain.artifact_models import ArtifactKind
from ...domain.base import CamelModel
from ...infrastructure.doc_store import get_doc_store
from ...security.auth import User, get_current_user
from ...services.locks import UpdateLockRegistry
from ...services.orchestrator import DocumentNotFound, DocumentOrchestrator, GenerationError
from ...services.providers import get_provider
from ...services.streaming import DataStream
from ...services.suggestions import SuggestionService

router = APIRouter(prefix="/documents", tags=["documents"])
logger = logging.getLogger("docstream.api")

NDJSON = "application/x-ndjson"

_orchestrator: Optional[DocumentOrchestrator] = None
_suggestion_service: Optional[SuggestionService] = None
# strong references to running generation tasks
_tasks: Set["asyncio.Task[Any]"] = set()


class DocumentCreate(CamelModel):
    title: str = Field(min_length=1)
    kind: ArtifactKind = "text"
    id: Optional[str] = None


class DocumentUpdate(CamelModel):
    description: str = Field(min_length=1)


def get_orchestrator() -> DocumentOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = DocumentOrchestrator(
            store=get_doc_store(),
            provider=get_provider(),
            locks=UpdateLockRegistry(),
            settings=StreamSettings.from_env(),
        )
    return _orchestrator


def get_suggestion_service() -> SuggestionService:
    global _suggestion_service
    if _suggestion_service is None:
        _suggestion_service = SuggestionService(
            store=get_doc_store(), provider=get_provider(), settings=StreamSettings.from_env()
        )
    return _suggestion_service


def reset_services() -> None:
    global _orchestrator, _suggestion_service
    _orchestrator = None
    _suggestion_service = None


def _stream_response(job: Callable[[DataStream], Awaitable[None]]) -> StreamingResponse:
    stream = DataStream()

    async def run() -> None:
        try:
            await job(stream)
        except GenerationError as exc:
            stream.write_error(str(exc))
        except DocumentNotFound:
            stream.write_error("Document not found")
        except Exception:
            logger.exception("document_stream_failed")
            stream.write_error("generation failed")
        finally:
            stream.close()

    task = asyncio.create_task(run())
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)
    return StreamingResponse(stream.ndjson(), media_type=NDJSON)


@router.post("")
async def create_document(
    body: DocumentCreate,
    user: User = Depends(get_current_user),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
):
    if body.id and orchestrator.locks.is_locked(body.id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="update already in progress")

    async def job(stream: DataStream) -> None:
        outcome = await orchestrator.create_document(
            title=body.title, kind=body.kind, user_id=user.email, stream=stream, document_id=body.id
        )
        if outcome.skipped:
            stream.write_error("update already in progress")

    return _stream_response(job)


@router.post("/{document_id}/update")
async def update_document(
    document_id: str,
    body: DocumentUpdate,
    user: User = Depends(get_current_user),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
):
    if orchestrator.store.get_document_by_id(id=document_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    if orchestrator.locks.is_locked(document_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="update already in progress")

    async def job(stream: DataStream) -> None:
        outcome = await orchestrator.update_document(
            document_id=document_id, description=body.description, user_id=user.email, stream=stream
        )
        if outcome.skipped:
            stream.write_error("update already in progress")

    return _stream_response(job)


@router.get("/{document_id}")
def get_document_versions(
    document_id: str,
    user: User = Depends(get_current_user),
    orchestrator: DocumentOrchestrator = Depends(get_orchestrator),
) -> List[Dict[str, Any]]:
    documents = orchestrator.store.get_documents_by_id(id=document_id)
    if not documents:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return [d.to_wire() for d in documents]


@router.get("/{document_id}/suggestions")
def list_suggestions(
    document_id: str,
    user: User = Depends(get_current_user),
    service: SuggestionService = Depends(get_suggestion_service),
) -> List[Dict[str, Any]]:
    return [s.to_wire() for s in service.store.get_suggestions(document_id=document_id)]


@router.post("/{document_id}/suggestions")
async def request_suggestions(
    document_id: str,
    user: User = Depends(get_current_user),
    service: SuggestionService = Depends(get_suggestion_service),
):
    document = service.store.get_document_by_id(id=document_id)
    if document is None or not document.content:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")

    async def job(stream: DataStream) -> None:
        result = await service.request_suggestions(document_id=document_id, user_id=user.email, stream=stream)
        if "error" in result:
            stream.write_error(result["error"])

    return _stream_response(job)
