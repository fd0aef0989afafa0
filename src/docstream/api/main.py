from __future__ import annotations

from datetime import UTC, datetime
from dotenv import load_dotenv
import os
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .routers.documents import router as documents_router
from .routers.chat import router as chat_router
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # Load environment variables from .env if present (OPENAI_API_KEY, JWT_SECRET, etc.)

app = FastAPI(title="Docstream API", version="0.1.0")

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

# Routers
app.include_router(documents_router)
app.include_router(chat_router)

# Same routers under /api
app.include_router(documents_router, prefix="/api")
app.include_router(chat_router, prefix="/api")

# CORS (for the web client dev server on localhost:3000)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _health() -> dict:
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
        "components": {
            "api": "ok",
            "doc_store": os.getenv("DOCSTREAM_DOC_STORE_IMPL", "memory").lower(),
        },
    }


@app.get("/")
def root():
    return {"name": "Docstream API", "version": "0.1.0"}


@app.get("/health")
def health():
    return _health()


@app.get("/metrics")
def metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)


@app.get("/api/health")
def api_health():
    return _health()


@app.get("/api/metrics")
def api_metrics() -> Response:
    data = generate_latest(REGISTRY)
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
