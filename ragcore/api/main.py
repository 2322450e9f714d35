"""
HTTP surface over the retrieval pipeline.
"""

from fastapi import FastAPI, HTTPException, Depends
from fastapi.responses import JSONResponse
import threading

from .schemas import (
    IngestRequest,
    IngestResponse,
    RetrieveRequest,
    RetrieveResponse,
    RetrievedChunkModel,
    SaveIndexRequest,
    SaveIndexResponse,
    HealthResponse,
)
from ..core import config
from ..core.config import VERSION, INDEX_PATH, debug_enabled, build_pipeline
from ..core.errors import (
    DimensionMismatch,
    DuplicateRecord,
    EmbeddingError,
    IndexEmpty,
    NotFound,
    RetrievalError,
)
from ..core.pipeline import RetrievalPipeline, assemble_context, build_prompt
from util.logging import logger

# Initialize the FastAPI application
app = FastAPI(
    title="ragcore API",
    version=VERSION,
    description="Semantic chunk retrieval over an HNSW index",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

_pipeline = None
_pipeline_lock = threading.Lock()


def get_pipeline() -> RetrievalPipeline:
    """Process-wide pipeline, built from configuration on first use."""
    global _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = build_pipeline()
        return _pipeline


def _to_http(exc: RetrievalError) -> HTTPException:
    if isinstance(exc, IndexEmpty):
        return HTTPException(status_code=404, detail=str(exc) or "Index is empty")
    if isinstance(exc, (DimensionMismatch, NotFound)):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, DuplicateRecord):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, EmbeddingError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(pipeline: RetrievalPipeline = Depends(get_pipeline)):
    """Check system health."""
    db_health = pipeline.store.health_check()
    stats = pipeline.stats()

    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        records=stats["records"],
        indexed=stats["indexed"],
        dimension=stats["dimension"],
        metric=stats["metric"],
    )


@app.post("/ingest", response_model=IngestResponse)
def ingest_endpoint(request: IngestRequest, pipeline: RetrievalPipeline = Depends(get_pipeline)):
    """Ingest chunks in order; stops at the first failing chunk."""
    try:
        record_ids = pipeline.ingest_many(request.chunks)
    except RetrievalError as e:
        raise _to_http(e) from e

    return IngestResponse(record_ids=record_ids, total_records=pipeline.store.count())


@app.post("/retrieve", response_model=RetrieveResponse)
def retrieve_endpoint(request: RetrieveRequest, pipeline: RetrievalPipeline = Depends(get_pipeline)):
    """Retrieve the nearest chunks plus the assembled context for generation."""
    try:
        chunks = pipeline.retrieve_chunks(request.query, k=request.k or config.RETRIEVE_TOP_K)
    except RetrievalError as e:
        raise _to_http(e) from e

    context = assemble_context(chunk.text for chunk in chunks)
    return RetrieveResponse(
        chunks=[RetrievedChunkModel(id=c.id, text=c.text, distance=c.distance) for c in chunks],
        context=context,
        prompt=build_prompt(request.query, context),
    )


@app.post("/index/save", response_model=SaveIndexResponse)
def save_index_endpoint(request: SaveIndexRequest, pipeline: RetrievalPipeline = Depends(get_pipeline)):
    """Persist the current index snapshot."""
    path = request.path or INDEX_PATH
    try:
        pipeline.save_index(path)
    except RetrievalError as e:
        raise _to_http(e) from e

    return SaveIndexResponse(path=path, indexed=pipeline.stats()["indexed"])


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Handle all unhandled exceptions."""
    logger.error(f"Unhandled exception: {exc}")
    content = {"detail": "Internal server error"}
    if debug_enabled():
        content["debug"] = str(exc)
    return JSONResponse(
        status_code=500,
        content=content,
    )
