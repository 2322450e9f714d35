"""
Request/response models for the retrieval HTTP API.
"""

from pydantic import BaseModel, field_validator
from typing import List, Optional


class IngestRequest(BaseModel):
    """Chunks to ingest, in order."""
    chunks: List[str]

    @field_validator('chunks')
    @classmethod
    def chunks_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('chunks cannot be empty')
        if any(not chunk.strip() for chunk in v):
            raise ValueError('chunks cannot contain blank text')
        return v


class IngestResponse(BaseModel):
    record_ids: List[int]
    total_records: int


class RetrieveRequest(BaseModel):
    query: str
    k: Optional[int] = None  # None means RETRIEVE_TOP_K

    @field_validator('query')
    @classmethod
    def query_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('query cannot be empty')
        return v

    @field_validator('k')
    @classmethod
    def k_must_be_positive(cls, v):
        if v is not None and v < 1:
            raise ValueError('k must be >= 1')
        return v


class RetrievedChunkModel(BaseModel):
    id: int
    text: str
    distance: float


class RetrieveResponse(BaseModel):
    chunks: List[RetrievedChunkModel]
    context: str
    prompt: str


class SaveIndexRequest(BaseModel):
    path: Optional[str] = None


class SaveIndexResponse(BaseModel):
    path: str
    indexed: int


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    records: int
    indexed: int
    dimension: Optional[int] = None
    metric: Optional[str] = None
