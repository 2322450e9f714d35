"""
ragcore - semantic chunk retrieval over a from-scratch HNSW index.
"""

from .core.errors import (
    RetrievalError,
    DimensionMismatch,
    NotFound,
    IndexEmpty,
    DuplicateRecord,
    CorruptIndex,
    IndexIOError,
    EmbeddingError,
)
from .core.record_store import RecordStore
from .core.pipeline import RetrievalPipeline, assemble_context, build_prompt
from .vector import HnswIndex, Metric

__version__ = "0.1.0"

__all__ = [
    'RetrievalError',
    'DimensionMismatch',
    'NotFound',
    'IndexEmpty',
    'DuplicateRecord',
    'CorruptIndex',
    'IndexIOError',
    'EmbeddingError',
    'RecordStore',
    'RetrievalPipeline',
    'assemble_context',
    'build_prompt',
    'HnswIndex',
    'Metric',
]
