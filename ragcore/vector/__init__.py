"""
Similarity index layer: distance kernels, the HNSW graph and its snapshot codec.
"""

from .distance import Metric, distance, dot
from .types import VectorRecord, SearchHit, RetrievedChunk, HnswParams
from .hnsw import HnswIndex
from .embeddings import IEmbeddingProvider, DeterministicHashEmbedding, SentenceTransformerEmbedding

__all__ = [
    'Metric',
    'distance',
    'dot',
    'VectorRecord',
    'SearchHit',
    'RetrievedChunk',
    'HnswParams',
    'HnswIndex',
    'IEmbeddingProvider',
    'DeterministicHashEmbedding',
    'SentenceTransformerEmbedding'
]
