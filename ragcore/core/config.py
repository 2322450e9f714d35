"""
Environment-driven configuration for the retrieval core.
"""

import os
from typing import List, Optional

# Storage locations
DB_PATH = os.getenv("DB_PATH", "./data/records.db")
INDEX_PATH = os.getenv("INDEX_PATH", "./data/index.hnsw")

# Embedding provider configuration
EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "hash")  # hash|sentence-transformers
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "all-MiniLM-L6-v2")
EMBED_DIM = int(os.getenv("EMBED_DIM", "384"))

# HNSW construction parameters
HNSW_METRIC = os.getenv("HNSW_METRIC", "cosine")  # euclidean|dot|cosine
HNSW_M = int(os.getenv("HNSW_M", "16"))
HNSW_M0 = int(os.getenv("HNSW_M0", "0"))  # 0 means 2 * M
HNSW_ML = float(os.getenv("HNSW_ML", "0"))  # 0 means 1 / ln(M)
HNSW_EF_CONSTRUCTION = int(os.getenv("HNSW_EF_CONSTRUCTION", "200"))
HNSW_EF_SEARCH = int(os.getenv("HNSW_EF_SEARCH", "50"))
HNSW_SEED = os.getenv("HNSW_SEED")  # unset means nondeterministic

# Retrieval defaults
RETRIEVE_TOP_K = int(os.getenv("RETRIEVE_TOP_K", "4"))

# Version string
VERSION = "0.1.0"

EMBED_PROVIDERS = ["hash", "sentence-transformers"]


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def get_seed() -> Optional[int]:
    return int(HNSW_SEED) if HNSW_SEED not in (None, "") else None


def get_index_params(dimension: int):
    """Construction parameters for an index of ``dimension``."""
    from ragcore.vector.distance import Metric
    from ragcore.vector.types import HnswParams

    return HnswParams(
        dimension=dimension,
        metric=Metric.from_name(HNSW_METRIC),
        m=HNSW_M,
        m0=HNSW_M0 or None,
        ml=HNSW_ML or None,
        ef_construction=HNSW_EF_CONSTRUCTION,
        ef_search=HNSW_EF_SEARCH,
    )


def get_index_factory():
    """Callable building an empty configured index for a dimension."""
    from ragcore.vector.hnsw import HnswIndex

    def factory(dimension: int):
        return HnswIndex.from_params(get_index_params(dimension), seed=get_seed())

    return factory


def get_embedding_provider():
    """Get configured embedding provider implementation."""
    if EMBED_PROVIDER == "sentence-transformers":
        from ragcore.vector.embeddings import SentenceTransformerEmbedding
        return SentenceTransformerEmbedding(EMBED_MODEL_NAME)

    from ragcore.vector.embeddings import DeterministicHashEmbedding
    return DeterministicHashEmbedding(EMBED_DIM)


def get_record_store(db_path: Optional[str] = None):
    """Open the configured record store."""
    from ragcore.core.record_store import RecordStore
    return RecordStore(db_path or DB_PATH)


def build_pipeline(db_path: Optional[str] = None, index_path: Optional[str] = None):
    """
    Wire store, index and embedder from configuration.

    An existing snapshot at ``index_path`` is loaded; otherwise the index is
    rebuilt from the store.
    """
    from ragcore.core.pipeline import RetrievalPipeline
    from ragcore.vector.distance import Metric

    pipeline = RetrievalPipeline(
        store=get_record_store(db_path),
        embed=get_embedding_provider(),
        index_factory=get_index_factory(),
        metric=Metric.from_name(HNSW_METRIC),
    )
    pipeline.load_or_rebuild(index_path or INDEX_PATH, seed=get_seed())
    return pipeline


def validate_config() -> List[str]:
    """Validate configuration and return any issues."""
    issues = []

    if EMBED_PROVIDER not in EMBED_PROVIDERS:
        issues.append(f"Invalid EMBED_PROVIDER: {EMBED_PROVIDER}")

    if EMBED_DIM < 1:
        issues.append("EMBED_DIM must be >= 1")

    from ragcore.vector.distance import Metric
    try:
        Metric.from_name(HNSW_METRIC)
    except ValueError:
        issues.append(f"Invalid HNSW_METRIC: {HNSW_METRIC}")

    if HNSW_M < 2:
        issues.append("HNSW_M must be >= 2")

    if HNSW_M0 and HNSW_M0 < HNSW_M:
        issues.append("HNSW_M0 must be >= HNSW_M")

    if HNSW_ML < 0:
        issues.append("HNSW_ML must be >= 0")

    if HNSW_EF_CONSTRUCTION < 1 or HNSW_EF_SEARCH < 1:
        issues.append("HNSW_EF_CONSTRUCTION and HNSW_EF_SEARCH must be >= 1")

    if RETRIEVE_TOP_K < 1:
        issues.append("RETRIEVE_TOP_K must be >= 1")

    if HNSW_SEED not in (None, "") and not HNSW_SEED.lstrip("-").isdigit():
        issues.append(f"Invalid HNSW_SEED: {HNSW_SEED}")

    return issues
