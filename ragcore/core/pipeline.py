"""
Retrieval pipeline: the only component that sees both the record store and
the similarity index.

Ingestion:  text -> embed -> store.append -> index.insert
Retrieval:  query -> embed -> index.search -> store lookup -> ranked texts
"""

import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import numpy as np

from util.logging import logger

from ..vector import codec
from ..vector.distance import Metric, VectorLike
from ..vector.hnsw import HnswIndex
from ..vector.types import RetrievedChunk
from .errors import CorruptIndex, DimensionMismatch, EmbeddingError, IndexEmpty
from .record_store import RecordStore

EmbedFn = Callable[[str], VectorLike]
IndexFactory = Callable[[int], HnswIndex]

PROMPT_TEMPLATE = (
    "Use the following context to answer the question.\n"
    "Context:\n{context}\n\n"
    "Question: {question}\n"
    "Answer:"
)


def assemble_context(ranked_texts: Iterable[str]) -> str:
    """Join ranked texts with newlines, in rank order."""
    return "\n".join(ranked_texts)


def build_prompt(question: str, context: str) -> str:
    """Prompt handed to the generation step."""
    return PROMPT_TEMPLATE.format(context=context, question=question)


class RetrievalPipeline:
    """
    Orchestrates ingestion and query-time retrieval.

    Ingestion is serialized by ``_ingest_lock`` so store appends and index
    inserts happen in RecordId order; searches only take the index read lock.
    The index is created lazily with the dimension of the first vector
    (or of the store, when it already holds records).
    """

    def __init__(
        self,
        store: RecordStore,
        index: Optional[HnswIndex] = None,
        embed: Optional[EmbedFn] = None,
        index_factory: Optional[IndexFactory] = None,
        metric: Optional[Union[Metric, str]] = None,
    ):
        self.store = store
        self._index = index
        self._embed = embed
        if metric is not None and not isinstance(metric, Metric):
            metric = Metric.from_name(metric)
        self.metric = metric
        self._index_factory = index_factory or (
            lambda dimension: HnswIndex(dimension, metric=metric or Metric.COSINE)
        )
        self._ingest_lock = threading.Lock()

    @property
    def index(self) -> Optional[HnswIndex]:
        return self._index

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, text_chunk: str, embed: Optional[EmbedFn] = None) -> int:
        """Embed, store and index one chunk; returns its RecordId."""
        vector = self._embedding(text_chunk, embed)

        with self._ingest_lock:
            index = self._ensure_index(vector.shape[0])
            if vector.shape[0] != index.dimension:
                raise DimensionMismatch(index.dimension, vector.shape[0])

            record_id = self.store.append(vector, text_chunk)
            try:
                index.insert(record_id, vector)
            except Exception as e:
                # The stored record stays; reindex_missing() can pick it up
                logger.log_ingest(record_id, text_chunk, status="failed", details={"stage": "index", "error": str(e)})
                raise

        logger.log_ingest(record_id, text_chunk)
        return record_id

    def ingest_many(self, chunks: Iterable[str], embed: Optional[EmbedFn] = None) -> List[int]:
        """Ingest chunks in order; the first failure propagates."""
        return [self.ingest(chunk, embed) for chunk in chunks]

    def _ensure_index(self, dimension: int) -> HnswIndex:
        if self._index is None:
            self._index = self._index_factory(self.store.dimension or dimension)
        return self._index

    def _embedding(self, text: str, embed: Optional[EmbedFn]) -> np.ndarray:
        fn = embed if embed is not None else self._embed
        if fn is None:
            raise EmbeddingError("No embedding function supplied")
        try:
            raw = fn(text)
        except Exception as e:
            raise EmbeddingError(f"Embedding failed: {e}") from e
        try:
            vector = np.asarray(raw, dtype=np.float32).reshape(-1)
        except (TypeError, ValueError) as e:
            raise EmbeddingError(f"Embedding is not a numeric vector: {e}") from e
        if vector.size == 0:
            raise EmbeddingError("Embedding function returned an empty vector")
        if not np.all(np.isfinite(vector)):
            raise EmbeddingError("Embedding contains NaN or infinite components")
        return vector

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    def retrieve_chunks(self, query_text: str, embed: Optional[EmbedFn] = None, k: int = 4) -> List[RetrievedChunk]:
        """Nearest chunks to ``query_text`` with ids and distances, nearest first."""
        index = self._index
        if index is None or len(index) == 0:
            logger.log_retrieval(query_text, k, 0, status="empty")
            raise IndexEmpty("Nothing has been ingested yet")

        vector = self._embedding(query_text, embed)
        hits = index.search(vector, k)
        chunks = [
            RetrievedChunk(id=hit.id, text=self.store.get_text(hit.id), distance=hit.distance)
            for hit in hits
        ]
        logger.log_retrieval(query_text, k, len(chunks))
        return chunks

    def retrieve(self, query_text: str, embed: Optional[EmbedFn] = None, k: int = 4) -> List[str]:
        """Texts of the ``k`` nearest chunks, nearest first."""
        return [chunk.text for chunk in self.retrieve_chunks(query_text, embed, k)]

    # ------------------------------------------------------------------
    # Index lifecycle
    # ------------------------------------------------------------------

    def save_index(self, path) -> None:
        """Persist the current index to ``path``."""
        index = self._index
        if index is None:
            raise IndexEmpty("No index to save")
        codec.save(index, path)

    def load_index(self, path, seed: Optional[int] = None) -> HnswIndex:
        """
        Replace the in-memory index with the snapshot at ``path``.

        The current index is kept if loading or validation fails. A snapshot
        built with a different metric than the pipeline's is rejected; run a
        rebuild to switch metrics.
        """
        loaded = codec.load(path, seed=seed)
        if self.metric is not None and loaded.metric is not self.metric:
            logger.warning(
                f"Index snapshot {path} uses metric {loaded.metric.name.lower()}, "
                f"expected {self.metric.name.lower()}"
            )
            raise CorruptIndex(
                f"Snapshot metric {loaded.metric.name.lower()} does not match {self.metric.name.lower()}"
            )
        dimension = self.store.dimension
        if dimension is not None and loaded.dimension != dimension:
            raise DimensionMismatch(dimension, loaded.dimension)
        ids = loaded.ids()
        if ids and ids[-1] >= self.store.count():
            raise CorruptIndex(f"Index references record {ids[-1]} but the store holds {self.store.count()}")

        with self._ingest_lock:
            self._index = loaded
        return loaded

    def rebuild_index(self) -> Optional[HnswIndex]:
        """Build a fresh index from every stored record and swap it in."""
        start = time.perf_counter()
        dimension = self.store.dimension
        if dimension is None:
            return None

        with self._ingest_lock:
            fresh = self._index_factory(dimension)
            records = 0
            for record in self.store.iter_records():
                fresh.insert(record.id, record.vector)
                records += 1
            self._index = fresh

        logger.log_index_rebuild(records, len(fresh), start, time.perf_counter())
        return fresh

    def load_or_rebuild(self, path, seed: Optional[int] = None) -> bool:
        """
        Load ``path`` when it exists, otherwise rebuild; True when loaded.

        Records appended after the snapshot was saved are indexed on load.
        """
        if Path(path).exists():
            loaded = self.load_index(path, seed=seed)
            if len(loaded) < self.store.count():
                added = self.reindex_missing()
                logger.info(f"Index snapshot {path} was behind the store; indexed {len(added)} newer records")
            return True
        self.rebuild_index()
        return False

    def reindex_missing(self) -> List[int]:
        """Insert stored records absent from the index; returns their ids."""
        start = time.perf_counter()
        dimension = self.store.dimension
        if dimension is None:
            return []

        added: List[int] = []
        with self._ingest_lock:
            index = self._ensure_index(dimension)
            for record in self.store.iter_records():
                if record.id not in index:
                    index.insert(record.id, record.vector)
                    added.append(record.id)

        logger.log_index_rebuild(self.store.count(), len(added), start, time.perf_counter(), status="reconciled")
        return added

    def stats(self) -> Dict[str, Any]:
        index = self._index
        return {
            "records": self.store.count(),
            "indexed": len(index) if index is not None else 0,
            "dimension": self.store.dimension,
            "metric": index.metric.name.lower() if index is not None else None,
            "max_level": index.max_level if index is not None else -1,
        }
