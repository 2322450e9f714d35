"""
Hierarchical Navigable Small World (HNSW) similarity index.

The graph is an arena keyed by RecordId: ``_links[id][layer]`` is the
neighbor list of ``id`` at ``layer`` and ``_data[id]`` is its prepared
vector. A node with top layer L owns lists for layers 0..L, so every node
reachable through a layer-L edge can be expanded at layer L.
"""

import heapq
import math
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple, Union

import numpy as np

from ..core.errors import DimensionMismatch, DuplicateRecord, IndexEmpty
from ..core.locks import ReadWriteLock
from .distance import Metric, VectorLike, distances, finalize, pairwise, prepare
from .types import HnswParams, SearchHit

# (ordering key, record id)
Candidate = Tuple[float, int]


class HnswIndex:
    """Approximate k-nearest-neighbor index over RecordId-addressed vectors."""

    def __init__(
        self,
        dimension: int,
        metric: Union[Metric, str] = Metric.COSINE,
        m: int = 16,
        m0: Optional[int] = None,
        ml: Optional[float] = None,
        ef_construction: int = 200,
        ef_search: int = 50,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        if not isinstance(metric, Metric):
            metric = Metric.from_name(metric)
        params = HnswParams(
            dimension=dimension,
            metric=metric,
            m=m,
            m0=m0,
            ml=ml,
            ef_construction=ef_construction,
            ef_search=ef_search,
        )
        self._init_state(params, rng if rng is not None else np.random.default_rng(seed))

    @classmethod
    def from_params(
        cls,
        params: HnswParams,
        seed: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> "HnswIndex":
        index = cls.__new__(cls)
        index._init_state(params, rng if rng is not None else np.random.default_rng(seed))
        return index

    def _init_state(self, params: HnswParams, rng: np.random.Generator) -> None:
        self.params = params
        self._rng = rng
        self._lock = ReadWriteLock()
        self._data = np.zeros((0, params.dimension), dtype=np.float32)
        self._links: Dict[int, List[List[int]]] = {}
        self._entry_point: Optional[int] = None
        self._max_level = -1

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def dimension(self) -> int:
        return self.params.dimension

    @property
    def metric(self) -> Metric:
        return self.params.metric

    @property
    def entry_point(self) -> Optional[int]:
        return self._entry_point

    @property
    def max_level(self) -> int:
        """Top layer of the graph, -1 when empty."""
        return self._max_level

    def __len__(self) -> int:
        return len(self._links)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._links

    def ids(self) -> List[int]:
        """Inserted RecordIds in ascending order."""
        return sorted(self._links)

    def node_level(self, record_id: int) -> int:
        return len(self._links[record_id]) - 1

    def neighbors(self, record_id: int, layer: int) -> List[int]:
        return list(self._links[record_id][layer])

    def get_vector(self, record_id: int) -> np.ndarray:
        """The stored (prepared) vector of an inserted id."""
        if record_id not in self._links:
            raise KeyError(record_id)
        return self._data[record_id].copy()

    @contextmanager
    def read_locked(self) -> Iterator["HnswIndex"]:
        """Hold the read lock, e.g. while serializing."""
        with self._lock.read():
            yield self

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    def insert(self, record_id: int, vector: VectorLike) -> int:
        """Insert ``vector`` under ``record_id``; returns the node's top layer."""
        if record_id < 0:
            raise ValueError(f"record_id must be non-negative, got {record_id}")
        query = self._prepare(vector)

        with self._lock.write():
            if record_id in self._links:
                raise DuplicateRecord(f"Record {record_id} is already indexed")

            level = self._random_level()
            self._store_vector(record_id, query)
            self._links[record_id] = [[] for _ in range(level + 1)]

            if self._entry_point is None:
                self._entry_point = record_id
                self._max_level = level
                return level

            nearest = self._greedy_descent(query, level)

            for layer in range(min(level, self._max_level), -1, -1):
                candidates = self._search_layer(query, nearest, self.params.ef_construction, layer)
                cap = self.params.max_degree(layer)
                selected = self._select_neighbors(candidates, cap)
                self._links[record_id][layer] = selected
                for neighbor in selected:
                    self._connect(neighbor, record_id, layer)
                nearest = candidates

            if level > self._max_level:
                self._entry_point = record_id
                self._max_level = level
            return level

    def _random_level(self) -> int:
        # 1 - U(0,1] keeps log() away from zero
        u = 1.0 - self._rng.random()
        return int(math.floor(-math.log(u) * self.params.ml))

    def _store_vector(self, record_id: int, vector: np.ndarray) -> None:
        if record_id >= len(self._data):
            capacity = max(record_id + 1, 2 * len(self._data), 16)
            grown = np.zeros((capacity, self.dimension), dtype=np.float32)
            grown[: len(self._data)] = self._data
            self._data = grown
        self._data[record_id] = vector

    def _connect(self, node: int, new_id: int, layer: int) -> None:
        links = self._links[node][layer]
        links.append(new_id)
        cap = self.params.max_degree(layer)
        if len(links) <= cap:
            return
        keys = distances(self.metric, self._data[node], self._data[links])
        candidates = sorted(zip(keys.tolist(), links))
        self._links[node][layer] = self._select_neighbors(candidates, cap)

    def _select_neighbors(self, candidates: List[Candidate], cap: int) -> List[int]:
        """
        Diversity heuristic over candidates sorted by distance to the base.

        A candidate is kept when it is closer to the base than to every
        neighbor kept so far. Free slots left afterwards are filled with the
        closest rejected candidates.
        """
        ids = [record_id for _, record_id in candidates]
        if len(ids) <= cap:
            return ids

        pair = pairwise(self.metric, self._data[ids])
        kept: List[int] = []
        rejected: List[int] = []
        for idx, (key, _) in enumerate(candidates):
            if len(kept) >= cap:
                break
            if not kept or bool(np.all(pair[idx, kept] > key)):
                kept.append(idx)
            else:
                rejected.append(idx)

        for idx in rejected:
            if len(kept) >= cap:
                break
            kept.append(idx)
        return [ids[idx] for idx in kept]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, query_vector: VectorLike, k: int, ef: Optional[int] = None) -> List[SearchHit]:
        """Return up to ``k`` nearest inserted vectors, closest first."""
        if k < 1:
            raise ValueError(f"k must be >= 1, got {k}")
        query = self._prepare(query_vector)

        with self._lock.read():
            if self._entry_point is None:
                raise IndexEmpty("Search on an empty index")
            nearest = self._greedy_descent(query, 0)
            width = max(ef if ef is not None else self.params.ef_search, k)
            candidates = self._search_layer(query, nearest, width, 0)

        return [SearchHit(id=record_id, distance=finalize(self.metric, key)) for key, record_id in candidates[:k]]

    def _greedy_descent(self, query: np.ndarray, stop_layer: int) -> List[Candidate]:
        """Walk from the entry point down to ``stop_layer + 1`` with beam width 1."""
        entry = self._entry_point
        nearest = [(float(self._keys(query, [entry])[0]), entry)]
        for layer in range(self._max_level, stop_layer, -1):
            nearest = self._search_layer(query, nearest, 1, layer)
        return nearest

    def _search_layer(self, query: np.ndarray, entry_points: List[Candidate], ef: int, layer: int) -> List[Candidate]:
        """Best-first beam search of width ``ef`` on one layer; sorted ascending."""
        visited = {record_id for _, record_id in entry_points}
        frontier = list(entry_points)
        heapq.heapify(frontier)
        # max-heap on (key, id): the root is the current worst result
        results = [(-key, -record_id) for key, record_id in entry_points]
        heapq.heapify(results)
        while len(results) > ef:
            heapq.heappop(results)

        while frontier:
            key, node = heapq.heappop(frontier)
            worst = (-results[0][0], -results[0][1])
            if key > worst[0] and len(results) >= ef:
                break

            fresh = [n for n in self._links[node][layer] if n not in visited]
            if not fresh:
                continue
            visited.update(fresh)

            for n_key, n_id in zip(self._keys(query, fresh).tolist(), fresh):
                if len(results) < ef or (n_key, n_id) < (-results[0][0], -results[0][1]):
                    heapq.heappush(frontier, (n_key, n_id))
                    heapq.heappush(results, (-n_key, -n_id))
                    if len(results) > ef:
                        heapq.heappop(results)

        return sorted((-neg_key, -neg_id) for neg_key, neg_id in results)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _prepare(self, vector: VectorLike) -> np.ndarray:
        arr = prepare(self.metric, vector)
        if arr.shape[0] != self.dimension:
            raise DimensionMismatch(self.dimension, arr.shape[0])
        return arr

    def _keys(self, query: np.ndarray, ids: List[int]) -> np.ndarray:
        return distances(self.metric, query, self._data[ids])

    @classmethod
    def _restore(
        cls,
        params: HnswParams,
        links: Dict[int, List[List[int]]],
        vectors: Dict[int, np.ndarray],
        entry_point: Optional[int],
        max_level: int,
        seed: Optional[int] = None,
    ) -> "HnswIndex":
        """Build an index from already-validated snapshot parts."""
        index = cls.from_params(params, seed=seed)
        size = max(links) + 1 if links else 0
        index._data = np.zeros((size, params.dimension), dtype=np.float32)
        for record_id, vector in vectors.items():
            index._data[record_id] = vector
        index._links = links
        index._entry_point = entry_point
        index._max_level = max_level
        return index

    def save(self, path) -> None:
        """Persist the index snapshot to ``path``."""
        from .codec import save

        save(self, path)

    @classmethod
    def load(cls, path, seed: Optional[int] = None) -> "HnswIndex":
        """Load an index snapshot written by ``save``."""
        from .codec import load

        return load(path, seed=seed)
