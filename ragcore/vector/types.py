"""
Record and result types shared by the store, the index and the pipeline.
"""

import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .distance import Metric


@dataclass
class VectorRecord:
    """A stored chunk: its RecordId, embedding and source text."""

    id: int
    """Dense RecordId assigned by the store"""

    vector: np.ndarray
    """Embedding of the chunk"""

    text: str
    """The chunk text itself"""


@dataclass(frozen=True)
class SearchHit:
    """One search result from the similarity index."""

    id: int
    """RecordId of the matching vector"""

    distance: float
    """Distance to the query (smaller is closer; negated inner product for DOT)"""


@dataclass(frozen=True)
class RetrievedChunk:
    """A search hit resolved to its text."""

    id: int
    text: str
    distance: float


@dataclass(frozen=True)
class HnswParams:
    """Construction parameters, fixed for the lifetime of an index.

    ``m0`` defaults to ``2 * m`` and ``ml`` to ``1 / ln(m)``; both are
    resolved at construction so equal settings compare equal.
    """

    dimension: int
    metric: Metric = Metric.COSINE
    m: int = 16
    m0: Optional[int] = None
    ml: Optional[float] = None
    ef_construction: int = 200
    ef_search: int = 50

    def __post_init__(self):
        if self.dimension < 1:
            raise ValueError(f"dimension must be >= 1, got {self.dimension}")
        if self.m < 2:
            raise ValueError(f"M must be >= 2, got {self.m}")
        if self.ef_construction < 1 or self.ef_search < 1:
            raise ValueError("efConstruction and efSearch must be >= 1")
        m0 = self.m0 if self.m0 is not None else 2 * self.m
        if m0 < self.m:
            raise ValueError(f"M0 must be >= M, got {m0} < {self.m}")
        ml = self.ml if self.ml is not None else 1.0 / math.log(self.m)
        if not ml > 0:
            raise ValueError(f"mL must be > 0, got {ml}")
        object.__setattr__(self, "m0", m0)
        object.__setattr__(self, "ml", float(ml))

    def max_degree(self, layer: int) -> int:
        """Neighbor cap for ``layer``."""
        return self.m0 if layer == 0 else self.m
