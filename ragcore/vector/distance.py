"""
Distance kernels for the similarity index.

All kernels return an ordering key where smaller means closer:
  * EUCLIDEAN - squared L2 distance (``finalize`` takes the square root)
  * COSINE    - 1 - cosine similarity, over vectors normalized by ``prepare``
  * DOT       - negated inner product
"""

from enum import Enum
from typing import Sequence, Union

import numpy as np

VectorLike = Union[Sequence[float], np.ndarray]


class Metric(Enum):
    EUCLIDEAN = 0
    DOT = 1
    COSINE = 2

    @classmethod
    def from_name(cls, name: str) -> "Metric":
        """Parse a metric name (case-insensitive, a few aliases accepted)."""
        norm = str(name).strip().lower().replace("-", "_")
        aliases = {
            "euclidean": cls.EUCLIDEAN,
            "l2": cls.EUCLIDEAN,
            "dot": cls.DOT,
            "dot_product": cls.DOT,
            "dotproduct": cls.DOT,
            "ip": cls.DOT,
            "inner_product": cls.DOT,
            "cosine": cls.COSINE,
            "cos": cls.COSINE,
        }
        if norm not in aliases:
            raise ValueError(f"Unknown distance metric: {name!r}")
        return aliases[norm]


def prepare(metric: Metric, vector: VectorLike) -> np.ndarray:
    """Return a float32 copy of ``vector`` ready for the index (unit length for COSINE)."""
    arr = np.array(vector, dtype=np.float32).reshape(-1)
    if metric is Metric.COSINE:
        norm = np.linalg.norm(arr)
        if norm > 0:
            arr /= norm
    return arr


def distances(metric: Metric, query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Ordering keys from one prepared query to each row of ``matrix``."""
    if metric is Metric.EUCLIDEAN:
        diff = matrix - query
        return np.einsum("ij,ij->i", diff, diff)
    products = matrix @ query
    if metric is Metric.COSINE:
        return 1.0 - products
    return -products


def pairwise(metric: Metric, matrix: np.ndarray) -> np.ndarray:
    """Square matrix of ordering keys between every pair of rows."""
    gram = matrix @ matrix.T
    if metric is Metric.EUCLIDEAN:
        sq = np.diag(gram)
        return np.maximum(sq[:, None] + sq[None, :] - 2.0 * gram, 0.0)
    if metric is Metric.COSINE:
        return 1.0 - gram
    return -gram


def finalize(metric: Metric, key: float) -> float:
    """Convert an ordering key into the distance reported to callers."""
    if metric is Metric.EUCLIDEAN:
        return float(np.sqrt(max(key, 0.0)))
    return float(key)


def dot(a: VectorLike, b: VectorLike) -> float:
    """Inner product of two vectors."""
    return float(np.dot(np.asarray(a, dtype=np.float64), np.asarray(b, dtype=np.float64)))


def distance(metric: Metric, a: VectorLike, b: VectorLike) -> float:
    """Distance between two raw vectors under ``metric`` (smaller is closer)."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if metric is Metric.EUCLIDEAN:
        diff = va - vb
        return float(np.sqrt(np.dot(diff, diff)))
    if metric is Metric.COSINE:
        denom = np.linalg.norm(va) * np.linalg.norm(vb)
        if denom == 0:
            return 1.0
        return float(1.0 - np.dot(va, vb) / denom)
    return -float(np.dot(va, vb))
