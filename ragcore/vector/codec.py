"""
Binary snapshot format for the HNSW index.

Layout (little-endian):
    header      magic, version, D, metric id, M, M0, mL, efConstruction,
                efSearch, entry point (-1 when empty), max level, node count N
    nodes       for every id in 0..N-1: top layer (-1 when the id is absent),
                then per layer 0..top: neighbor count + uint32 neighbor ids
    vectors     D float32 per present node, ascending id
"""

import os
import struct
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np

from util.logging import logger

from ..core.errors import CorruptIndex, IndexIOError
from .distance import Metric
from .hnsw import HnswIndex
from .types import HnswParams

MAGIC = b"RCHNSW\x00\x00"
FORMAT_VERSION = 1

_HEADER = struct.Struct("<8sHIBIIdIIqiQ")
_LEVEL = struct.Struct("<i")
_COUNT = struct.Struct("<I")

PathLike = Union[str, os.PathLike]


def dumps(index: HnswIndex) -> bytes:
    """Serialize ``index`` to bytes."""
    with index.read_locked():
        params = index.params
        ids = index.ids()
        node_count = ids[-1] + 1 if ids else 0
        entry_point = index.entry_point

        buf = bytearray(
            _HEADER.pack(
                MAGIC,
                FORMAT_VERSION,
                params.dimension,
                params.metric.value,
                params.m,
                params.m0,
                params.ml,
                params.ef_construction,
                params.ef_search,
                -1 if entry_point is None else entry_point,
                index.max_level,
                node_count,
            )
        )

        present = set(ids)
        for record_id in range(node_count):
            if record_id not in present:
                buf += _LEVEL.pack(-1)
                continue
            level = index.node_level(record_id)
            buf += _LEVEL.pack(level)
            for layer in range(level + 1):
                neighbors = index.neighbors(record_id, layer)
                buf += _COUNT.pack(len(neighbors))
                buf += np.asarray(neighbors, dtype="<u4").tobytes()

        if ids:
            vectors = np.stack([index.get_vector(record_id) for record_id in ids])
            buf += vectors.astype("<f4").tobytes()

    return bytes(buf)


class _Reader:
    """Cursor over snapshot bytes; short reads raise CorruptIndex."""

    def __init__(self, data: bytes):
        self._view = memoryview(data)
        self._pos = 0

    def take(self, size: int) -> memoryview:
        end = self._pos + size
        if size < 0 or end > len(self._view):
            raise CorruptIndex(f"Truncated index snapshot at byte {self._pos}")
        chunk = self._view[self._pos:end]
        self._pos = end
        return chunk

    def unpack(self, fmt: struct.Struct) -> tuple:
        return fmt.unpack(self.take(fmt.size))

    @property
    def remaining(self) -> int:
        return len(self._view) - self._pos


def loads(data: bytes, seed: Optional[int] = None) -> HnswIndex:
    """
    Deserialize a snapshot produced by ``dumps``.

    The snapshot is fully parsed and validated before any index object is
    built, so a CorruptIndex never leaves a half-loaded index behind.
    """
    reader = _Reader(data)
    (
        magic,
        version,
        dimension,
        metric_id,
        m,
        m0,
        ml,
        ef_construction,
        ef_search,
        entry_point,
        max_level,
        node_count,
    ) = reader.unpack(_HEADER)

    if magic != MAGIC:
        raise CorruptIndex("Unrecognized index magic marker")
    if version != FORMAT_VERSION:
        raise CorruptIndex(f"Unsupported index format version {version}")
    try:
        metric = Metric(metric_id)
    except ValueError:
        raise CorruptIndex(f"Unknown metric id {metric_id}") from None
    try:
        params = HnswParams(
            dimension=dimension,
            metric=metric,
            m=m,
            m0=m0,
            ml=ml,
            ef_construction=ef_construction,
            ef_search=ef_search,
        )
    except ValueError as e:
        raise CorruptIndex(f"Invalid construction parameters: {e}") from e

    links: Dict[int, List[List[int]]] = {}
    for record_id in range(node_count):
        (level,) = reader.unpack(_LEVEL)
        if level < 0:
            continue
        if level > max_level:
            raise CorruptIndex(f"Node {record_id} level {level} exceeds max level {max_level}")
        layers = []
        for layer in range(level + 1):
            (count,) = reader.unpack(_COUNT)
            if count > params.max_degree(layer):
                raise CorruptIndex(f"Node {record_id} has {count} neighbors at layer {layer}")
            neighbors = np.frombuffer(reader.take(4 * count), dtype="<u4")
            if count and int(neighbors.max()) >= node_count:
                raise CorruptIndex(f"Node {record_id} references a neighbor beyond node count {node_count}")
            layers.append(neighbors.tolist())
        links[record_id] = layers

    for record_id, layers in links.items():
        for layer, neighbors in enumerate(layers):
            for neighbor in neighbors:
                if neighbor not in links or len(links[neighbor]) <= layer:
                    raise CorruptIndex(f"Node {record_id} links to {neighbor}, which is absent from layer {layer}")

    if links:
        if entry_point not in links:
            raise CorruptIndex(f"Entry point {entry_point} is not an indexed node")
        if len(links[entry_point]) - 1 != max_level:
            raise CorruptIndex("Entry point does not sit on the top layer")
    elif entry_point != -1 or max_level != -1:
        raise CorruptIndex("Empty index snapshot declares an entry point")

    ids = sorted(links)
    block = reader.take(4 * dimension * len(ids))
    if reader.remaining:
        raise CorruptIndex(f"{reader.remaining} trailing bytes after index snapshot")
    matrix = np.frombuffer(block, dtype="<f4").reshape(len(ids), dimension)
    vectors = {record_id: matrix[row].astype(np.float32) for row, record_id in enumerate(ids)}

    return HnswIndex._restore(
        params,
        links,
        vectors,
        entry_point if links else None,
        max_level,
        seed=seed,
    )


def save(index: HnswIndex, path: PathLike) -> None:
    """
    Write the snapshot of ``index`` to ``path``.

    The bytes go to a temporary file next to ``path`` that replaces it only
    once fully written; on failure the previous file is left in place.
    """
    target = Path(path)
    data = dumps(index)
    tmp_name = None
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, target)
        tmp_name = None
    except OSError as e:
        logger.log_index_persist("save", str(target), status="failed", details={"error": str(e)})
        raise IndexIOError(f"Failed to write index to {target}: {e}") from e
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)

    logger.log_index_persist("save", str(target), details={"nodes": len(index), "bytes": len(data)})


def load(path: PathLike, seed: Optional[int] = None) -> HnswIndex:
    """Read and validate a snapshot from ``path``."""
    source = Path(path)
    try:
        data = source.read_bytes()
    except OSError as e:
        logger.log_index_persist("load", str(source), status="failed", details={"error": str(e)})
        raise IndexIOError(f"Failed to read index from {source}: {e}") from e

    try:
        index = loads(data, seed=seed)
    except CorruptIndex as e:
        logger.log_index_persist("load", str(source), status="corrupt", details={"error": str(e)})
        raise

    logger.log_index_persist("load", str(source), details={"nodes": len(index), "bytes": len(data)})
    return index
