"""
Append-only VectorRecord store backed by SQLite.
Owns the RecordId -> (vector, text) association; knows nothing of the index.
"""

import sqlite3
import threading
from typing import Iterator, Optional, Tuple

import numpy as np

from ..vector.distance import VectorLike
from ..vector.types import VectorRecord
from .db import MEMORY_DB, connect, health_check
from .errors import DimensionMismatch, NotFound


class RecordStore:
    """Dense, monotonically numbered chunk store."""

    def __init__(self, db_path: str = MEMORY_DB):
        self.db_path = db_path
        self._conn = connect(db_path)
        self._lock = threading.Lock()
        self._dimension = self._load_dimension()
        self._count = self._load_count()

    def _load_dimension(self) -> Optional[int]:
        row = self._conn.execute("SELECT value FROM meta WHERE key = 'dimension'").fetchone()
        return int(row[0]) if row else None

    def _load_count(self) -> int:
        row = self._conn.execute("SELECT COALESCE(MAX(id) + 1, 0) FROM records").fetchone()
        return int(row[0])

    @property
    def dimension(self) -> Optional[int]:
        """Vector length, fixed by the first append (None while empty)."""
        return self._dimension

    def append(self, vector: VectorLike, text: str) -> int:
        """Store ``(vector, text)`` under the next RecordId and return it."""
        arr = np.asarray(vector, dtype=np.float32).reshape(-1)

        with self._lock:
            if self._dimension is not None and arr.shape[0] != self._dimension:
                raise DimensionMismatch(self._dimension, arr.shape[0])

            record_id = self._count
            try:
                if self._dimension is None:
                    self._conn.execute(
                        "INSERT INTO meta (key, value) VALUES ('dimension', ?)",
                        (str(arr.shape[0]),)
                    )
                self._conn.execute(
                    "INSERT INTO records (id, dim, vector, text) VALUES (?, ?, ?, ?)",
                    (record_id, arr.shape[0], arr.astype("<f4").tobytes(), text)
                )
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                raise

            if self._dimension is None:
                self._dimension = arr.shape[0]
            self._count = record_id + 1
            return record_id

    def get(self, record_id: int) -> Tuple[np.ndarray, str]:
        """Return ``(vector, text)`` for ``record_id``."""
        with self._lock:
            row = self._conn.execute(
                "SELECT vector, text FROM records WHERE id = ?", (record_id,)
            ).fetchone()
        if row is None:
            raise NotFound(record_id)
        blob, text = row
        return np.frombuffer(blob, dtype="<f4").astype(np.float32), text

    def get_text(self, record_id: int) -> str:
        return self.get(record_id)[1]

    def count(self) -> int:
        """Number of records ever appended."""
        return self._count

    def __len__(self) -> int:
        return self._count

    def iter_records(self, start: int = 0, batch_size: int = 500) -> Iterator[VectorRecord]:
        """Yield records in ascending RecordId order, starting at ``start``."""
        next_id = start
        while True:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT id, vector, text FROM records WHERE id >= ? ORDER BY id LIMIT ?",
                    (next_id, batch_size)
                ).fetchall()
            if not rows:
                return
            for record_id, blob, text in rows:
                yield VectorRecord(
                    id=record_id,
                    vector=np.frombuffer(blob, dtype="<f4").astype(np.float32),
                    text=text,
                )
            next_id = rows[-1][0] + 1

    def health_check(self) -> bool:
        with self._lock:
            return health_check(self._conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
