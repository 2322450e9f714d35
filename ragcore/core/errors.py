"""
Error kinds surfaced by the retrieval core.
None of these are retried inside the core; retry policy belongs to the caller.
"""


class RetrievalError(Exception):
    """Base class for all retrieval core errors."""


class DimensionMismatch(RetrievalError, ValueError):
    """A vector's length does not match the index/store dimension."""

    def __init__(self, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Vector dimension {actual} does not match expected dimension {expected}")


class NotFound(RetrievalError, KeyError):
    """A RecordId was never assigned."""

    def __init__(self, record_id: int):
        self.record_id = record_id
        super().__init__(record_id)

    def __str__(self):
        return f"Record {self.record_id} not found"


class IndexEmpty(RetrievalError):
    """Search attempted before anything was inserted."""


class DuplicateRecord(RetrievalError, ValueError):
    """A RecordId is already present in the index."""


class CorruptIndex(RetrievalError):
    """A persisted index snapshot violates the format."""


class IndexIOError(RetrievalError, OSError):
    """Reading or writing a persisted index failed."""


class EmbeddingError(RetrievalError):
    """The external embedding function failed or returned garbage."""
