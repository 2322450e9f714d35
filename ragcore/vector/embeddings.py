"""
Embedding providers. The retrieval core only needs ``embed(text) -> vector``;
providers are callables so they can be passed straight to the pipeline.
"""

from abc import ABC, abstractmethod
import hashlib
from typing import List

import numpy as np


class IEmbeddingProvider(ABC):
    """Abstract interface for embedding providers."""

    @abstractmethod
    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector for given text."""
        pass

    @abstractmethod
    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        pass

    def embed_texts(self, texts: List[str]) -> np.ndarray:
        """Embed several texts into an array of shape (len(texts), dimension)."""
        return np.array([self.embed_text(text) for text in texts], dtype=np.float32)

    def __call__(self, text: str) -> List[float]:
        return self.embed_text(text)


class DeterministicHashEmbedding(IEmbeddingProvider):
    """Deterministic hash-based embedding provider for testing purposes.

    Reproducible vectors without any model dependency. Similar texts do not
    get similar vectors; use it for plumbing, not for relevance.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension

    def embed_text(self, text: str) -> List[float]:
        """Generate deterministic embedding vector using hash function."""
        vector: List[float] = []
        block = 0
        while len(vector) < self.dimension:
            # Each sha256 block yields 8 values from 32-bit words
            digest = hashlib.sha256(f"{block}:{text}".encode()).digest()
            for i in range(0, len(digest), 4):
                value = int.from_bytes(digest[i:i + 4], "big")
                # Map to [-1, 1] for cosine similarity
                vector.append((value / 2**32) * 2 - 1)
            block += 1
        return vector[:self.dimension]

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        return self.dimension


class SentenceTransformerEmbedding(IEmbeddingProvider):
    """Sentence transformers embedding provider using pre-trained models.

    Needs the ``models`` extra (sentence-transformers). The model is loaded
    on first use.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None
        self._dimension = None

    @property
    def model(self):
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed_text(self, text: str) -> List[float]:
        """Generate embedding vector using sentence transformers."""
        embedding = self.model.encode(text, convert_to_tensor=False)
        return embedding.tolist()

    def get_dimension(self) -> int:
        """Get the dimension of the embedding vectors."""
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension
