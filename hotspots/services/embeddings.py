"""Text embedding sources for the semantic feature block.

The real embedding is produced upstream and stored on the signal. When it is
absent, a deterministic hashed bag-of-words stands in behind the same
interface so clustering still has a semantic signal.
"""

import hashlib
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import numpy as np

logger = logging.getLogger(__name__)

HASHED_EMBEDDING_BUCKETS = 100
REDUCED_EMBEDDING_DIMENSIONS = 20

_TOKEN_RE = re.compile(r"[a-z0-9']+")


class EmbeddingSource(Protocol):
    """Anything that can turn signal text into a dense vector."""

    name: str

    def embed(self, text: str, precomputed: Sequence[float] | None = None) -> np.ndarray | None:
        """Return an embedding, or None when this source has nothing to offer."""
        ...


class PrecomputedEmbeddingSource:
    """Uses the embedding already stored on the signal."""

    name = "precomputed"

    def embed(self, text: str, precomputed: Sequence[float] | None = None) -> np.ndarray | None:
        if not precomputed:
            return None
        try:
            vector = np.asarray(precomputed, dtype=np.float64)
        except (TypeError, ValueError):
            logger.warning("Ignoring non-numeric precomputed embedding")
            return None
        if vector.ndim != 1 or not np.all(np.isfinite(vector)):
            logger.warning("Ignoring malformed precomputed embedding")
            return None
        return vector


class HashedTextEmbeddingSource:
    """Hashed bag-of-words over lowercase tokens, L2-normalised.

    Uses blake2b so the bucket for a token is stable across processes
    (Python's built-in ``hash`` is salted per interpreter).
    """

    name = "hashed_text"

    def __init__(self, buckets: int = HASHED_EMBEDDING_BUCKETS):
        if buckets < 1:
            raise ValueError("buckets must be positive")
        self.buckets = buckets

    def _bucket(self, token: str) -> int:
        digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
        return int.from_bytes(digest, "big") % self.buckets

    def embed(self, text: str, precomputed: Sequence[float] | None = None) -> np.ndarray:
        vector = np.zeros(self.buckets, dtype=np.float64)
        for token in _TOKEN_RE.findall((text or "").lower()):
            vector[self._bucket(token)] += 1.0
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector


@dataclass
class EmbeddingResult:
    """Embedding plus the name of the source that produced it."""

    vector: np.ndarray
    source: str

    @property
    def is_fallback(self) -> bool:
        return self.source != PrecomputedEmbeddingSource.name


class FallbackEmbeddingSource:
    """Tries the primary source, falling back to a deterministic one."""

    def __init__(
        self,
        primary: EmbeddingSource | None = None,
        fallback: EmbeddingSource | None = None,
    ):
        self.primary = primary or PrecomputedEmbeddingSource()
        self.fallback = fallback or HashedTextEmbeddingSource()

    def resolve(self, text: str, precomputed: Sequence[float] | None = None) -> EmbeddingResult:
        vector = self.primary.embed(text, precomputed)
        if vector is not None:
            return EmbeddingResult(vector=vector, source=self.primary.name)

        vector = self.fallback.embed(text, precomputed)
        if vector is None:
            raise ValueError(f"Embedding source {self.fallback.name} returned nothing")
        return EmbeddingResult(vector=vector, source=self.fallback.name)


def reduce_embedding(
    vector: np.ndarray,
    dimensions: int = REDUCED_EMBEDDING_DIMENSIONS,
) -> np.ndarray:
    """Fold an embedding of any length down to ``dimensions`` values.

    Contiguous chunks are averaged, short vectors are zero-padded, and the
    result is L2-normalised.
    """
    vector = np.asarray(vector, dtype=np.float64).ravel()
    if vector.size < dimensions:
        reduced = np.zeros(dimensions, dtype=np.float64)
        reduced[: vector.size] = vector
    else:
        reduced = np.array([chunk.mean() for chunk in np.array_split(vector, dimensions)])

    norm = np.linalg.norm(reduced)
    if norm > 0:
        reduced = reduced / norm
    return reduced
