"""Embedding generation, cosine similarity and centroid clustering.

Embeddings are a deterministic hashed bag-of-words: each token is hashed
into one of ``dimension`` buckets and weighted by a TF-IDF proxy. This is
an approximate representation by contract, not a neural embedding.
"""

import hashlib
import math
import re
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Mapping
from typing import Protocol, runtime_checkable

import numpy as np

from semantic_memory.config import Settings, get_settings
from semantic_memory.logging import get_logger

log = get_logger("embeddings")

STOP_WORDS = frozenset(
    """
    the a an and or but in on at to for of with by this that these those is are
    was were be been being have has had do does did will would could should may
    might must can shall it its they them their we us our you your he him his
    she her hers me my mine
    """.split()
)

# Common programming vocabulary. Known terms get a flat IDF of 1.0; anything
# outside this set is treated as rarer and weighted higher.
VOCABULARY = frozenset(
    """
    function class method variable constant array object string number boolean
    null undefined true false if else for while loop condition return import
    export module component react vue angular node javascript typescript python
    java api endpoint route controller service model view database query insert
    update delete select join table column authentication authorization security
    validation error exception test testing unit integration deployment build
    compile performance optimization cache memory storage file directory
    configuration environment development production staging debug
    """.split()
)

_NON_WORD = re.compile(r"[^\w\s]")


def tokenize(text: str) -> list[str]:
    """Lowercase, strip punctuation, drop short tokens and stop words."""
    words = _NON_WORD.sub(" ", text.lower()).split()
    return [w for w in words if len(w) > 2 and w not in STOP_WORDS]


def hash_token(token: str, dimension: int) -> int:
    """Map a token to a dimension with a stable 32-bit polynomial hash.

    Python's ``hash()`` is salted per process, so it cannot be used here.
    """
    h = 0
    for ch in token:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h) % dimension


def token_weight(token: str, freq: int, total: int) -> float:
    """Term frequency times the IDF proxy."""
    tf = freq / total
    idf = 1.0 if token in VOCABULARY else math.log(1000 / (freq + 1))
    return tf * idf


def cosine_similarity(a: np.ndarray | None, b: np.ndarray | None) -> float:
    """Cosine similarity in [-1, 1].

    Degrades to 0.0 for missing vectors, mismatched dimensions and zero
    magnitudes; never raises.
    """
    if a is None or b is None:
        return 0.0
    if a.shape != b.shape:
        log.warning("Embedding dimensions do not match: {} vs {}", a.shape, b.shape)
        return 0.0
    norm_a = float(np.linalg.norm(a))
    norm_b = float(np.linalg.norm(b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    sim = float(np.dot(a, b)) / (norm_a * norm_b)
    return max(-1.0, min(1.0, sim))


def _normalize_rows(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


def cluster_embeddings(
    embeddings: Mapping[str, np.ndarray],
    k: int,
    max_iterations: int = 100,
    convergence: float = 0.99,
    rng: np.random.Generator | None = None,
) -> list[tuple[np.ndarray, list[str]]]:
    """Group embeddings around ``k`` centroids by highest cosine similarity.

    With fewer vectors than ``k`` every vector is its own cluster. Otherwise
    centroids start at randomly sampled members and are recomputed as the
    mean of their members until every centroid moves less than
    ``convergence`` (cosine) or ``max_iterations`` is reached. Empty
    clusters are dropped from the result.

    Returns:
        List of (centroid, member ids).
    """
    items = list(embeddings.items())
    if not items:
        return []
    if len(items) < k:
        return [(vector, [memory_id]) for memory_id, vector in items]

    shape = items[0][1].shape
    skipped = [memory_id for memory_id, vector in items if vector.shape != shape]
    if skipped:
        log.warning("Skipping {} embeddings with mismatched dimensions", len(skipped))
        items = [(memory_id, vector) for memory_id, vector in items if vector.shape == shape]

    ids = [memory_id for memory_id, _ in items]
    vectors = np.stack([vector for _, vector in items]).astype(np.float64)
    unit_vectors = _normalize_rows(vectors)

    rng = rng or np.random.default_rng()
    centroids = vectors[rng.integers(0, len(ids), size=k)].copy()
    assignments = np.zeros(len(ids), dtype=int)

    for iteration in range(max_iterations):
        sims = unit_vectors @ _normalize_rows(centroids).T
        assignments = np.argmax(sims, axis=1)

        converged = True
        for i in range(k):
            members = vectors[assignments == i]
            if len(members) == 0:
                continue
            new_centroid = members.mean(axis=0)
            if cosine_similarity(centroids[i], new_centroid) < convergence:
                converged = False
            centroids[i] = new_centroid

        if converged:
            log.debug("Clustering converged after {} iterations", iteration + 1)
            break

    clusters = []
    for i in range(k):
        members = [ids[j] for j in np.flatnonzero(assignments == i)]
        if members:
            clusters.append((centroids[i].astype(np.float32), members))
    return clusters


# ========== Provider Protocol ==========


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Protocol for embedding providers.

    Implementations must provide:
    - embed(text) -> np.ndarray: Single text embedding
    - dimension: int: The embedding dimension
    - name: str: Provider identifier for logging/debugging
    """

    @property
    def dimension(self) -> int:
        """Return the embedding dimension."""
        ...

    @property
    def name(self) -> str:
        """Return the provider name."""
        ...

    def embed(self, text: str) -> np.ndarray:
        """Generate embedding for a single text."""
        ...


class BaseEmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the embedding dimension."""
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    def embed(self, text: str) -> np.ndarray:
        """Generate embedding for a single text."""
        pass


# ========== Hashed Bag-of-Words Provider ==========


class HashedBagOfWordsProvider(BaseEmbeddingProvider):
    """Deterministic TF-IDF-weighted hashing-trick embeddings.

    Same text always yields the same vector. Hash collisions are additive.
    """

    def __init__(self, dimension: int = 384):
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def name(self) -> str:
        return f"hashed-bow:{self._dimension}"

    def embed(self, text: str) -> np.ndarray:
        """Embed text; all-zero vector when no token survives tokenization."""
        tokens = tokenize(text)
        embedding = np.zeros(self._dimension, dtype=np.float32)
        if not tokens:
            return embedding

        for token, freq in Counter(tokens).items():
            embedding[hash_token(token, self._dimension)] += token_weight(
                token, freq, len(tokens)
            )

        norm = np.linalg.norm(embedding)
        if norm > 0:
            embedding /= norm
        return embedding


# ========== Cached Provider Wrapper ==========


class CachedEmbeddingProvider(BaseEmbeddingProvider):
    """Wrapper that adds LRU caching to any embedding provider.

    Caches embeddings by content hash; valid because providers are pure.
    """

    def __init__(self, provider: EmbeddingProvider, cache_size: int = 1000):
        self._provider = provider
        self._cache_size = cache_size
        self._cache: dict[str, np.ndarray] = {}
        self._cache_order: list[str] = []  # LRU tracking

    @property
    def dimension(self) -> int:
        return self._provider.dimension

    @property
    def name(self) -> str:
        return f"cached:{self._provider.name}"

    def _touch(self, key: str) -> None:
        if key in self._cache_order:
            self._cache_order.remove(key)
        self._cache_order.append(key)

    def _evict_if_needed(self) -> None:
        """Evict oldest entries if cache is full."""
        while len(self._cache) >= self._cache_size and self._cache_order:
            oldest = self._cache_order.pop(0)
            self._cache.pop(oldest, None)

    def embed(self, text: str) -> np.ndarray:
        """Generate embedding with caching."""
        key = content_hash(text)
        if key in self._cache:
            self._touch(key)
            return self._cache[key]

        embedding = self._provider.embed(text)
        self._evict_if_needed()
        self._cache[key] = embedding
        self._cache_order.append(key)
        return embedding

    def cache_stats(self) -> dict:
        """Return cache statistics."""
        return {
            "size": len(self._cache),
            "max_size": self._cache_size,
            "provider": self._provider.name,
        }

    def clear_cache(self) -> None:
        """Clear the embedding cache."""
        self._cache.clear()
        self._cache_order.clear()
        log.info("Embedding cache cleared")


# ========== Engine ==========


class EmbeddingEngine:
    """Embedding, similarity and clustering behind one object.

    Embedding failures never propagate: they are logged and replaced by
    an all-zero vector, which scores 0 against everything.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        provider: EmbeddingProvider | None = None,
    ):
        self.settings = settings or get_settings()
        provider = provider or HashedBagOfWordsProvider(self.settings.embedding_dim)
        self._provider = CachedEmbeddingProvider(
            provider, cache_size=self.settings.embedding_cache_size
        )
        log.debug("EmbeddingEngine initialized with provider: {}", self._provider.name)

    @property
    def dimension(self) -> int:
        """Return embedding dimension."""
        return self._provider.dimension

    def embed(self, text: str) -> np.ndarray:
        """Generate embedding for text, or the zero vector on failure."""
        try:
            return self._provider.embed(text)
        except Exception as e:
            log.error("Failed to generate embedding: {}", e)
            return np.zeros(self.dimension, dtype=np.float32)

    def similarity(self, embedding1: np.ndarray, embedding2: np.ndarray) -> float:
        """Compute cosine similarity between embeddings."""
        return cosine_similarity(embedding1, embedding2)

    def find_similar(
        self,
        query: np.ndarray,
        candidates: Mapping[str, np.ndarray],
        threshold: float,
        max_results: int | None = None,
    ) -> list[tuple[str, float]]:
        """Candidates at or above ``threshold``, most similar first."""
        matches = []
        for memory_id, embedding in candidates.items():
            sim = cosine_similarity(query, embedding)
            if sim >= threshold:
                matches.append((memory_id, sim))
        matches.sort(key=lambda m: m[1], reverse=True)
        return matches[:max_results] if max_results is not None else matches

    def cluster(
        self,
        embeddings: Mapping[str, np.ndarray],
        k: int | None = None,
        rng: np.random.Generator | None = None,
    ) -> list[tuple[np.ndarray, list[str]]]:
        """Cluster embeddings with the configured iteration cap and convergence."""
        return cluster_embeddings(
            embeddings,
            k or self.settings.cluster_count,
            max_iterations=self.settings.cluster_max_iterations,
            convergence=self.settings.cluster_convergence,
            rng=rng,
        )

    def cache_stats(self) -> dict:
        """Return cache statistics."""
        return self._provider.cache_stats()

    def clear_cache(self) -> None:
        """Clear embedding cache."""
        self._provider.clear_cache()


# ========== Utilities ==========


def content_hash(content: str) -> str:
    """Generate SHA256 hash of content for cache keys."""
    return hashlib.sha256(content.encode()).hexdigest()
