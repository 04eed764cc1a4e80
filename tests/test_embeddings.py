"""Tests for embeddings, similarity and clustering."""

import math

import numpy as np
import pytest

from semantic_memory.config import Settings
from semantic_memory.embeddings import (
    BaseEmbeddingProvider,
    CachedEmbeddingProvider,
    EmbeddingEngine,
    EmbeddingProvider,
    HashedBagOfWordsProvider,
    cluster_embeddings,
    content_hash,
    cosine_similarity,
    hash_token,
    token_weight,
    tokenize,
)


class CountingProvider(BaseEmbeddingProvider):
    """Wraps the real provider and counts calls."""

    def __init__(self, dim: int = 384):
        self._inner = HashedBagOfWordsProvider(dim)
        self.embed_calls = 0

    @property
    def dimension(self) -> int:
        return self._inner.dimension

    @property
    def name(self) -> str:
        return "counting"

    def embed(self, text: str) -> np.ndarray:
        self.embed_calls += 1
        return self._inner.embed(text)


class BrokenProvider(CountingProvider):
    def embed(self, text: str) -> np.ndarray:
        raise RuntimeError("model unavailable")


class TestTokenize:
    """Tests for tokenization."""

    def test_lowercases_and_strips_punctuation(self):
        """Should lower-case text and replace punctuation with spaces."""
        assert tokenize("The quick, brown FOX!") == ["quick", "brown", "fox"]

    def test_drops_short_tokens_and_stop_words(self):
        """Should drop tokens of two characters or fewer and stop words."""
        assert tokenize("it is an ox by their db") == []

    def test_keeps_underscores(self):
        """Should keep underscores inside identifiers."""
        assert tokenize("call parse_config now") == ["call", "parse_config", "now"]


class TestHashedBagOfWords:
    """Tests for the hashed bag-of-words provider."""

    def test_hash_token_is_stable(self):
        """Polynomial hash: ((97*31 + 98)*31 + 99) % 384."""
        assert hash_token("abc", 384) == 96354 % 384

    def test_hash_token_in_range(self):
        """Should map every token into the dimension range."""
        for token in ["database", "zebra", "x" * 50, "ünïcode"]:
            assert 0 <= hash_token(token, 384) < 384

    def test_vocabulary_terms_have_flat_idf(self):
        """Should weight vocabulary terms by term frequency alone."""
        assert token_weight("react", 1, 2) == pytest.approx(0.5)

    def test_unknown_terms_weighted_by_log_idf(self):
        """Should weight unknown terms by log(1000 / (freq + 1))."""
        assert token_weight("zebra", 1, 2) == pytest.approx(0.5 * math.log(500))
        assert token_weight("zebra", 3, 4) == pytest.approx(0.75 * math.log(250))

    def test_deterministic(self):
        """Separate providers give bit-identical vectors for the same text."""
        text = "Refactor the authentication service to cache tokens"
        e1 = HashedBagOfWordsProvider().embed(text)
        e2 = HashedBagOfWordsProvider().embed(text)
        np.testing.assert_array_equal(e1, e2)

    def test_shape_and_dtype(self):
        """Should return float32 vectors of the configured dimension."""
        embedding = HashedBagOfWordsProvider(128).embed("vector search engine")
        assert embedding.shape == (128,)
        assert embedding.dtype == np.float32

    def test_normalized(self):
        """Should return unit-length vectors."""
        embedding = HashedBagOfWordsProvider().embed("react hooks manage component state")
        assert np.linalg.norm(embedding) == pytest.approx(1.0, abs=1e-5)

    def test_no_tokens_gives_zero_vector(self):
        """Should return the zero vector when no token survives."""
        embedding = HashedBagOfWordsProvider().embed("the and of it")
        assert not embedding.any()

    def test_collisions_are_additive(self):
        """Tokens sharing a bucket add into the same dimension."""
        provider = HashedBagOfWordsProvider(dimension=1)
        embedding = provider.embed("react zebra")
        assert embedding.shape == (1,)
        assert embedding[0] == pytest.approx(1.0)

    def test_shared_words_raise_similarity(self):
        """Should score texts sharing words above unrelated texts."""
        provider = HashedBagOfWordsProvider()
        base = provider.embed("postgres database migration scripts")
        close = provider.embed("database migration scripts for postgres clusters")
        far = provider.embed("watercolor painting landscapes")
        assert cosine_similarity(base, close) > cosine_similarity(base, far)


class TestCosineSimilarity:
    """Tests for cosine similarity."""

    def test_self_similarity(self):
        """Should score a vector against itself as 1.0."""
        v = np.array([0.3, -1.2, 4.0], dtype=np.float32)
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_opposite(self):
        """Should score opposite vectors as -1.0."""
        v = np.array([1.0, 2.0], dtype=np.float32)
        assert cosine_similarity(v, -v) == pytest.approx(-1.0)

    def test_bounds(self):
        """Should stay within [-1, 1]."""
        rng = np.random.default_rng(7)
        for _ in range(50):
            a, b = rng.standard_normal(16), rng.standard_normal(16)
            assert -1.0 <= cosine_similarity(a, b) <= 1.0

    def test_dimension_mismatch_is_zero(self):
        """Should return 0.0 for mismatched dimensions."""
        assert cosine_similarity(np.ones(3), np.ones(4)) == 0.0

    def test_zero_vector_is_zero(self):
        """Should return 0.0 when either vector is zero."""
        assert cosine_similarity(np.zeros(3), np.ones(3)) == 0.0

    def test_missing_vector_is_zero(self):
        """Should return 0.0 when a vector is missing."""
        assert cosine_similarity(None, np.ones(3)) == 0.0


class TestClustering:
    """Tests for centroid clustering."""

    def test_fewer_vectors_than_clusters(self):
        """Should make one cluster per vector when there are fewer vectors than clusters."""
        embeddings = {"a": np.array([1.0, 0.0]), "b": np.array([0.0, 1.0])}
        clusters = cluster_embeddings(embeddings, k=5)
        assert len(clusters) == 2
        for centroid, members in clusters:
            assert len(members) == 1
            np.testing.assert_array_equal(centroid, embeddings[members[0]])

    def test_empty_input(self):
        """Should return no clusters for no vectors."""
        assert cluster_embeddings({}, k=3) == []

    def test_single_cluster_centroid_is_mean(self):
        """Should place a lone cluster's centroid at the mean of its members."""
        embeddings = {
            "a": np.array([1.0, 0.0, 0.0]),
            "b": np.array([0.0, 1.0, 0.0]),
            "c": np.array([1.0, 1.0, 0.0]),
        }
        clusters = cluster_embeddings(embeddings, k=1, rng=np.random.default_rng(0))
        assert len(clusters) == 1
        centroid, members = clusters[0]
        assert sorted(members) == ["a", "b", "c"]
        np.testing.assert_allclose(centroid, [2 / 3, 2 / 3, 0.0], rtol=1e-5)

    def test_every_vector_assigned_once_and_no_empty_clusters(self):
        """Should assign every vector exactly once and drop empty clusters."""
        rng = np.random.default_rng(42)
        embeddings = {f"m{i}": rng.standard_normal(8) for i in range(30)}
        clusters = cluster_embeddings(embeddings, k=4, rng=np.random.default_rng(1))
        members = [mid for _, group in clusters for mid in group]
        assert sorted(members) == sorted(embeddings)
        assert 1 <= len(clusters) <= 4
        assert all(group for _, group in clusters)

    def test_identical_vectors_collapse_into_one_cluster(self):
        """Duplicate centroids leave clusters empty; those are dropped."""
        embeddings = {f"m{i}": np.array([1.0, 2.0, 3.0]) for i in range(6)}
        clusters = cluster_embeddings(embeddings, k=3, rng=np.random.default_rng(3))
        assert len(clusters) == 1
        assert len(clusters[0][1]) == 6

    def test_iteration_cap(self):
        """Should still assign every vector when capped at one iteration."""
        rng = np.random.default_rng(5)
        embeddings = {f"m{i}": rng.standard_normal(4) for i in range(10)}
        clusters = cluster_embeddings(
            embeddings, k=3, max_iterations=1, rng=np.random.default_rng(5)
        )
        assert sum(len(group) for _, group in clusters) == 10


class TestCachedEmbeddingProvider:
    """Tests for the LRU embedding cache."""

    def test_implements_protocol(self):
        """Should satisfy the provider protocol."""
        assert isinstance(CachedEmbeddingProvider(CountingProvider()), EmbeddingProvider)

    def test_cache_hit(self):
        """Should embed repeated text only once."""
        inner = CountingProvider()
        cached = CachedEmbeddingProvider(inner, cache_size=10)
        e1 = cached.embed("cache me")
        e2 = cached.embed("cache me")
        assert inner.embed_calls == 1
        np.testing.assert_array_equal(e1, e2)

    def test_lru_eviction(self):
        """Should evict the least recently used embedding when full."""
        inner = CountingProvider()
        cached = CachedEmbeddingProvider(inner, cache_size=2)
        cached.embed("first")
        cached.embed("second")
        cached.embed("third")
        assert cached.cache_stats()["size"] == 2
        cached.embed("first")
        assert inner.embed_calls == 4

    def test_clear_cache(self):
        """Should empty the cache."""
        cached = CachedEmbeddingProvider(CountingProvider())
        cached.embed("text")
        cached.clear_cache()
        assert cached.cache_stats()["size"] == 0


class TestEmbeddingEngine:
    """Tests for the embedding engine."""

    def test_uses_configured_dimension(self):
        """Should embed with the configured dimension."""
        engine = EmbeddingEngine(Settings(embedding_dim=64))
        assert engine.dimension == 64
        assert engine.embed("dimension check").shape == (64,)

    def test_failure_returns_zero_vector(self):
        """Should return the zero vector when the provider fails."""
        engine = EmbeddingEngine(Settings(), provider=BrokenProvider())
        embedding = engine.embed("anything")
        assert embedding.shape == (384,)
        assert not embedding.any()

    def test_similarity(self):
        """Should expose cosine similarity between two embeddings."""
        engine = EmbeddingEngine(Settings())
        a = engine.embed("database indexing strategy")
        b = engine.embed("database indexing")
        assert engine.similarity(a, a) == pytest.approx(1.0, abs=1e-5)
        assert 0.0 < engine.similarity(a, b) < 1.0
        assert engine.similarity(a, np.zeros(384, dtype=np.float32)) == 0.0

    def test_find_similar_orders_and_thresholds(self):
        """Should return candidates at or above the threshold, most similar first."""
        engine = EmbeddingEngine(Settings())
        query = engine.embed("database indexing")
        candidates = {
            "same": engine.embed("database indexing"),
            "other": engine.embed("gardening tips tomatoes"),
        }
        matches = engine.find_similar(query, candidates, threshold=0.7)
        assert [mid for mid, _ in matches] == ["same"]
        assert matches[0][1] == pytest.approx(1.0, abs=1e-5)

    def test_cluster_uses_settings(self):
        """Should cluster with the configured cluster count."""
        engine = EmbeddingEngine(Settings(cluster_count=2))
        embeddings = {"a": engine.embed("alpha")}
        assert len(engine.cluster(embeddings)) == 1


def test_content_hash():
    """Should hash content to a stable SHA-256 hex digest."""
    assert content_hash("abc") == content_hash("abc")
    assert content_hash("abc") != content_hash("abd")
    assert len(content_hash("abc")) == 64
