"""Tests for the local feature extractor and embedding cache."""

import asyncio

import numpy as np
import pytest

from conftest import BLUE, RED, FakeEmbedder, FakeFetcher, failing_embedder_factory, solid_png
from scout_curation.config import Settings
from scout_curation.embedding.feature_extractor import (
    FeatureExtractor,
    cosine_similarity,
    find_visual_groups,
    similarity_matrix,
)
from scout_curation.embedding.storage import EmbeddingStore
from scout_curation.errors import ModelInitializationError
from scout_curation.pipeline.context import PipelineContext


def test_cosine_similarity_symmetric_and_bounded():
    rng = np.random.default_rng(7)
    for _ in range(20):
        a, b = rng.normal(size=16), rng.normal(size=16)
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
        assert -1.0 <= cosine_similarity(a, b) <= 1.0


def test_cosine_similarity_zero_vector_is_zero():
    assert cosine_similarity(np.zeros(4), np.ones(4)) == 0.0


def test_cosine_similarity_rejects_mismatched_lengths():
    with pytest.raises(ValueError):
        cosine_similarity(np.ones(3), np.ones(4))


def test_similarity_matrix_is_symmetric():
    matrix = similarity_matrix(np.random.default_rng(1).normal(size=(5, 8)))
    assert np.array_equal(matrix, matrix.T)
    assert np.all(matrix <= 1.0) and np.all(matrix >= -1.0)


def test_find_visual_groups():
    features = {
        "a": np.array([1.0, 0.0, 0.0]),
        "b": np.array([0.99, 0.05, 0.0]),
        "c": np.array([0.0, 1.0, 0.0]),
    }
    groups, scores = find_visual_groups(features, threshold=0.9)
    assert groups == [["a", "b"]]
    assert set(scores) == {("a", "b"), ("a", "c"), ("b", "c")}


async def test_initialize_is_idempotent():
    loads = []

    def factory():
        loads.append(1)
        return FakeEmbedder()

    extractor = FeatureExtractor(embedder_factory=factory)
    await extractor.initialize()
    await extractor.initialize()

    assert extractor.is_ready
    assert len(loads) == 1


async def test_initialize_failure_raises_model_error():
    extractor = FeatureExtractor(embedder_factory=failing_embedder_factory)
    with pytest.raises(ModelInitializationError):
        await extractor.initialize()
    assert not extractor.is_ready


async def test_extract_features_uses_cache():
    fetch = FakeFetcher({"mem://a": solid_png(RED)})
    extractor = FeatureExtractor(embedder_factory=FakeEmbedder, fetch=fetch)

    first = await extractor.extract_features("a", "mem://a")
    second = await extractor.extract_features("a", "mem://a")

    assert np.linalg.norm(first) == pytest.approx(1.0, abs=1e-5)
    assert np.array_equal(first, second)
    assert fetch.calls == ["mem://a"]


async def test_batch_extract_skips_failures_and_reports_progress(make_photo):
    fetch = FakeFetcher({"mem://a.png": solid_png(RED), "mem://b.png": solid_png(BLUE)})
    extractor = FeatureExtractor(embedder_factory=FakeEmbedder, fetch=fetch, max_concurrent=2)
    progress = []

    features = await extractor.batch_extract(
        [make_photo("a"), make_photo("b"), make_photo("gone")],
        on_progress=lambda done, total: progress.append((done, total)),
    )

    assert set(features) == {"a", "b"}
    assert progress[-1] == (3, 3)


def test_embedding_store_round_trip(tmp_path):
    store = EmbeddingStore(tmp_path)
    store.put("a", "mem://a", np.array([0.6, 0.8]))
    store.save()

    reloaded = EmbeddingStore(tmp_path)
    assert len(reloaded) == 1
    assert np.allclose(reloaded.get("a", "mem://a"), [0.6, 0.8])
    assert reloaded.get("a", "mem://other") is None


async def test_context_saves_embedding_cache_on_dispose(tmp_path):
    context = PipelineContext.from_settings(Settings(_env_file=None, embedding_cache_dir=tmp_path))
    assert context.extractor.store.store_path == tmp_path

    context.extractor.store.put("a", "mem://a", np.array([0.6, 0.8]))
    await context.dispose()

    assert len(EmbeddingStore(tmp_path)) == 1


class SlowFetcher(FakeFetcher):
    """Fetcher that yields while "downloading" and tracks how many fetches overlap."""

    def __init__(self, images):
        super().__init__(images)
        self.in_flight = 0
        self.peak = 0

    async def __call__(self, uri: str) -> bytes:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return await super().__call__(uri)
        finally:
            self.in_flight -= 1


async def test_batch_extract_bounds_concurrency(make_photo):
    photos = [make_photo(f"p{i}", minutes=i) for i in range(10)]
    fetch = SlowFetcher({f"mem://p{i}.png": solid_png(RED, 16 + i) for i in range(10)})
    extractor = FeatureExtractor(embedder_factory=FakeEmbedder, fetch=fetch, max_concurrent=3)

    features = await extractor.batch_extract(photos)

    assert len(features) == 10
    assert 1 < fetch.peak <= 3
