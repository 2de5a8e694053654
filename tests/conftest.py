"""Shared fixtures and fake collaborators."""

import hashlib
import io
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

import numpy as np
import pytest
from PIL import Image

from scout_curation.config import Settings
from scout_curation.embedding.feature_extractor import FeatureExtractor
from scout_curation.errors import CollaboratorError
from scout_curation.inference_service.client import description_similarity
from scout_curation.models import ArchiveState, Coordinates, Photo
from scout_curation.pipeline.context import PipelineContext
from scout_curation.scanner.hashing import ContentHasher

BASE_TIME = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)

RED = (220, 30, 30)
BLUE = (30, 30, 220)
GREEN = (30, 200, 30)


def solid_png(color: Tuple[int, int, int], size: int = 16) -> bytes:
    """PNG bytes of a single-colour image; different sizes give different bytes."""
    buffer = io.BytesIO()
    Image.new("RGB", (size, size), color).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeEmbedder:
    """Embeds an image as its 4x4 downsampled pixels, so equal colours embed equally."""

    def embed(self, image: Image.Image) -> np.ndarray:
        small = image.convert("RGB").resize((4, 4))
        return np.asarray(small, dtype=np.float32).ravel()


class FakeFetcher:
    """In-memory URI -> bytes map recording every fetch."""

    def __init__(self, images: Optional[Dict[str, bytes]] = None):
        self.images = dict(images or {})
        self.calls: List[str] = []

    async def __call__(self, uri: str) -> bytes:
        self.calls.append(uri)
        if uri not in self.images:
            raise OSError(f"unreachable: {uri}")
        return self.images[uri]


class FakeDescriptionService:
    """Returns canned descriptions keyed by photo URL."""

    def __init__(self, descriptions: Optional[Dict[str, str]] = None, failing: Optional[Set[str]] = None):
        self.descriptions = dict(descriptions or {})
        self.failing = set(failing or ())
        self.describe_calls: List[str] = []
        self.similarity_calls = 0

    async def describe(self, photo_url: str) -> str:
        self.describe_calls.append(photo_url)
        if photo_url in self.failing:
            raise CollaboratorError(f"describe failed for {photo_url}")
        # Unknown photos get a single unique token, unrelated to every other description
        return self.descriptions.get(photo_url, hashlib.md5(photo_url.encode()).hexdigest())

    async def semantic_similarity(self, text_a: str, text_b: str) -> float:
        self.similarity_calls += 1
        return description_similarity(text_a, text_b)


class FakeMutator:
    """Photo service double: records archive-state changes, fails for chosen ids."""

    def __init__(self, failing: Optional[Set[str]] = None):
        self.failing = set(failing or ())
        self.states: Dict[str, ArchiveState] = {}
        self.calls: List[Tuple[str, ArchiveState]] = []

    async def set_archive_state(self, photo_id: str, state: ArchiveState) -> bool:
        self.calls.append((photo_id, state))
        if photo_id in self.failing:
            return False
        self.states[photo_id] = state
        return True


def failing_embedder_factory():
    raise RuntimeError("no model weights available")


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def make_photo():
    def factory(
        photo_id: str,
        minutes: float = 0,
        project_id: Optional[str] = "project-1",
        creator_id: Optional[str] = "user-1",
        coordinates: Optional[Coordinates] = None,
        uri: Optional[str] = None,
        **kwargs,
    ) -> Photo:
        return Photo(
            id=photo_id,
            captured_at=BASE_TIME + timedelta(minutes=minutes),
            project_id=project_id,
            creator_id=creator_id,
            coordinates=coordinates,
            uris={"web": uri or f"mem://{photo_id}.png"},
            **kwargs,
        )

    return factory


@pytest.fixture
def make_context(settings):
    """Build a pipeline context over fake collaborators."""

    def factory(
        images: Dict[str, bytes],
        descriptions: Optional[FakeDescriptionService] = None,
        embedder_factory=FakeEmbedder,
    ) -> PipelineContext:
        fetch = FakeFetcher(images)
        return PipelineContext(
            hasher=ContentHasher(batch_size=3, fetch=fetch),
            extractor=FeatureExtractor(embedder_factory=embedder_factory, fetch=fetch, max_concurrent=3),
            descriptions=descriptions or FakeDescriptionService(),
            settings=settings,
        )

    return factory
