"""Local feature extractor: CLIP embeddings and visual near-identity grouping."""

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Tuple

import numpy as np
from PIL import Image

from ..errors import ModelInitializationError
from ..grouping import find_similarity_groups
from ..models import Photo
from ..scanner.image_utils import fetch_image_bytes, load_image
from .storage import EmbeddingStore

logger = logging.getLogger(__name__)

EPSILON = 1e-8

# Thumbnails are plenty for a 224px vision model
FEATURE_URI_PREFERENCE = ("thumbnail", "web", "original")


class Embedder(Protocol):
    def embed(self, image: Image.Image) -> np.ndarray: ...


EmbedderFactory = Callable[[], Embedder]
Fetcher = Callable[[str], Awaitable[bytes]]
ProgressCallback = Callable[[int, int], None]


def clip_embedder_factory(
    model_name: str = "ViT-B-32",
    pretrained: str = "openai",
    device: Optional[str] = None,
) -> EmbedderFactory:
    """Factory that loads an OpenCLIP model on first call."""

    def load() -> Embedder:
        # torch is only imported once a model is actually wanted
        from .embedder import ClipEmbedder

        return ClipEmbedder(model_name=model_name, pretrained=pretrained, device=device)

    return load


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    vector = np.asarray(vector, dtype=np.float32).ravel()
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return vector
    return vector / norm


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """
    Cosine similarity with an epsilon guard against zero vectors.

    Args:
        a: First feature vector
        b: Second feature vector (same length)

    Returns:
        Similarity clamped to [-1, 1]
    """
    a = np.asarray(a, dtype=np.float64).ravel()
    b = np.asarray(b, dtype=np.float64).ravel()
    if a.shape != b.shape:
        raise ValueError(f"Feature vectors must have the same length ({a.shape[0]} != {b.shape[0]})")

    norm_a = np.sqrt(np.dot(a, a) + EPSILON)
    norm_b = np.sqrt(np.dot(b, b) + EPSILON)
    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    return max(-1.0, min(1.0, similarity))


def similarity_matrix(embeddings: np.ndarray) -> np.ndarray:
    """
    Pairwise cosine similarity matrix.

    Args:
        embeddings: Array of embeddings, shape (n, embedding_dim)

    Returns:
        Symmetric matrix, shape (n, n), clamped to [-1, 1]
    """
    embeddings = np.asarray(embeddings, dtype=np.float64)
    norms = np.sqrt(np.sum(embeddings * embeddings, axis=1) + EPSILON)
    unit = embeddings / norms[:, None]
    matrix = unit @ unit.T
    # Exact symmetry regardless of summation order
    matrix = (matrix + matrix.T) / 2.0
    return np.clip(matrix, -1.0, 1.0)


def find_visual_groups(
    features: Dict[str, np.ndarray],
    threshold: float = 0.90,
) -> Tuple[List[List[str]], Dict[Tuple[str, str], float]]:
    """
    Group photos whose embeddings are near-identical.

    Args:
        features: Embedding per photo id
        threshold: Minimum cosine similarity to join a group

    Returns:
        Tuple of (groups of photo ids, cosine similarity for every compared pair)
    """
    ids = list(features)
    if len(ids) < 2:
        return [], {}

    matrix = similarity_matrix(np.vstack([features[i] for i in ids]))
    pair_scores = {
        (ids[i], ids[j]): float(matrix[i, j])
        for i in range(len(ids))
        for j in range(i + 1, len(ids))
    }
    groups = find_similarity_groups(matrix, ids, similarity_threshold=threshold)
    return groups, pair_scores


class FeatureExtractor:
    """Lazily loaded local vision model shared across analysis runs."""

    def __init__(
        self,
        embedder_factory: Optional[EmbedderFactory] = None,
        store: Optional[EmbeddingStore] = None,
        fetch: Optional[Fetcher] = None,
        max_concurrent: int = 3,
    ):
        """
        Initialize extractor (the model itself loads on ``initialize``).

        Args:
            embedder_factory: Builds the embedding model; OpenCLIP by default
            store: Embedding cache; a fresh in-memory one if None
            fetch: Reads image bytes behind a URI
            max_concurrent: Maximum extractions in flight at once
        """
        self._factory = embedder_factory or clip_embedder_factory()
        self.store = store if store is not None else EmbeddingStore()
        self._fetch = fetch or fetch_image_bytes
        self.max_concurrent = max(1, max_concurrent)
        self._embedder: Optional[Embedder] = None
        self._load_lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self._embedder is not None

    def _load(self) -> Embedder:
        with self._load_lock:
            if self._embedder is None:
                self._embedder = self._factory()
            return self._embedder

    async def initialize(self) -> None:
        """
        Load model weights once; later calls are no-ops.

        Raises:
            ModelInitializationError: The model could not be loaded
        """
        if self._embedder is not None:
            return
        try:
            await asyncio.to_thread(self._load)
        except Exception as e:
            logger.error(f"Vision model initialization failed: {e}")
            raise ModelInitializationError(str(e)) from e

    def dispose(self) -> None:
        with self._load_lock:
            self._embedder = None

    async def extract_features(self, photo_id: str, image_url: str) -> np.ndarray:
        """
        Embedding for one photo, served from the cache when possible.

        Args:
            photo_id: Photo identifier
            image_url: URI of the image to embed

        Returns:
            L2-normalized feature vector
        """
        cached = self.store.get(photo_id, image_url)
        if cached is not None:
            return cached

        await self.initialize()
        data = await self._fetch(image_url)
        image = await asyncio.to_thread(load_image, data)
        raw = await asyncio.to_thread(self._embedder.embed, image)
        features = l2_normalize(raw)

        self.store.put(photo_id, image_url, features)
        return features

    async def batch_extract(
        self,
        photos: List[Photo],
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, np.ndarray]:
        """
        Extract features for many photos with bounded concurrency.

        Photos whose extraction fails are left out of the result.

        Args:
            photos: Photos to embed
            on_progress: Called with (completed, total) after each photo

        Returns:
            Feature vector per photo id
        """
        semaphore = asyncio.Semaphore(self.max_concurrent)
        total = len(photos)
        completed = 0

        async def run(photo: Photo) -> Optional[np.ndarray]:
            nonlocal completed
            uri = photo.best_uri(FEATURE_URI_PREFERENCE)
            try:
                if uri is None:
                    raise ValueError("photo has no image URI")
                async with semaphore:
                    return await self.extract_features(photo.id, uri)
            except ModelInitializationError:
                raise
            except Exception as e:
                logger.warning(f"Feature extraction failed for {photo.id}: {e}")
                return None
            finally:
                completed += 1
                if on_progress is not None:
                    on_progress(completed, total)

        results = await asyncio.gather(*(run(photo) for photo in photos))
        features = {photo.id: vec for photo, vec in zip(photos, results) if vec is not None}

        logger.info(f"Extracted features for {len(features)}/{total} photos")
        return features
