"""Shared services, cancellation and progress reporting for analysis runs."""

import logging
from typing import Callable, List, Optional

import httpx

from ..config import Settings, get_settings
from ..embedding.feature_extractor import FeatureExtractor, clip_embedder_factory
from ..embedding.storage import EmbeddingStore
from ..inference_service.client import DescriptionClient, DescriptionService
from ..scanner.hashing import ContentHasher
from ..scanner.image_utils import fetch_image_bytes

logger = logging.getLogger(__name__)


class AnalysisCancelled(Exception):
    """Raised inside a run when its cancellation token fires."""


class CancellationToken:
    """Cooperative cancellation flag checked at every suspension point."""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def check(self) -> None:
        if self._cancelled:
            raise AnalysisCancelled()


ProgressListener = Callable[[int], None]


class ProgressChannel:
    """Integer 0-100 progress that only moves forward within a run.

    Observers subscribe for updates; the UI can also poll ``value``.
    """

    def __init__(self):
        self._value = 0
        self._listeners: List[ProgressListener] = []

    @property
    def value(self) -> int:
        return self._value

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        """Register a listener; returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def reset(self) -> None:
        self._value = 0
        self._notify()

    def report(self, percent: float) -> None:
        value = max(0, min(100, int(percent)))
        if value <= self._value:
            return
        self._value = value
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._value)
            except Exception as e:
                logger.warning(f"Progress listener failed: {e}")


class PipelineContext:
    """Service container injected into the orchestrator.

    Owns the shared HTTP client and the process-wide feature extractor, so a
    single context should be reused across analysis runs.
    """

    def __init__(
        self,
        hasher: ContentHasher,
        extractor: FeatureExtractor,
        descriptions: DescriptionService,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.hasher = hasher
        self.extractor = extractor
        self.descriptions = descriptions
        self.settings = settings or get_settings()
        self._http_client = http_client

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PipelineContext":
        """Build the production services (httpx + OpenCLIP) from settings."""
        settings = settings or get_settings()
        client = httpx.AsyncClient(timeout=settings.request_timeout)

        async def fetch(uri: str) -> bytes:
            return await fetch_image_bytes(uri, client)

        return cls(
            hasher=ContentHasher(batch_size=settings.hash_batch_size, fetch=fetch),
            extractor=FeatureExtractor(
                embedder_factory=clip_embedder_factory(settings.model_name, settings.pretrained, settings.device),
                store=EmbeddingStore(settings.embedding_cache_dir),
                fetch=fetch,
                max_concurrent=settings.max_concurrent_extractions,
            ),
            descriptions=DescriptionClient(
                service_url=settings.description_service_url,
                describe_endpoint=settings.describe_endpoint,
                embeddings_endpoint=settings.embeddings_endpoint,
                remote_similarity=settings.remote_semantic_similarity,
                client=client,
            ),
            settings=settings,
            http_client=client,
        )

    async def init(self, warm_model: bool = False) -> None:
        """Prepare services; optionally load the vision model up front."""
        if warm_model:
            await self.extractor.initialize()

    async def dispose(self) -> None:
        if self.extractor.store.store_path is not None:
            try:
                self.extractor.store.save()
            except OSError as e:
                logger.warning(f"Failed to save embedding cache: {e}")
        self.extractor.dispose()
        close = getattr(self.descriptions, "aclose", None)
        if close is not None:
            await close()
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "PipelineContext":
        await self.init()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.dispose()
