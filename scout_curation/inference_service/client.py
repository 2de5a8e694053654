"""Clients for the remote description service and the photo mutation service.

The description service turns a photo URL into a one-sentence description
and, optionally, scores two descriptions against each other with text
embeddings. Descriptions are the expensive call; comparing them is done
locally unless remote comparison is switched on.
"""

import logging
import math
import re
from collections import Counter
from typing import Optional, Protocol

import httpx

from ..errors import CollaboratorError
from ..models import ArchiveState

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")

# Words too common in photo descriptions to say anything about similarity
STOPWORDS = frozenset(
    "a an the and or of in on at to with for from by is are was were this that "
    "these those it its into over under near photo image picture shows showing".split()
)


class DescriptionService(Protocol):
    async def describe(self, photo_url: str) -> str: ...

    async def semantic_similarity(self, text_a: str, text_b: str) -> float: ...


class PhotoMutator(Protocol):
    async def set_archive_state(self, photo_id: str, state: ArchiveState) -> bool: ...


def _term_vector(text: str) -> Counter:
    return Counter(t for t in _TOKEN_RE.findall(text.lower()) if t not in STOPWORDS and len(t) > 2)


def description_similarity(text_a: str, text_b: str) -> float:
    """
    Cosine similarity of two descriptions' term-frequency vectors.

    Args:
        text_a: First description
        text_b: Second description

    Returns:
        Score in [0, 1]; 0 when either description has no content words
    """
    va, vb = _term_vector(text_a), _term_vector(text_b)
    if not va or not vb:
        return 0.0

    dot = sum(count * vb[term] for term, count in va.items())
    norm = math.sqrt(sum(c * c for c in va.values())) * math.sqrt(sum(c * c for c in vb.values()))
    return max(0.0, min(1.0, dot / norm))


class DescriptionClient:
    """httpx client for the description / embedding endpoints."""

    def __init__(
        self,
        service_url: str = "http://127.0.0.1:3000",
        describe_endpoint: str = "/api/suggest-ai-tags",
        embeddings_endpoint: str = "/api/embeddings",
        remote_similarity: bool = False,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize client.

        Args:
            service_url: Base URL of the description service
            describe_endpoint: Path returning a description for ``photoUrl``
            embeddings_endpoint: Path scoring two descriptions
            remote_similarity: Score descriptions remotely instead of locally
            timeout: Request timeout in seconds
            client: Shared HTTP client (owned by the caller when given)
        """
        self.service_url = service_url.rstrip("/")
        self.describe_endpoint = describe_endpoint
        self.embeddings_endpoint = embeddings_endpoint
        self.remote_similarity = remote_similarity
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

        logger.info(f"DescriptionClient initialized: url={self.service_url}, remote_similarity={remote_similarity}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def describe(self, photo_url: str) -> str:
        """
        Natural-language description of a photo.

        Raises:
            CollaboratorError: Request failed or the response had no description
        """
        try:
            response = await self.client.post(
                f"{self.service_url}{self.describe_endpoint}",
                json={"photoUrl": photo_url},
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise CollaboratorError(f"Failed to describe {photo_url}: {e}") from e

        description = payload.get("suggestedDescription") or payload.get("description")
        if not description:
            raise CollaboratorError(f"No description returned for {photo_url}")
        return str(description)

    async def semantic_similarity(self, text_a: str, text_b: str) -> float:
        """Similarity of two descriptions in [0, 1]."""
        if not self.remote_similarity:
            return description_similarity(text_a, text_b)

        try:
            response = await self.client.post(
                f"{self.service_url}{self.embeddings_endpoint}",
                json={"descriptions": [text_a, text_b]},
            )
            response.raise_for_status()
            similarity = float(response.json()["similarity"])
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            raise CollaboratorError(f"Failed to compare descriptions: {e}") from e

        return max(0.0, min(1.0, similarity))


class HttpPhotoMutator:
    """Sets photo archive state through the photo service."""

    def __init__(
        self,
        service_url: str = "http://127.0.0.1:3000/api",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.service_url = service_url.rstrip("/")
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def set_archive_state(self, photo_id: str, state: ArchiveState) -> bool:
        try:
            response = await self.client.patch(
                f"{self.service_url}/photos/{photo_id}",
                json={"archive_state": ArchiveState(state).value},
            )
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Failed to set {photo_id} to {ArchiveState(state).value}: {e}")
            return False
