"""Hashing layer: content hashes for exact duplicates, dHash for near-duplicates."""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import httpx

from ..models import GroupType, Photo, PhotoSimilarityGroup, SimilarityAnalysis
from ..grouping import new_group_id
from .image_utils import (
    compute_perceptual_hash,
    compute_sha256,
    fetch_image_bytes,
    hash_distance,
    load_image,
)

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[bytes]]


class ContentHasher:
    """Fetches image bytes and hashes them in small concurrent batches."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        batch_size: int = 3,
        fetch: Optional[Fetcher] = None,
    ):
        """
        Initialize hasher.

        Args:
            client: Shared HTTP client used for http(s) URIs
            batch_size: Number of images fetched concurrently
            fetch: Override for reading bytes behind a URI
        """
        self.batch_size = max(1, batch_size)
        self._fetch = fetch or (lambda uri: fetch_image_bytes(uri, client))

    async def hash_url(self, url: str) -> Optional[str]:
        """SHA-256 of the bytes behind ``url``, or None if unreachable."""
        try:
            data = await self._fetch(url)
        except Exception as e:
            logger.warning(f"Failed to fetch {url} for hashing: {e}")
            return None
        return compute_sha256(data)

    async def batch_hash(self, urls: Iterable[str]) -> Dict[str, str]:
        """
        Hash many URLs, skipping the ones that cannot be fetched.

        Args:
            urls: Content URLs (duplicates are fetched once)

        Returns:
            Mapping of URL to hex digest for every URL that succeeded
        """
        unique = list(dict.fromkeys(urls))
        hashes: Dict[str, str] = {}

        for i in range(0, len(unique), self.batch_size):
            batch = unique[i:i + self.batch_size]
            results = await asyncio.gather(*(self.hash_url(url) for url in batch))
            for url, digest in zip(batch, results):
                if digest:
                    hashes[url] = digest

        logger.info(f"Generated {len(hashes)}/{len(unique)} content hashes")
        return hashes

    async def perceptual_hash_url(self, url: str, hash_size: int = 8) -> Optional[str]:
        try:
            data = await self._fetch(url)
            image = await asyncio.to_thread(load_image, data)
        except Exception as e:
            logger.warning(f"Failed to compute perceptual hash for {url}: {e}")
            return None
        return compute_perceptual_hash(image, hash_size=hash_size)

    async def batch_perceptual_hash(self, photos: List[Photo]) -> Dict[str, str]:
        """Perceptual hashes keyed by photo id."""
        hashes: Dict[str, str] = {}
        targets = [(photo.id, photo.best_uri()) for photo in photos if photo.best_uri()]

        for i in range(0, len(targets), self.batch_size):
            batch = targets[i:i + self.batch_size]
            results = await asyncio.gather(*(self.perceptual_hash_url(url) for _, url in batch))
            for (photo_id, _), digest in zip(batch, results):
                if digest:
                    hashes[photo_id] = digest

        return hashes


def find_exact_duplicates(photos: List[Photo], url_hashes: Dict[str, str]) -> List[List[Photo]]:
    """
    Group photos whose content hashes match.

    Args:
        photos: Photos to consider
        url_hashes: Mapping of content URL to hash (missing URL = no hash)

    Returns:
        Groups of at least two photos sharing a hash, in input order
    """
    hash_to_photos: Dict[str, List[Photo]] = {}

    for photo in photos:
        url = photo.best_uri()
        digest = url_hashes.get(url) if url else None
        if digest:
            hash_to_photos.setdefault(digest, []).append(photo)

    duplicates = [group for group in hash_to_photos.values() if len(group) > 1]

    logger.info(f"Found {len(duplicates)} exact duplicate groups")
    return duplicates


def build_exact_duplicate_groups(photos: List[Photo], url_hashes: Dict[str, str]) -> List[PhotoSimilarityGroup]:
    """Turn matching hashes into ``exact_duplicates`` groups with full confidence."""
    return [
        PhotoSimilarityGroup(
            id=new_group_id("exact"),
            photos=members,
            similarity=SimilarityAnalysis.identical(),
            group_type=GroupType.EXACT_DUPLICATES,
            confidence=1.0,
        )
        for members in find_exact_duplicates(photos, url_hashes)
    ]


def find_perceptual_pairs(
    photo_hashes: Dict[str, str],
    max_distance: int = 5,
) -> List[Tuple[str, str]]:
    """
    Find photo pairs whose perceptual hashes are within ``max_distance`` bits.

    Args:
        photo_hashes: Mapping of photo id to hex dHash
        max_distance: Maximum Hamming distance for near-duplicates

    Returns:
        List of (photo_id, photo_id) pairs
    """
    items = list(photo_hashes.items())
    pairs = []

    for i, (id1, hash1) in enumerate(items):
        for id2, hash2 in items[i + 1:]:
            if hash_distance(hash1, hash2) <= max_distance:
                pairs.append((id1, id2))

    logger.info(f"Found {len(pairs)} perceptual near-duplicate pairs")
    return pairs
