"""Image fetching, decoding and hashing utilities."""

import asyncio
import hashlib
import io
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

import httpx
import imagehash
from PIL import Image, ExifTags


async def fetch_image_bytes(uri: str, client: Optional[httpx.AsyncClient] = None) -> bytes:
    """
    Read the raw bytes behind a content URI.

    Args:
        uri: http(s) URL, ``file://`` URI or local filesystem path
        client: Shared HTTP client; a short-lived one is created if None

    Returns:
        Raw image bytes

    Raises:
        httpx.HTTPError: Remote fetch failed or returned a non-2xx status
        OSError: Local file could not be read
    """
    parsed = urlparse(uri)
    if parsed.scheme in ("http", "https"):
        if client is None:
            async with httpx.AsyncClient(timeout=30.0) as own_client:
                response = await own_client.get(uri)
        else:
            response = await client.get(uri)
        response.raise_for_status()
        return response.content

    path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(uri)
    return await asyncio.to_thread(path.read_bytes)


def compute_sha256(data: bytes) -> str:
    """Content hash for exact duplicate detection."""
    sha = hashlib.sha256()
    view = memoryview(data)
    for start in range(0, len(view), 8192):
        sha.update(view[start:start + 8192])
    return sha.hexdigest()


def compute_perceptual_hash(image: Image.Image, hash_size: int = 8) -> str:
    """Compute difference hash (dHash) for near-duplicate detection."""
    return str(imagehash.dhash(image, hash_size=hash_size))


def hash_distance(hash1: str, hash2: str) -> int:
    """Hamming distance between two hex-encoded perceptual hashes."""
    return imagehash.hex_to_hash(hash1) - imagehash.hex_to_hash(hash2)


def extract_exif_data(image: Image.Image) -> dict:
    """Extract EXIF tags by name."""
    exif_data = {}
    try:
        exif = image.getexif()
        for tag_id, value in exif.items():
            tag = ExifTags.TAGS.get(tag_id, tag_id)
            exif_data[tag] = value
    except (AttributeError, KeyError, ValueError):
        pass
    return exif_data


def load_image(data: bytes, max_size: int = 512) -> Image.Image:
    """
    Decode image bytes, apply EXIF orientation and shrink for analysis.

    Args:
        data: Raw image bytes
        max_size: Maximum dimension of the returned image

    Returns:
        RGB PIL image no larger than ``max_size`` on either side
    """
    image = Image.open(io.BytesIO(data))
    orientation = extract_exif_data(image).get("Orientation", 1)

    if orientation == 3:
        image = image.rotate(180, expand=True)
    elif orientation == 6:
        image = image.rotate(270, expand=True)
    elif orientation == 8:
        image = image.rotate(90, expand=True)

    if image.mode != "RGB":
        image = image.convert("RGB")

    if max(image.size) > max_size:
        image.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)

    return image
