"""Tests for content hashing and exact-duplicate grouping."""

import pytest
from PIL import Image

from conftest import BLUE, RED, FakeFetcher, solid_png
from scout_curation.models import GroupType
from scout_curation.scanner.hashing import (
    ContentHasher,
    build_exact_duplicate_groups,
    find_exact_duplicates,
    find_perceptual_pairs,
)
from scout_curation.scanner.image_utils import (
    compute_perceptual_hash,
    compute_sha256,
    fetch_image_bytes,
    hash_distance,
    load_image,
)


def test_sha256_is_content_addressed():
    data = solid_png(RED)
    assert compute_sha256(data) == compute_sha256(bytes(data))
    assert compute_sha256(data) != compute_sha256(solid_png(BLUE))


async def test_fetch_image_bytes_reads_local_paths(tmp_path):
    path = tmp_path / "photo.png"
    path.write_bytes(solid_png(RED))

    assert await fetch_image_bytes(str(path)) == path.read_bytes()
    assert await fetch_image_bytes(path.as_uri()) == path.read_bytes()


async def test_batch_hash_skips_unreachable_urls():
    fetch = FakeFetcher({"mem://a": solid_png(RED), "mem://b": solid_png(RED)})
    hasher = ContentHasher(batch_size=3, fetch=fetch)

    hashes = await hasher.batch_hash(["mem://a", "mem://b", "mem://missing", "mem://a"])

    assert set(hashes) == {"mem://a", "mem://b"}
    assert hashes["mem://a"] == hashes["mem://b"]
    # Repeated URLs are fetched once
    assert fetch.calls.count("mem://a") == 1


async def test_identical_bytes_form_one_exact_duplicate_group(make_photo):
    a, b, c = make_photo("A"), make_photo("B"), make_photo("C")
    fetch = FakeFetcher({
        "mem://A.png": solid_png(RED),
        "mem://B.png": solid_png(RED),
        "mem://C.png": solid_png(BLUE),
    })
    hashes = await ContentHasher(fetch=fetch).batch_hash(p.best_uri() for p in (a, b, c))

    groups = build_exact_duplicate_groups([a, b, c], hashes)

    assert len(groups) == 1
    group = groups[0]
    assert group.photo_ids == ["A", "B"]
    assert group.group_type == GroupType.EXACT_DUPLICATES
    assert group.confidence == 1.0
    assert group.similarity.overall_similarity == 1.0


def test_photo_without_hash_is_not_a_duplicate(make_photo):
    a, b = make_photo("A"), make_photo("B")
    assert find_exact_duplicates([a, b], {"mem://A.png": "abc"}) == []


def test_perceptual_pairs_within_distance():
    red = compute_perceptual_hash(Image.new("RGB", (32, 32), RED))
    # Dark on the left, light on the right
    gradient = Image.linear_gradient("L").rotate(90).convert("RGB")
    other = compute_perceptual_hash(gradient)

    assert hash_distance(red, red) == 0
    assert hash_distance(red, other) > 5
    pairs = find_perceptual_pairs({"a": red, "b": red, "c": other}, max_distance=5)
    assert pairs == [("a", "b")]


def test_load_image_shrinks_and_converts():
    image = load_image(solid_png(RED, size=1024), max_size=256)
    assert image.mode == "RGB"
    assert max(image.size) <= 256


@pytest.mark.parametrize("size", [8, 16])
def test_perceptual_hash_length(size):
    digest = compute_perceptual_hash(Image.new("RGB", (64, 64), BLUE), hash_size=size)
    assert len(digest) == size * size // 4
