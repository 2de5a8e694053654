"""Tests for keep/archive recommendations and suggestion messages."""

import pytest

from scout_curation.curation.recommender import (
    RATIONALE_TEMPLATES,
    calculate_time_savings,
    confidence_bucket,
    generate_suggestion_message,
    recommend,
    recommend_all,
)
from scout_curation.models import ConfidenceBucket, GroupType, PhotoSimilarityGroup, SimilarityAnalysis


def make_group(photos, group_type=GroupType.RETRY_SHOTS, confidence=0.9, overall=0.8, descriptions=None):
    return PhotoSimilarityGroup(
        id="group-1",
        photos=photos,
        similarity=SimilarityAnalysis(overall_similarity=overall),
        group_type=group_type,
        confidence=confidence,
        descriptions=descriptions or {},
    )


def test_every_group_type_has_a_rationale():
    assert set(RATIONALE_TEMPLATES) == set(GroupType)


def test_keeps_exactly_one_and_partitions_the_group(make_photo):
    photos = [make_photo("a"), make_photo("b", minutes=1), make_photo("c", minutes=2)]
    rec = recommend(make_group(photos))

    assert len(rec.keep) == 1
    assert len(rec.keep) + len(rec.archive) == len(photos)
    assert {p.id for p in rec.keep} | {p.id for p in rec.archive} == {"a", "b", "c"}
    assert not {p.id for p in rec.keep} & {p.id for p in rec.archive}


def test_keeps_richest_description(make_photo):
    photos = [make_photo("a"), make_photo("b", minutes=1)]
    group = make_group(photos, descriptions={"a": "Wall", "b": "Wall with outlet and conduit run"})
    assert recommend(group).keep[0].id == "b"


def test_earliest_capture_breaks_ties(make_photo):
    photos = [make_photo("late", minutes=5), make_photo("early", minutes=0)]
    assert recommend(make_group(photos)).keep[0].id == "early"


def test_recommendation_is_deterministic(make_photo):
    photos = [make_photo("a"), make_photo("b")]
    first, second = recommend(make_group(photos)), recommend(make_group(photos))
    assert first.keep[0].id == second.keep[0].id
    assert first.rationale == second.rationale


def test_exact_duplicates_rationale(make_photo):
    rec = recommend(make_group([make_photo("a"), make_photo("b")], group_type=GroupType.EXACT_DUPLICATES))
    assert "identical copies" in rec.rationale


def test_time_savings_and_confidence(make_photo):
    photos = [make_photo(str(i), minutes=i) for i in range(4)]
    rec = recommend(make_group(photos, confidence=0.9, overall=0.8))

    assert rec.estimated_time_saved == 1.5
    assert rec.confidence == pytest.approx(0.89)
    assert recommend(make_group(photos, confidence=1.0, overall=1.0)).confidence == 0.95


@pytest.mark.parametrize("original, keep, expected", [(4, 1, 1.5), (2, 2, 0.0), (0, 0, 0.0), (3, 1, 1.0)])
def test_calculate_time_savings(original, keep, expected):
    assert calculate_time_savings(original, keep) == expected


def test_confidence_bucket(make_photo):
    photos = [make_photo("a"), make_photo("b")]
    assert confidence_bucket(recommend_all([make_group(photos, confidence=0.95)])) == ConfidenceBucket.HIGH
    assert confidence_bucket(recommend_all([make_group(photos, confidence=0.6, overall=0.6)])) == ConfidenceBucket.MEDIUM
    assert confidence_bucket(recommend_all([make_group(photos, confidence=0.2, overall=0.2)])) == ConfidenceBucket.LOW
    assert confidence_bucket([]) == ConfidenceBucket.LOW


def test_suggestion_messages(make_photo):
    assert "well organized" in generate_suggestion_message([])

    photos = [make_photo(str(i), minutes=i) for i in range(5)]
    single = generate_suggestion_message([recommend(make_group(photos))])
    assert single.startswith("I noticed 5 photos that look like retry shots")
    assert "save you about 2 minutes" in single

    other = [make_photo(f"x{i}", minutes=i) for i in range(2)]
    multi = generate_suggestion_message(recommend_all([make_group(photos), make_group(other)]))
    assert multi.startswith("I found 2 groups of similar photos (7 total)")
