"""Pairwise similarity signals, group scoring and group-type classification."""

import math
from typing import Iterable, List, Optional

from ..models import GroupType, Photo, SimilarityAnalysis

EARTH_RADIUS_KM = 6371.0

# Spatial score for two photos without coordinates that share a project
SAME_PROJECT_PROXIMITY = 0.75

# A signal at or above this value counts as agreeing that photos are related
SIGNAL_AGREEMENT_CUTOFF = 0.8

OVERALL_WEIGHTS = {
    "visual_similarity": 0.3,
    "semantic_similarity": 0.3,
    "temporal_proximity": 0.15,
    "spatial_proximity": 0.15,
    "content_similarity": 0.1,
}


def temporal_proximity(photo1: Photo, photo2: Photo) -> float:
    """Score capture-time closeness, 1.0 for the same instant."""
    if photo1.captured_at is None or photo2.captured_at is None:
        return 0.0

    minutes = abs((photo1.captured_at - photo2.captured_at).total_seconds()) / 60.0

    if minutes == 0:
        return 1.0
    if minutes < 5:
        return 0.95
    if minutes < 30:
        return 0.85
    if minutes < 120:
        return 0.5
    if minutes < 1440:
        return 0.3
    return 0.1


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def same_project(photo1: Photo, photo2: Photo) -> bool:
    return photo1.project_id is not None and photo1.project_id == photo2.project_id


def spatial_proximity(photo1: Photo, photo2: Photo) -> float:
    """
    Score capture-location closeness.

    Uses GPS distance when both photos have coordinates, otherwise falls back
    to shared project membership.
    """
    c1, c2 = photo1.coordinates, photo2.coordinates
    if c1 is None or c2 is None:
        return SAME_PROJECT_PROXIMITY if same_project(photo1, photo2) else 0.0

    if c1 == c2:
        return 1.0

    distance = haversine_km(c1.latitude, c1.longitude, c2.latitude, c2.longitude)
    if distance < 0.01:
        return 0.98
    if distance < 0.05:
        return 0.92
    if distance < 0.1:
        return 0.6
    if distance < 0.5:
        return 0.4
    if distance < 1.0:
        return 0.2
    return 0.0


def content_similarity(photo1: Photo, photo2: Photo) -> float:
    """Same work area / subject, judged from project and creator."""
    project = 1.0 if same_project(photo1, photo2) else 0.0
    creator = 0.8 if photo1.creator_id is not None and photo1.creator_id == photo2.creator_id else 0.3
    return project * 0.6 + creator * 0.4


def overall_similarity(analysis: SimilarityAnalysis) -> float:
    return sum(getattr(analysis, name) * weight for name, weight in OVERALL_WEIGHTS.items())


def analyze_pair(
    photo1: Photo,
    photo2: Photo,
    semantic: float,
    visual: Optional[float] = None,
) -> SimilarityAnalysis:
    """
    Build the full similarity analysis for one photo pair.

    Args:
        photo1: First photo
        photo2: Second photo
        semantic: Description similarity (0-1)
        visual: Feature cosine similarity; the semantic score stands in when
            the pair was never feature-compared

    Returns:
        SimilarityAnalysis with derived overall score
    """
    analysis = SimilarityAnalysis(
        visual_similarity=semantic if visual is None else max(0.0, visual),
        content_similarity=content_similarity(photo1, photo2),
        temporal_proximity=temporal_proximity(photo1, photo2),
        spatial_proximity=spatial_proximity(photo1, photo2),
        semantic_similarity=semantic,
    )
    analysis.overall_similarity = min(1.0, overall_similarity(analysis))
    return analysis


def aggregate_analyses(analyses: Iterable[SimilarityAnalysis]) -> SimilarityAnalysis:
    """Mean of each signal across a group's edges."""
    items: List[SimilarityAnalysis] = list(analyses)
    if not items:
        return SimilarityAnalysis()

    def mean(name: str) -> float:
        return sum(getattr(a, name) for a in items) / len(items)

    result = SimilarityAnalysis(
        visual_similarity=mean("visual_similarity"),
        content_similarity=mean("content_similarity"),
        temporal_proximity=mean("temporal_proximity"),
        spatial_proximity=mean("spatial_proximity"),
        semantic_similarity=mean("semantic_similarity"),
    )
    result.overall_similarity = min(1.0, overall_similarity(result))
    return result


def agreeing_signals(analysis: SimilarityAnalysis) -> int:
    return sum(1 for value in analysis.signals() if value >= SIGNAL_AGREEMENT_CUTOFF)


def group_confidence(analysis: SimilarityAnalysis) -> float:
    """
    Confidence in a grouping.

    Half comes from the overall score, the rest from how many independent
    signals agree, so each extra agreeing signal raises confidence.
    """
    return min(1.0, 0.5 * analysis.overall_similarity + 0.1 * agreeing_signals(analysis))


def determine_group_type(analysis: SimilarityAnalysis) -> GroupType:
    """Classify a non-identical group from its characteristic similarity."""
    if analysis.temporal_proximity > 0.8 and analysis.spatial_proximity > 0.8:
        return GroupType.RETRY_SHOTS
    if analysis.spatial_proximity > 0.7 and analysis.temporal_proximity > 0.5:
        return GroupType.ANGLE_VARIATIONS
    if analysis.content_similarity > 0.8 and analysis.temporal_proximity > 0.3:
        return GroupType.INCREMENTAL_PROGRESS
    return GroupType.REDUNDANT_DOCUMENTATION
