"""Metadata filter: cheap pre-AI candidate selection from time, GPS and project."""

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import List, Set, Tuple

from ..grouping.scoring import same_project, spatial_proximity
from ..models import Photo

logger = logging.getLogger(__name__)


class FilterMode(str, Enum):
    STRICT = "strict"
    PERMISSIVE = "permissive"


@dataclass(frozen=True)
class ProximityRule:
    max_time_gap: timedelta
    min_spatial_score: float  # applied only when both photos have coordinates


RULES = {
    FilterMode.STRICT: ProximityRule(timedelta(minutes=5), 0.92),  # within ~50 m
    FilterMode.PERMISSIVE: ProximityRule(timedelta(minutes=30), 0.6),  # within ~100 m
}


def _spatially_close(photo1: Photo, photo2: Photo, rule: ProximityRule) -> bool:
    if photo1.coordinates is not None and photo2.coordinates is not None:
        return spatial_proximity(photo1, photo2) >= rule.min_spatial_score
    return same_project(photo1, photo2)


def find_candidate_pairs(photos: List[Photo], mode: FilterMode = FilterMode.STRICT) -> List[Tuple[str, str]]:
    """
    Find photo pairs that were captured close together in time and space.

    Photos are swept in capture order, so only pairs inside the time window
    are ever compared.

    Args:
        photos: Photos to consider
        mode: ``strict`` or ``permissive`` proximity rules

    Returns:
        List of (photo_id, photo_id) pairs
    """
    rule = RULES[FilterMode(mode)]
    ordered = sorted(
        (p for p in photos if p.captured_at is not None),
        key=lambda p: p.captured_at,
    )

    pairs = []
    for i, photo in enumerate(ordered):
        for other in ordered[i + 1:]:
            if other.captured_at - photo.captured_at > rule.max_time_gap:
                break
            if other.id != photo.id and _spatially_close(photo, other, rule):
                pairs.append((photo.id, other.id))

    return pairs


def find_likely_duplicate_candidates(photos: List[Photo], mode: FilterMode = FilterMode.STRICT) -> List[Photo]:
    """
    Subset of photos that plausibly duplicate or retry another photo.

    Args:
        photos: Photos to consider
        mode: ``strict`` or ``permissive`` proximity rules

    Returns:
        Candidate photos, in input order
    """
    candidate_ids: Set[str] = set()
    for a, b in find_candidate_pairs(photos, mode):
        candidate_ids.update((a, b))

    candidates = [p for p in photos if p.id in candidate_ids]
    logger.info(
        f"Metadata filter ({FilterMode(mode).value}): {len(candidates)} candidates from {len(photos)} photos"
    )
    return candidates
