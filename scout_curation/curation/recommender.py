"""Turns similarity groups into keep/archive recommendations."""

import logging
from typing import Dict, List, Sequence

from ..models import (
    ConfidenceBucket,
    CurationRecommendation,
    GroupType,
    Photo,
    PhotoSimilarityGroup,
)

logger = logging.getLogger(__name__)

# Minutes a reviewer spends per photo
REVIEW_MINUTES_PER_PHOTO = 0.5

MAX_RECOMMENDATION_CONFIDENCE = 0.95

RATIONALE_TEMPLATES: Dict[GroupType, str] = {
    GroupType.EXACT_DUPLICATES: "identical copies of the same image",
    GroupType.RETRY_SHOTS: "multiple attempts at the same shot",
    GroupType.ANGLE_VARIATIONS: "different angles of the same subject",
    GroupType.INCREMENTAL_PROGRESS: "incremental progress documentation",
    GroupType.REDUNDANT_DOCUMENTATION: "similar documentation content",
}

_missing = set(GroupType) - set(RATIONALE_TEMPLATES)
if _missing:
    raise RuntimeError(f"No rationale template for group types: {sorted(t.value for t in _missing)}")


def calculate_time_savings(original_count: int, keep_count: int) -> float:
    """Minutes of review time saved by archiving all but ``keep_count`` photos."""
    if original_count == 0 or keep_count >= original_count:
        return 0.0
    return round((original_count - keep_count) * REVIEW_MINUTES_PER_PHOTO, 1)


def _description_for(photo: Photo, group: PhotoSimilarityGroup) -> str:
    return group.descriptions.get(photo.id) or photo.description or ""


def select_keeper(group: PhotoSimilarityGroup) -> Photo:
    """
    The one photo to keep from a group.

    Prefers the richest description, then the most tags, then the earliest
    capture; photo id breaks any remaining tie so the choice is stable.
    """
    return min(
        group.photos,
        key=lambda p: (-len(_description_for(p, group)), -len(p.tags), p.captured_at, p.id),
    )


def generate_rationale(group: PhotoSimilarityGroup, keep: Sequence[Photo]) -> str:
    description = RATIONALE_TEMPLATES[group.group_type]
    count = len(group.photos)
    if len(keep) == 1:
        return (
            f"I found {count} photos showing {description}. This photo captures everything "
            f"you need with the best quality and most complete documentation."
        )
    return (
        f"I found {count} photos showing {description}. These {len(keep)} photos provide the "
        f"most comprehensive documentation while eliminating redundancy."
    )


def recommend(group: PhotoSimilarityGroup) -> CurationRecommendation:
    """
    Keep/archive recommendation for one similarity group.

    Args:
        group: Similarity group (at least 2 photos)

    Returns:
        CurationRecommendation keeping exactly one photo and archiving the rest
    """
    keeper = select_keeper(group)
    keep = [keeper]
    archive = [photo for photo in group.photos if photo.id != keeper.id]
    logger.debug(f"Group {group.id}: keep {keeper.id}, archive {len(archive)}")

    confidence = min(
        MAX_RECOMMENDATION_CONFIDENCE,
        group.confidence * 0.9 + group.similarity.overall_similarity * 0.1,
    )

    return CurationRecommendation(
        group=group,
        keep=keep,
        archive=archive,
        rationale=generate_rationale(group, keep),
        estimated_time_saved=calculate_time_savings(len(group.photos), len(keep)),
        confidence=confidence,
    )


def recommend_all(groups: Sequence[PhotoSimilarityGroup]) -> List[CurationRecommendation]:
    return [recommend(group) for group in groups]


def confidence_bucket(recommendations: Sequence[CurationRecommendation]) -> ConfidenceBucket:
    """Bucket the mean recommendation confidence into low / medium / high."""
    if not recommendations:
        return ConfidenceBucket.LOW
    mean = sum(r.confidence for r in recommendations) / len(recommendations)
    if mean > 0.7:
        return ConfidenceBucket.HIGH
    if mean >= 0.5:
        return ConfidenceBucket.MEDIUM
    return ConfidenceBucket.LOW


_SINGLE_GROUP_MESSAGES = {
    GroupType.EXACT_DUPLICATES: (
        "I found {total} identical copies of the same photo. Want me to keep just {keep} and archive the rest?"
    ),
    GroupType.RETRY_SHOTS: (
        "I noticed {total} photos that look like retry shots of the same thing. "
        "Would you like me to recommend the best {keep} that capture everything you need?"
    ),
    GroupType.ANGLE_VARIATIONS: (
        "I found {total} photos showing the same work from different angles. "
        "I can help you pick the {keep} most useful shots - want to see my suggestions?"
    ),
    GroupType.INCREMENTAL_PROGRESS: (
        "I see {total} progress photos that tell a similar story. "
        "Would you like me to recommend the {keep} key shots that best document the progression?"
    ),
    GroupType.REDUNDANT_DOCUMENTATION: (
        "I've noticed {total} photos that appear very similar. "
        "I can help you streamline to the best {keep} photos - shall I show you?"
    ),
}


def generate_suggestion_message(recommendations: Sequence[CurationRecommendation]) -> str:
    """Conversational summary shown with a suggestion."""
    if not recommendations:
        return "I've analyzed your photos and everything looks well organized!"

    total = sum(len(r.group.photos) for r in recommendations)
    keep = sum(len(r.keep) for r in recommendations)
    savings = sum(r.estimated_time_saved for r in recommendations)

    if len(recommendations) == 1:
        group_type = recommendations[0].group.group_type
        message = _SINGLE_GROUP_MESSAGES[group_type].format(total=total, keep=keep)
    else:
        message = (
            f"I found {len(recommendations)} groups of similar photos ({total} total). I can help you "
            f"streamline these to {keep} photos that maintain all the important documentation."
        )

    if savings >= 1:
        minutes = round(savings)
        message += f" This could save you about {minutes} minute{'s' if savings > 1 else ''} during photo reviews."

    return message
