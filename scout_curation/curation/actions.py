"""Archive/restore actions derived from recommendations and applied via the photo service."""

import dataclasses
import logging
from typing import Dict, List, Sequence

from ..inference_service.client import PhotoMutator
from ..models import (
    ActionType,
    ArchiveState,
    CurationActionResult,
    CurationRecommendation,
    Photo,
    PhotoAction,
)

logger = logging.getLogger(__name__)

TARGET_STATE = {
    ActionType.ARCHIVE: ArchiveState.ARCHIVED,
    ActionType.RESTORE: ArchiveState.ACTIVE,
}


def create_actions_from_recommendation(
    recommendation: CurationRecommendation,
    photos_by_id: Dict[str, Photo],
) -> List[PhotoAction]:
    """
    Concrete state changes needed to carry out a recommendation.

    Photos already in their target state produce no action: kept photos are
    restored only when currently archived, and only active photos are archived.

    Args:
        recommendation: Keep/archive recommendation
        photos_by_id: Current photo state, keyed by id

    Returns:
        Actions in keep-then-archive order
    """
    group = recommendation.group
    metadata = {
        "group_id": group.id,
        "group_type": group.group_type.value,
        "confidence": recommendation.confidence,
    }
    actions = []

    for photo in recommendation.keep:
        current = photos_by_id.get(photo.id, photo)
        if current.is_archived:
            actions.append(PhotoAction(
                type=ActionType.RESTORE,
                photo_id=photo.id,
                reason=f"Scout AI recommended to keep - {recommendation.rationale}",
                metadata=dict(metadata),
            ))

    for photo in recommendation.archive:
        current = photos_by_id.get(photo.id, photo)
        if not current.is_archived:
            actions.append(PhotoAction(
                type=ActionType.ARCHIVE,
                photo_id=photo.id,
                reason="Scout AI archived - similar to kept photo in same group",
                metadata=dict(metadata),
            ))

    return actions


async def apply_curation_actions(
    actions: Sequence[PhotoAction],
    photos: Sequence[Photo],
    mutator: PhotoMutator,
) -> CurationActionResult:
    """
    Apply actions one by one; failures do not roll back earlier successes.

    Args:
        actions: Actions to apply, in order
        photos: Current photos (actions for unknown ids fail)
        mutator: Photo service collaborator

    Returns:
        CurationActionResult listing applied and failed actions
    """
    by_id = {photo.id: photo for photo in photos}
    applied: List[PhotoAction] = []
    failed: List[PhotoAction] = []
    updated: List[Photo] = []

    for action in actions:
        photo = by_id.get(action.photo_id)
        if photo is None:
            logger.warning(f"Cannot {action.type.value} unknown photo {action.photo_id}")
            failed.append(action)
            continue

        target = TARGET_STATE[action.type]
        try:
            ok = await mutator.set_archive_state(action.photo_id, target)
        except Exception as e:
            logger.error(f"Failed to apply {action.type.value} for photo {action.photo_id}: {e}")
            ok = False

        if not ok:
            failed.append(action)
            continue

        updated_photo = dataclasses.replace(photo, archive_state=target)
        by_id[photo.id] = updated_photo
        updated.append(updated_photo)
        applied.append(action)

    result = CurationActionResult(
        success=not failed,
        applied_actions=applied,
        failed_actions=failed,
        updated_photos=updated,
    )
    if failed:
        result.error = f"Some actions failed: {len(failed)} of {len(actions)} actions failed to apply"
    return result
