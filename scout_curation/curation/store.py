"""Suggestion store: current suggestions, learned preferences and the undo stack."""

import dataclasses
import logging
import uuid
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Sequence

from ..config import Settings
from ..errors import PreferencesNotLoadedError, SuggestionNotFoundError, SuggestionStateError
from ..inference_service.client import PhotoMutator
from ..models import (
    ActionType,
    ArchiveState,
    CurationActionResult,
    GroupType,
    Photo,
    PhotoAction,
    PhotoSimilarityGroup,
    ScoutAiSuggestion,
    SuggestionStatus,
    UndoAction,
    UndoEntry,
)
from ..pipeline.orchestrator import AnalysisOptions, EnabledLayers, SimilarityOrchestrator
from ..scanner.selection import FilterOptions, filter_photos_for_analysis
from .actions import apply_curation_actions, create_actions_from_recommendation
from .preferences import InMemoryPreferenceStore, PreferenceStore, UserCurationPreferences
from .recommender import confidence_bucket, generate_suggestion_message, recommend_all

logger = logging.getLogger(__name__)


def _new_suggestion_id() -> str:
    return f"suggestion-{uuid.uuid4().hex[:12]}"


class SuggestionStore:
    """
    State container between the pipeline and the surrounding application.

    All mutations of suggestions, preferences and the undo stack go through
    this object.
    """

    def __init__(
        self,
        orchestrator: SimilarityOrchestrator,
        mutator: PhotoMutator,
        preference_store: Optional[PreferenceStore] = None,
        settings: Optional[Settings] = None,
        layers: Optional[EnabledLayers] = None,
    ):
        self.orchestrator = orchestrator
        self.mutator = mutator
        self.preference_store = preference_store or InMemoryPreferenceStore()
        self.settings = settings or orchestrator.settings
        self.layers = layers or EnabledLayers()

        self.suggestions: List[ScoutAiSuggestion] = []
        self.preferences: Optional[UserCurationPreferences] = None
        self.undo_stack: Deque[UndoAction] = deque(maxlen=self.settings.undo_depth)
        self.error: Optional[str] = None

    @property
    def is_analyzing(self) -> bool:
        return self.orchestrator.is_analyzing

    def load_preferences(self, user_id: str) -> UserCurationPreferences:
        self.preferences = self.preference_store.load(user_id)
        logger.info(f"Loaded curation preferences for {user_id}")
        return self.preferences

    def _require_preferences(self) -> UserCurationPreferences:
        if self.preferences is None:
            raise PreferencesNotLoadedError("User preferences not loaded")
        return self.preferences

    def get_suggestions(self) -> List[ScoutAiSuggestion]:
        return list(self.suggestions)

    def get_suggestion(self, suggestion_id: str) -> ScoutAiSuggestion:
        for suggestion in self.suggestions:
            if suggestion.id == suggestion_id:
                return suggestion
        raise SuggestionNotFoundError(suggestion_id)

    def _pending(self, suggestion_id: str) -> ScoutAiSuggestion:
        suggestion = self.get_suggestion(suggestion_id)
        if suggestion.status != SuggestionStatus.PENDING:
            raise SuggestionStateError(f"Suggestion {suggestion_id} is already {suggestion.status.value}")
        return suggestion

    async def analyze(
        self,
        photos: List[Photo],
        clear_existing: bool = True,
        filter_options: Optional[FilterOptions] = None,
        options: Optional[AnalysisOptions] = None,
    ) -> List[PhotoSimilarityGroup]:
        """
        Analyze photos and publish one suggestion for the groups found.

        Args:
            photos: Photos available to the user
            clear_existing: Replace current suggestions instead of appending
            filter_options: Which of ``photos`` to analyze; all of them when None
            options: Pipeline options; the similarity threshold defaults to the
                user's learned quality threshold

        Returns:
            Groups surfaced to the user (empty on cancellation or failure)

        Raises:
            PreferencesNotLoadedError: ``load_preferences`` was never called
            FilterValidationError: ``filter_options`` are incomplete
        """
        prefs = self._require_preferences()
        selected = filter_photos_for_analysis(photos, filter_options) if filter_options else list(photos)

        if options is None:
            options = AnalysisOptions(layers=self.layers)
        if options.similarity_threshold is None:
            options = dataclasses.replace(options, similarity_threshold=prefs.effective_quality_threshold())

        self.error = None
        if clear_existing:
            self.suggestions = []

        logger.info(f"Analyzing {len(selected)} of {len(photos)} photos for similarity")
        result = await self.orchestrator.analyze(selected, options)

        if result.error is not None:
            self.error = result.error
            return []

        groups = [group for group in result.groups if prefs.wants(group.group_type)]
        if len(groups) < len(result.groups):
            logger.info(f"Dropped {len(result.groups) - len(groups)} groups of types the user opted out of")

        if groups:
            suggestion = self.build_suggestion(groups)
            self.suggestions.append(suggestion)
            logger.info(f"Generated suggestion: {suggestion.message}")

        return groups

    def cancel_analysis(self) -> None:
        self.orchestrator.cancel()

    def build_suggestion(self, groups: Sequence[PhotoSimilarityGroup]) -> ScoutAiSuggestion:
        recommendations = recommend_all(groups)
        return ScoutAiSuggestion(
            id=_new_suggestion_id(),
            message=generate_suggestion_message(recommendations),
            recommendations=recommendations,
            confidence=confidence_bucket(recommendations),
        )

    @staticmethod
    def _group_types(suggestion: ScoutAiSuggestion) -> List[GroupType]:
        return [rec.group.group_type for rec in suggestion.recommendations]

    async def accept(self, suggestion_id: str, photos: Sequence[Photo]) -> CurationActionResult:
        """
        Apply a suggestion's archive/restore actions.

        Successful actions stay applied even if others fail; a partially
        applied suggestion stays pending and its applied actions can still be
        undone.

        Args:
            suggestion_id: Suggestion to accept
            photos: Current state of the affected photos

        Returns:
            CurationActionResult with applied and failed actions
        """
        prefs = self._require_preferences()
        suggestion = self._pending(suggestion_id)
        photos_by_id = {photo.id: photo for photo in photos}

        actions: List[PhotoAction] = []
        for recommendation in suggestion.recommendations:
            actions.extend(create_actions_from_recommendation(recommendation, photos_by_id))

        logger.info(f"Applying {len(actions)} actions for suggestion {suggestion_id}")
        result = await apply_curation_actions(actions, photos, self.mutator)

        if result.applied_actions:
            self.undo_stack.append(UndoAction(
                id=f"undo-{uuid.uuid4().hex[:12]}",
                suggestion_id=suggestion_id,
                description=f"Applied Scout AI suggestion: {suggestion.message[:50]}...",
                actions=[
                    UndoEntry(
                        type=action.type,
                        photo_id=action.photo_id,
                        previous_state=(
                            ArchiveState.ACTIVE if action.type == ActionType.ARCHIVE else ArchiveState.ARCHIVED
                        ),
                    )
                    for action in result.applied_actions
                ],
            ))

        if result.success:
            suggestion.status = SuggestionStatus.ACCEPTED
            prefs.record_decision(suggestion_id, self._group_types(suggestion), accepted=True)
            self.preference_store.save(prefs)
            logger.info(f"Accepted suggestion {suggestion_id} ({len(result.applied_actions)} actions)")
        else:
            self.error = result.error
            logger.warning(f"Some actions failed when accepting {suggestion_id}: {result.error}")

        return result

    def reject(self, suggestion_id: str) -> ScoutAiSuggestion:
        prefs = self._require_preferences()
        suggestion = self._pending(suggestion_id)
        suggestion.status = SuggestionStatus.REJECTED
        prefs.record_decision(suggestion_id, self._group_types(suggestion), accepted=False)
        self.preference_store.save(prefs)
        logger.info(f"Rejected suggestion {suggestion_id}")
        return suggestion

    def dismiss(self, suggestion_id: str) -> ScoutAiSuggestion:
        """Close a suggestion without teaching the preferences anything."""
        suggestion = self._pending(suggestion_id)
        suggestion.status = SuggestionStatus.DISMISSED
        logger.info(f"Dismissed suggestion {suggestion_id}")
        return suggestion

    async def undo(self, photos: Sequence[Photo]) -> Optional[CurationActionResult]:
        """
        Revert the most recent accepted suggestion.

        Every affected photo is set back to its state from before the accept,
        in reverse order. If any revert fails the entry stays on the stack so
        the undo can be retried.

        Returns:
            CurationActionResult of the reverts, or None when there is nothing to undo
        """
        if not self.undo_stack:
            return None

        entry = self.undo_stack[-1]
        logger.info(f"Undoing: {entry.description}")

        inverse = [
            PhotoAction(
                type=ActionType.RESTORE if item.previous_state == ArchiveState.ACTIVE else ActionType.ARCHIVE,
                photo_id=item.photo_id,
                reason="Undo Scout AI suggestion",
            )
            for item in reversed(entry.actions)
        ]
        result = await apply_curation_actions(inverse, photos, self.mutator)
        if not result.success:
            self.error = result.error
            logger.warning(f"Undo of {entry.suggestion_id} incomplete: {result.error}")
            return result

        self.undo_stack.pop()
        try:
            suggestion = self.get_suggestion(entry.suggestion_id)
        except SuggestionNotFoundError:
            logger.info(f"Suggestion {entry.suggestion_id} no longer listed; photos restored only")
            return result

        suggestion.status = SuggestionStatus.PENDING
        if self.preferences is not None:
            self.preferences.forget_acceptance(entry.suggestion_id, self._group_types(suggestion))
            self.preference_store.save(self.preferences)
        return result

    def update_preferences(self, changes: Dict[str, Any]) -> UserCurationPreferences:
        prefs = self._require_preferences()
        prefs.update(changes)
        self.preference_store.save(prefs)
        logger.info("Updated user preferences")
        return prefs

    def clear_suggestions(self) -> None:
        self.suggestions = []
        logger.info("Cleared all suggestions")

    def clear_undo_stack(self) -> None:
        self.undo_stack.clear()
        logger.info("Cleared undo stack")
