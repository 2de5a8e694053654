"""Per-user curation preferences, learned from accept/reject decisions."""

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

from ..models import GroupType

logger = logging.getLogger(__name__)

DEFAULT_QUALITY_THRESHOLD = 0.6
MIN_QUALITY_THRESHOLD = 0.4
MAX_QUALITY_THRESHOLD = 0.95

# Decisions needed before the threshold starts to adapt
MIN_DECISIONS_FOR_LEARNING = 3
LEARNING_RATE = 0.2

DETAIL_LEVELS = ("brief", "detailed", "technical")


def _default_group_types() -> Dict[str, bool]:
    return {group_type.value: True for group_type in GroupType}


@dataclass
class UserCurationPreferences:
    user_id: str
    preferred_group_types: Dict[str, bool] = field(default_factory=_default_group_types)
    quality_threshold: float = DEFAULT_QUALITY_THRESHOLD
    detail_level: str = "detailed"
    # Accepted / rejected counts per group type
    accepted_by_type: Dict[str, int] = field(default_factory=dict)
    rejected_by_type: Dict[str, int] = field(default_factory=dict)
    accepted_recommendations: List[str] = field(default_factory=list)
    rejected_recommendations: List[str] = field(default_factory=list)

    def wants(self, group_type: GroupType) -> bool:
        """Whether groups of this type should be suggested."""
        if group_type == GroupType.EXACT_DUPLICATES:
            return True
        return self.preferred_group_types.get(group_type.value, True)

    def acceptance_rate(self) -> Dict[str, float]:
        rates = {}
        for group_type in set(self.accepted_by_type) | set(self.rejected_by_type):
            accepted = self.accepted_by_type.get(group_type, 0)
            total = accepted + self.rejected_by_type.get(group_type, 0)
            if total:
                rates[group_type] = accepted / total
        return rates

    def effective_quality_threshold(self) -> float:
        """
        Similarity threshold adjusted by the user's history.

        Mostly-rejecting users get a stricter threshold, mostly-accepting users
        a looser one.
        """
        accepted = len(self.accepted_recommendations)
        decisions = accepted + len(self.rejected_recommendations)
        threshold = self.quality_threshold
        if decisions >= MIN_DECISIONS_FOR_LEARNING:
            threshold += (0.5 - accepted / decisions) * LEARNING_RATE
        return max(MIN_QUALITY_THRESHOLD, min(MAX_QUALITY_THRESHOLD, threshold))

    def record_decision(self, suggestion_id: str, group_types: List[GroupType], accepted: bool) -> None:
        ids = self.accepted_recommendations if accepted else self.rejected_recommendations
        counts = self.accepted_by_type if accepted else self.rejected_by_type
        if suggestion_id not in ids:
            ids.append(suggestion_id)
        for group_type in group_types:
            counts[group_type.value] = counts.get(group_type.value, 0) + 1

    def forget_acceptance(self, suggestion_id: str, group_types: List[GroupType]) -> None:
        """Reverse a recorded acceptance (used by undo)."""
        if suggestion_id not in self.accepted_recommendations:
            return
        self.accepted_recommendations.remove(suggestion_id)
        for group_type in group_types:
            count = self.accepted_by_type.get(group_type.value, 0)
            if count > 1:
                self.accepted_by_type[group_type.value] = count - 1
            else:
                self.accepted_by_type.pop(group_type.value, None)

    def update(self, changes: Dict[str, Any]) -> None:
        """Apply user edits; the user id and learned history cannot be edited."""
        if "quality_threshold" in changes and changes["quality_threshold"] is not None:
            value = float(changes["quality_threshold"])
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"quality_threshold must be within [0, 1], got {value}")
            self.quality_threshold = value
        if changes.get("detail_level") is not None:
            if changes["detail_level"] not in DETAIL_LEVELS:
                raise ValueError(f"detail_level must be one of {DETAIL_LEVELS}")
            self.detail_level = changes["detail_level"]
        if changes.get("preferred_group_types"):
            for key, enabled in changes["preferred_group_types"].items():
                self.preferred_group_types[GroupType(key).value] = bool(enabled)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserCurationPreferences":
        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        prefs = cls(**known)
        # Group types added since these preferences were saved default to on
        for key, enabled in _default_group_types().items():
            prefs.preferred_group_types.setdefault(key, enabled)
        return prefs


class PreferenceStore(Protocol):
    def load(self, user_id: str) -> UserCurationPreferences: ...

    def save(self, preferences: UserCurationPreferences) -> None: ...


class InMemoryPreferenceStore:
    """Preferences kept for the life of the process."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Any]] = {}

    def load(self, user_id: str) -> UserCurationPreferences:
        stored = self._data.get(user_id)
        if stored is None:
            prefs = UserCurationPreferences(user_id=user_id)
            self.save(prefs)
            return prefs
        return UserCurationPreferences.from_dict(stored)

    def save(self, preferences: UserCurationPreferences) -> None:
        self._data[preferences.user_id] = preferences.to_dict()


class JsonPreferenceStore:
    """Preferences for every user in one JSON file."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._data: Dict[str, Any] = {"version": 1, "users": {}}
        self._read()

    def _read(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load preferences {self.path}: {e}")
            return

        if not isinstance(data, dict) or not isinstance(data.get("users", {}), dict):
            logger.warning(f"Ignoring preferences {self.path}: unexpected layout")
            return
        self._data = data

    def load(self, user_id: str) -> UserCurationPreferences:
        stored: Optional[Dict[str, Any]] = self._data.get("users", {}).get(user_id)
        if not isinstance(stored, dict):
            logger.info(f"Creating default curation preferences for {user_id}")
            prefs = UserCurationPreferences(user_id=user_id)
            self.save(prefs)
            return prefs
        return UserCurationPreferences.from_dict(stored)

    def save(self, preferences: UserCurationPreferences) -> None:
        self._data.setdefault("users", {})[preferences.user_id] = preferences.to_dict()
        try:
            with open(self.path, "w") as f:
                json.dump(self._data, f, indent=2)
        except OSError as e:
            logger.warning(f"Failed to save preferences {self.path}: {e}")
