"""Domain model for photo similarity grouping and curation."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple


class ArchiveState(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"


class GroupType(str, Enum):
    """Kind of redundancy a similarity group represents."""

    EXACT_DUPLICATES = "exact_duplicates"
    RETRY_SHOTS = "retry_shots"
    ANGLE_VARIATIONS = "angle_variations"
    INCREMENTAL_PROGRESS = "incremental_progress"
    REDUNDANT_DOCUMENTATION = "redundant_documentation"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    DISMISSED = "dismissed"


class ConfidenceBucket(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AnalysisState(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ActionType(str, Enum):
    ARCHIVE = "archive"
    RESTORE = "restore"


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


URI_PREFERENCE: Tuple[str, ...] = ("original", "web", "thumbnail")


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps without an offset are taken to be UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class Photo:
    """A photo owned by the external photo service.

    The pipeline only reads these fields; archive state changes go through a
    mutation collaborator.
    """

    id: str
    captured_at: datetime
    project_id: Optional[str] = None
    creator_id: Optional[str] = None
    coordinates: Optional[Coordinates] = None
    uris: Dict[str, str] = field(default_factory=dict)
    archive_state: ArchiveState = ArchiveState.ACTIVE
    description: str = ""
    tags: List[str] = field(default_factory=list)

    # Last Scout AI analysis of this photo, if any
    scout_ai_analyzed_at: Optional[datetime] = None
    scout_ai_analysis_version: Optional[str] = None

    def __post_init__(self):
        self.captured_at = ensure_utc(self.captured_at)
        self.scout_ai_analyzed_at = ensure_utc(self.scout_ai_analyzed_at)

    def best_uri(self, preference: Sequence[str] = URI_PREFERENCE) -> Optional[str]:
        """First available content URI in preference order."""
        for key in preference:
            uri = self.uris.get(key)
            if uri:
                return uri
        # Fall back to any URI the service gave us
        for uri in self.uris.values():
            if uri:
                return uri
        return None

    @property
    def is_archived(self) -> bool:
        return self.archive_state == ArchiveState.ARCHIVED


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, float(value)))


@dataclass
class SimilarityAnalysis:
    """Five independent similarity signals plus a derived overall score."""

    visual_similarity: float = 0.0
    content_similarity: float = 0.0
    temporal_proximity: float = 0.0
    spatial_proximity: float = 0.0
    semantic_similarity: float = 0.0
    overall_similarity: float = 0.0

    def __post_init__(self):
        self.visual_similarity = _clamp(self.visual_similarity)
        self.content_similarity = _clamp(self.content_similarity)
        self.temporal_proximity = _clamp(self.temporal_proximity)
        self.spatial_proximity = _clamp(self.spatial_proximity)
        self.semantic_similarity = _clamp(self.semantic_similarity)
        self.overall_similarity = _clamp(self.overall_similarity)

    def signals(self) -> Tuple[float, ...]:
        return (
            self.visual_similarity,
            self.content_similarity,
            self.temporal_proximity,
            self.spatial_proximity,
            self.semantic_similarity,
        )

    @classmethod
    def identical(cls) -> "SimilarityAnalysis":
        return cls(1.0, 1.0, 1.0, 1.0, 1.0, 1.0)


@dataclass
class PhotoSimilarityGroup:
    id: str
    photos: List[Photo]
    similarity: SimilarityAnalysis
    group_type: GroupType
    confidence: float
    descriptions: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        ids = [photo.id for photo in self.photos]
        if len(ids) < 2:
            raise ValueError(f"Group {self.id} needs at least 2 photos, got {len(ids)}")
        if len(set(ids)) != len(ids):
            raise ValueError(f"Group {self.id} contains duplicate photo ids")
        self.confidence = _clamp(self.confidence)

    @property
    def photo_ids(self) -> List[str]:
        return [photo.id for photo in self.photos]


@dataclass
class CurationRecommendation:
    group: PhotoSimilarityGroup
    keep: List[Photo]
    archive: List[Photo]
    rationale: str
    estimated_time_saved: float  # minutes
    confidence: float


@dataclass
class ScoutAiSuggestion:
    id: str
    message: str
    recommendations: List[CurationRecommendation]
    confidence: ConfidenceBucket
    actionable: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: SuggestionStatus = SuggestionStatus.PENDING
    type: str = "photo_curation"


@dataclass
class PhotoAction:
    type: ActionType
    photo_id: str
    reason: str = ""
    metadata: Dict[str, object] = field(default_factory=dict)


@dataclass
class CurationActionResult:
    success: bool
    applied_actions: List[PhotoAction] = field(default_factory=list)
    failed_actions: List[PhotoAction] = field(default_factory=list)
    updated_photos: List[Photo] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class UndoEntry:
    type: ActionType
    photo_id: str
    previous_state: ArchiveState


@dataclass
class UndoAction:
    """Reversible archive/restore operations from one accepted suggestion."""

    id: str
    suggestion_id: str
    description: str
    actions: List[UndoEntry]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
