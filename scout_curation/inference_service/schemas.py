"""Pydantic wire models shared by the HTTP surface and the CLI."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from ..models import (
    ArchiveState,
    Coordinates,
    CurationActionResult,
    CurationRecommendation,
    Photo,
    PhotoAction,
    PhotoSimilarityGroup,
    ScoutAiSuggestion,
    SimilarityAnalysis,
)
from ..pipeline.orchestrator import EnabledLayers
from ..scanner.selection import AnalysisMode, AnalysisStats, FilterOptions


class CoordinatesModel(BaseModel):
    latitude: float
    longitude: float


class PhotoModel(BaseModel):
    """Photo as the photo service hands it over."""

    id: str
    captured_at: datetime
    project_id: Optional[str] = None
    creator_id: Optional[str] = None
    coordinates: Optional[CoordinatesModel] = None
    uris: Dict[str, str] = Field(default_factory=dict)
    archive_state: ArchiveState = ArchiveState.ACTIVE
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    scout_ai_analyzed_at: Optional[datetime] = None
    scout_ai_analysis_version: Optional[str] = None

    def to_photo(self) -> Photo:
        coords = self.coordinates
        return Photo(
            id=self.id,
            captured_at=self.captured_at,
            project_id=self.project_id,
            creator_id=self.creator_id,
            coordinates=Coordinates(coords.latitude, coords.longitude) if coords else None,
            uris=dict(self.uris),
            archive_state=self.archive_state,
            description=self.description,
            tags=list(self.tags),
            scout_ai_analyzed_at=self.scout_ai_analyzed_at,
            scout_ai_analysis_version=self.scout_ai_analysis_version,
        )

    @classmethod
    def from_photo(cls, photo: Photo) -> "PhotoModel":
        coords = photo.coordinates
        return cls(
            id=photo.id,
            captured_at=photo.captured_at,
            project_id=photo.project_id,
            creator_id=photo.creator_id,
            coordinates=CoordinatesModel(latitude=coords.latitude, longitude=coords.longitude) if coords else None,
            uris=photo.uris,
            archive_state=photo.archive_state,
            description=photo.description,
            tags=photo.tags,
            scout_ai_analyzed_at=photo.scout_ai_analyzed_at,
            scout_ai_analysis_version=photo.scout_ai_analysis_version,
        )


class SimilarityModel(BaseModel):
    visual_similarity: float
    content_similarity: float
    temporal_proximity: float
    spatial_proximity: float
    semantic_similarity: float
    overall_similarity: float

    @classmethod
    def from_analysis(cls, analysis: SimilarityAnalysis) -> "SimilarityModel":
        return cls(
            visual_similarity=analysis.visual_similarity,
            content_similarity=analysis.content_similarity,
            temporal_proximity=analysis.temporal_proximity,
            spatial_proximity=analysis.spatial_proximity,
            semantic_similarity=analysis.semantic_similarity,
            overall_similarity=analysis.overall_similarity,
        )


class GroupModel(BaseModel):
    id: str
    group_type: str
    confidence: float
    photo_ids: List[str]
    similarity: SimilarityModel
    descriptions: Dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_group(cls, group: PhotoSimilarityGroup) -> "GroupModel":
        return cls(
            id=group.id,
            group_type=group.group_type.value,
            confidence=group.confidence,
            photo_ids=group.photo_ids,
            similarity=SimilarityModel.from_analysis(group.similarity),
            descriptions=group.descriptions,
        )


class RecommendationModel(BaseModel):
    group: GroupModel
    keep: List[str]
    archive: List[str]
    rationale: str
    estimated_time_saved: float
    confidence: float

    @classmethod
    def from_recommendation(cls, rec: CurationRecommendation) -> "RecommendationModel":
        return cls(
            group=GroupModel.from_group(rec.group),
            keep=[photo.id for photo in rec.keep],
            archive=[photo.id for photo in rec.archive],
            rationale=rec.rationale,
            estimated_time_saved=rec.estimated_time_saved,
            confidence=rec.confidence,
        )


class SuggestionModel(BaseModel):
    id: str
    type: str
    message: str
    confidence: str
    actionable: bool
    status: str
    created_at: datetime
    recommendations: List[RecommendationModel]

    @classmethod
    def from_suggestion(cls, suggestion: ScoutAiSuggestion) -> "SuggestionModel":
        return cls(
            id=suggestion.id,
            type=suggestion.type,
            message=suggestion.message,
            confidence=suggestion.confidence.value,
            actionable=suggestion.actionable,
            status=suggestion.status.value,
            created_at=suggestion.created_at,
            recommendations=[RecommendationModel.from_recommendation(r) for r in suggestion.recommendations],
        )


class ActionModel(BaseModel):
    type: str
    photo_id: str
    reason: str = ""

    @classmethod
    def from_action(cls, action: PhotoAction) -> "ActionModel":
        return cls(type=action.type.value, photo_id=action.photo_id, reason=action.reason)


class ActionResultModel(BaseModel):
    success: bool
    applied_actions: List[ActionModel]
    failed_actions: List[ActionModel]
    updated_photos: List[PhotoModel]
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: CurationActionResult) -> "ActionResultModel":
        return cls(
            success=result.success,
            applied_actions=[ActionModel.from_action(a) for a in result.applied_actions],
            failed_actions=[ActionModel.from_action(a) for a in result.failed_actions],
            updated_photos=[PhotoModel.from_photo(p) for p in result.updated_photos],
            error=result.error,
        )


class LayersModel(BaseModel):
    file_hash: bool = True
    perceptual_hash: bool = False
    features: bool = True
    metadata: bool = True
    ai_analysis: bool = True

    def to_layers(self) -> EnabledLayers:
        return EnabledLayers(**self.model_dump())


class FilterOptionsModel(BaseModel):
    mode: AnalysisMode = AnalysisMode.SMART
    new_photo_days: int = 7
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    selected_photo_ids: List[str] = Field(default_factory=list)
    force_reanalysis: bool = False
    include_archived: bool = False

    def to_options(self) -> FilterOptions:
        return FilterOptions(**self.model_dump())


class AnalyzeRequest(BaseModel):
    photos: List[PhotoModel]
    clear_existing: bool = True
    filter_options: Optional[FilterOptionsModel] = None
    layers: Optional[LayersModel] = None
    similarity_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    confidence_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class AnalyzeResponse(BaseModel):
    state: str
    groups: List[GroupModel]
    suggestions: List[SuggestionModel]
    error: Optional[str] = None


class PhotosRequest(BaseModel):
    """Current photo state; the server's last known state is used when empty."""

    photos: List[PhotoModel] = Field(default_factory=list)


class PreferencesUpdate(BaseModel):
    quality_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    detail_level: Optional[str] = None
    preferred_group_types: Optional[Dict[str, bool]] = None


class ProgressResponse(BaseModel):
    state: str
    progress: int
    error: Optional[str] = None


class AnalysisStatsResponse(BaseModel):
    total_photos: int
    analyzed_photos: int
    new_photos: int
    never_analyzed_count: int
    last_analysis_date: Optional[datetime] = None
    should_suggest_analysis: bool
    message: str

    @classmethod
    def from_stats(cls, stats: AnalysisStats, suggest: bool, message: str) -> "AnalysisStatsResponse":
        return cls(
            total_photos=stats.total_photos,
            analyzed_photos=stats.analyzed_photos,
            new_photos=stats.new_photos,
            never_analyzed_count=stats.never_analyzed_count,
            last_analysis_date=stats.last_analysis_date,
            should_suggest_analysis=suggest,
            message=message,
        )
