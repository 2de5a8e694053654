"""Similarity orchestrator: the multi-layer funnel from photos to similarity groups.

Layers run strictly in order, each narrowing the candidate set before the
next, more expensive one:

1. content hashing (exact duplicates, removed from further consideration)
2. local CLIP features (visually near-identical photos)
3. metadata proximity (unioned with the feature candidates)
4. remote descriptions, compared pairwise and grouped transitively

Descriptions are requested once per candidate and then compared locally, so
remote cost grows with the number of candidates, not the number of pairs.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set, Tuple

from ..embedding.feature_extractor import find_visual_groups
from ..errors import CollaboratorError, ModelInitializationError
from ..grouping import connected_groups, new_group_id
from ..grouping.scoring import (
    aggregate_analyses,
    analyze_pair,
    determine_group_type,
    group_confidence,
)
from ..models import AnalysisState, Photo, PhotoSimilarityGroup, SimilarityAnalysis
from ..scanner.hashing import build_exact_duplicate_groups, find_perceptual_pairs
from ..scanner.metadata_filter import FilterMode, find_likely_duplicate_candidates
from .context import AnalysisCancelled, CancellationToken, PipelineContext, ProgressChannel

logger = logging.getLogger(__name__)

DESCRIPTION_URI_PREFERENCE = ("web", "original", "thumbnail")

PairKey = Tuple[str, str]


def _key(a: str, b: str) -> PairKey:
    return (a, b) if a <= b else (b, a)


@dataclass
class EnabledLayers:
    file_hash: bool = True
    perceptual_hash: bool = False
    features: bool = True
    metadata: bool = True
    ai_analysis: bool = True


@dataclass
class AnalysisOptions:
    layers: EnabledLayers = field(default_factory=EnabledLayers)
    similarity_threshold: Optional[float] = None
    confidence_threshold: Optional[float] = None
    feature_similarity_threshold: Optional[float] = None
    description_batch_size: int = 5


@dataclass
class LayerStats:
    photos_in: int = 0
    hashes_computed: int = 0
    exact_duplicate_groups: int = 0
    features_extracted: int = 0
    feature_layer_skipped: bool = False
    feature_candidates: int = 0
    perceptual_candidates: int = 0
    metadata_candidates: int = 0
    descriptions_requested: int = 0
    descriptions_generated: int = 0
    comparisons: int = 0
    used_fallback: bool = False


@dataclass
class AnalysisResult:
    state: AnalysisState
    groups: List[PhotoSimilarityGroup] = field(default_factory=list)
    all_groups: List[PhotoSimilarityGroup] = field(default_factory=list)
    error: Optional[str] = None
    stats: LayerStats = field(default_factory=LayerStats)


def filter_by_confidence(groups: Iterable[PhotoSimilarityGroup], threshold: float) -> List[PhotoSimilarityGroup]:
    """Groups at or above the confidence threshold, order preserved."""
    return [group for group in groups if group.confidence >= threshold]


class SimilarityOrchestrator:
    """Runs one analysis at a time over a shared pipeline context."""

    def __init__(self, context: PipelineContext):
        self.context = context
        self.settings = context.settings
        self.progress = ProgressChannel()
        self.state = AnalysisState.IDLE
        self.last_result: Optional[AnalysisResult] = None
        self._token: Optional[CancellationToken] = None
        self._pair_analyses: Dict[PairKey, SimilarityAnalysis] = {}

    @property
    def is_analyzing(self) -> bool:
        return self.state == AnalysisState.ANALYZING

    def cancel(self) -> None:
        """
        Ask the active run to stop at its next suspension point.

        A run that has been scheduled but not started yet (e.g. a task created
        with ``asyncio.create_task``) picks the cancellation up when it starts.
        """
        if self._token is None:
            self._token = CancellationToken()
        logger.info("Cancelling analysis...")
        self._token.cancel()

    def get_similarity_score(self, photo1_id: str, photo2_id: str) -> Optional[SimilarityAnalysis]:
        return self._pair_analyses.get(_key(photo1_id, photo2_id))

    def get_group_for_photo(self, photo_id: str) -> Optional[PhotoSimilarityGroup]:
        if self.last_result is None:
            return None
        for group in self.last_result.groups:
            if photo_id in group.photo_ids:
                return group
        return None

    async def analyze(
        self,
        photos: List[Photo],
        options: Optional[AnalysisOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> AnalysisResult:
        """
        Group similar photos.

        Args:
            photos: Candidate photo set
            options: Layer switches and thresholds (settings supply defaults)
            token: Cancellation token; ``cancel()`` fires the active one

        Returns:
            AnalysisResult; ``groups`` holds only groups at or above the
            confidence threshold, ``all_groups`` everything found. A cancelled
            run returns state ``cancelled`` with no groups.
        """
        if self.is_analyzing:
            raise RuntimeError("An analysis run is already active; cancel it or wait for it to finish")

        options = options or AnalysisOptions()
        pending = self._token
        token = token or CancellationToken()
        if pending is not None and pending.cancelled:
            token.cancel()
        confidence_threshold = (
            options.confidence_threshold
            if options.confidence_threshold is not None
            else self.settings.confidence_threshold
        )

        self._token = token
        self._pair_analyses = {}
        self.state = AnalysisState.ANALYZING
        self.progress.reset()
        stats = LayerStats(photos_in=len(photos))

        try:
            all_groups = await self._run(photos, options, token, stats)
        except AnalysisCancelled:
            logger.info("Analysis cancelled")
            self.state = AnalysisState.CANCELLED
            self._pair_analyses = {}
            result = AnalysisResult(state=AnalysisState.CANCELLED, stats=stats)
        except Exception as e:
            logger.exception(f"Analysis failed: {e}")
            self.state = AnalysisState.FAILED
            result = AnalysisResult(state=AnalysisState.FAILED, error=str(e) or type(e).__name__, stats=stats)
        else:
            all_groups.sort(key=lambda g: g.confidence, reverse=True)
            groups = filter_by_confidence(all_groups, confidence_threshold)
            self.state = AnalysisState.COMPLETED
            self.progress.report(100)
            result = AnalysisResult(
                state=AnalysisState.COMPLETED,
                groups=groups,
                all_groups=all_groups,
                stats=stats,
            )
            logger.info(
                f"Analysis complete: {len(groups)} groups shown, "
                f"{len(all_groups) - len(groups)} below confidence {confidence_threshold}"
            )
        finally:
            self._token = None

        self.last_result = result
        return result

    async def _run(
        self,
        photos: List[Photo],
        options: AnalysisOptions,
        token: CancellationToken,
        stats: LayerStats,
    ) -> List[PhotoSimilarityGroup]:
        settings = self.settings
        layers = options.layers
        similarity_threshold = (
            options.similarity_threshold
            if options.similarity_threshold is not None
            else settings.similarity_threshold
        )
        feature_threshold = (
            options.feature_similarity_threshold
            if options.feature_similarity_threshold is not None
            else settings.feature_similarity_threshold
        )

        token.check()
        remaining = list({photo.id: photo for photo in photos}.values())
        groups: List[PhotoSimilarityGroup] = []

        if len(remaining) < 2:
            logger.info("Need at least 2 photos for similarity analysis")
            return groups

        logger.info(f"Starting analysis of {len(remaining)} photos")

        # Layer 1: exact duplicates by content hash
        if layers.file_hash:
            urls = [p.best_uri() for p in remaining if p.best_uri()]
            url_hashes = await self.context.hasher.batch_hash(urls)
            token.check()
            stats.hashes_computed = len(url_hashes)

            exact_groups = build_exact_duplicate_groups(remaining, url_hashes)
            stats.exact_duplicate_groups = len(exact_groups)
            groups.extend(exact_groups)

            duplicate_ids: Set[str] = set()
            for group in exact_groups:
                ids = group.photo_ids
                duplicate_ids.update(ids)
                for i, a in enumerate(ids):
                    for b in ids[i + 1:]:
                        self._pair_analyses[_key(a, b)] = group.similarity
            remaining = [p for p in remaining if p.id not in duplicate_ids]
        self.progress.report(5)

        if len(remaining) < 2:
            return groups

        # Layers 2-3: cheap narrowing
        narrowed = False
        candidate_ids: Set[str] = set()
        visual_scores: Dict[PairKey, float] = {}
        visual_edges: List[PairKey] = []

        if layers.features:
            try:
                await self.context.extractor.initialize()
            except ModelInitializationError as e:
                logger.warning(f"Local feature layer disabled for this run: {e}")
                stats.feature_layer_skipped = True
            token.check()

            if stats.feature_layer_skipped:
                candidate_ids.update(p.id for p in remaining)
                narrowed = True
            else:
                self.progress.report(15)
                features = await self.context.extractor.batch_extract(
                    remaining,
                    on_progress=lambda done, total: self.progress.report(15 + 30 * done / max(total, 1)),
                )
                token.check()
                stats.features_extracted = len(features)

                visual_groups, pair_scores = find_visual_groups(features, threshold=feature_threshold)
                for (a, b), score in pair_scores.items():
                    visual_scores[_key(a, b)] = score
                    if score >= feature_threshold:
                        visual_edges.append(_key(a, b))
                feature_ids = {photo_id for group in visual_groups for photo_id in group}
                stats.feature_candidates = len(feature_ids)
                candidate_ids |= feature_ids
                narrowed = True
        self.progress.report(45)

        if layers.perceptual_hash:
            phashes = await self.context.hasher.batch_perceptual_hash(remaining)
            token.check()
            perceptual_ids = {
                photo_id
                for pair in find_perceptual_pairs(phashes, settings.perceptual_hash_max_distance)
                for photo_id in pair
            }
            stats.perceptual_candidates = len(perceptual_ids)
            candidate_ids |= perceptual_ids
            narrowed = True

        if layers.metadata:
            metadata_candidates = find_likely_duplicate_candidates(remaining, FilterMode.PERMISSIVE)
            stats.metadata_candidates = len(metadata_candidates)
            candidate_ids |= {p.id for p in metadata_candidates}
            narrowed = True
            await asyncio.sleep(0)
            token.check()
        self.progress.report(50)

        if not narrowed:
            candidate_ids = {p.id for p in remaining}
        candidates = [p for p in remaining if p.id in candidate_ids]
        logger.info(f"{len(candidates)} candidate photos (reduced from {len(remaining)})")

        if not layers.ai_analysis:
            groups.extend(self._groups_from_visual_edges(candidates, visual_edges, visual_scores))
            return groups

        # Layer 4: remote descriptions
        if len(candidates) < 2:
            stats.used_fallback = True
            sample = remaining[:settings.fallback_sample_size]
            logger.info(
                f"No candidates from fast filters; sampling {len(sample)} photos for a description-only check"
            )
            threshold = settings.fallback_similarity_threshold
        else:
            sample = candidates
            threshold = similarity_threshold

        self.progress.report(60)
        descriptions = await self._describe_all(sample, options.description_batch_size, token, stats)
        self.progress.report(80)

        edges = await self._compare_descriptions(sample, descriptions, threshold, visual_scores, token, stats)
        self.progress.report(90)

        groups.extend(self._build_groups(sample, edges, descriptions))
        return groups

    async def _describe_all(
        self,
        photos: List[Photo],
        batch_size: int,
        token: CancellationToken,
        stats: LayerStats,
    ) -> Dict[str, str]:
        """Describe every photo once, in batches, before any comparison."""
        targets = [(p.id, p.best_uri(DESCRIPTION_URI_PREFERENCE)) for p in photos]
        targets = [(photo_id, uri) for photo_id, uri in targets if uri]
        stats.descriptions_requested = len(targets)
        batch_size = max(1, batch_size)

        descriptions: Dict[str, str] = {}
        for i in range(0, len(targets), batch_size):
            batch = targets[i:i + batch_size]
            results = await asyncio.gather(
                *(self.context.descriptions.describe(uri) for _, uri in batch),
                return_exceptions=True,
            )
            token.check()

            for (photo_id, _), outcome in zip(batch, results):
                if isinstance(outcome, Exception):
                    logger.warning(f"No description for {photo_id}: {outcome}")
                elif outcome:
                    descriptions[photo_id] = outcome

            done = min(i + batch_size, len(targets))
            self.progress.report(60 + 20 * done / len(targets))

        stats.descriptions_generated = len(descriptions)
        logger.info(f"Generated {len(descriptions)}/{len(targets)} descriptions")
        return descriptions

    async def _compare_descriptions(
        self,
        photos: List[Photo],
        descriptions: Dict[str, str],
        threshold: float,
        visual_scores: Dict[PairKey, float],
        token: CancellationToken,
        stats: LayerStats,
    ) -> List[PairKey]:
        described = [p for p in photos if p.id in descriptions]
        edges: List[PairKey] = []

        for i, photo1 in enumerate(described):
            for photo2 in described[i + 1:]:
                key = _key(photo1.id, photo2.id)
                try:
                    score = await self.context.descriptions.semantic_similarity(
                        descriptions[photo1.id], descriptions[photo2.id]
                    )
                except CollaboratorError as e:
                    logger.warning(f"Skipping pair {photo1.id}/{photo2.id}: {e}")
                    continue
                stats.comparisons += 1

                logger.debug(f"Comparing {photo1.id} vs {photo2.id}: {score:.3f} (threshold {threshold})")
                if score >= threshold:
                    edges.append(key)
                    self._pair_analyses[key] = analyze_pair(
                        photo1, photo2, semantic=score, visual=visual_scores.get(key)
                    )
            token.check()

        return edges

    def _build_groups(
        self,
        photos: List[Photo],
        edges: List[PairKey],
        descriptions: Dict[str, str],
    ) -> List[PhotoSimilarityGroup]:
        by_id = {p.id: p for p in photos}
        groups = []

        for member_ids in connected_groups([p.id for p in photos], edges):
            members = set(member_ids)
            analysis = aggregate_analyses(
                self._pair_analyses[edge] for edge in edges if edge[0] in members and edge[1] in members
            )
            group = PhotoSimilarityGroup(
                id=new_group_id(),
                photos=[by_id[photo_id] for photo_id in member_ids],
                similarity=analysis,
                group_type=determine_group_type(analysis),
                confidence=group_confidence(analysis),
                descriptions={photo_id: descriptions[photo_id] for photo_id in member_ids if photo_id in descriptions},
            )
            logger.info(
                f"Created {group.group_type.value} group {group.id} with {len(member_ids)} photos "
                f"(confidence {group.confidence:.2f})"
            )
            groups.append(group)

        return groups

    def _groups_from_visual_edges(
        self,
        photos: List[Photo],
        edges: List[PairKey],
        visual_scores: Dict[PairKey, float],
    ) -> List[PhotoSimilarityGroup]:
        """Groups from local features alone, used when the AI layer is off."""
        by_id = {p.id: p for p in photos}
        kept_edges = [edge for edge in edges if edge[0] in by_id and edge[1] in by_id]
        for a, b in kept_edges:
            score = visual_scores[(a, b)]
            self._pair_analyses[(a, b)] = analyze_pair(by_id[a], by_id[b], semantic=score, visual=score)
        return self._build_groups(photos, kept_edges, {})
