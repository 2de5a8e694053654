"""Tests for the similarity orchestrator funnel."""

import asyncio

import pytest

from conftest import BLUE, GREEN, RED, FakeDescriptionService, failing_embedder_factory, solid_png
from scout_curation.models import AnalysisState, Coordinates, GroupType
from scout_curation.pipeline.context import CancellationToken
from scout_curation.pipeline.orchestrator import (
    AnalysisOptions,
    EnabledLayers,
    SimilarityOrchestrator,
    filter_by_confidence,
)

SITE = Coordinates(45.5231, -122.6765)


def images_for(**colors):
    """mem:// image map; a (color, size) pair lets equal colours differ in bytes."""
    result = {}
    for photo_id, entry in colors.items():
        color, size = entry if isinstance(entry[0], tuple) else (entry, 16)
        result[f"mem://{photo_id}.png"] = solid_png(color, size)
    return result


async def test_exact_duplicates_scenario(make_photo, make_context):
    descriptions = FakeDescriptionService()
    context = make_context(images_for(A=RED, B=RED, C=BLUE), descriptions)
    orchestrator = SimilarityOrchestrator(context)

    result = await orchestrator.analyze(
        [make_photo("A"), make_photo("B"), make_photo("C")],
        AnalysisOptions(similarity_threshold=0.6),
    )

    assert result.state == AnalysisState.COMPLETED
    assert len(result.groups) == 1
    group = result.groups[0]
    assert sorted(group.photo_ids) == ["A", "B"]
    assert group.group_type == GroupType.EXACT_DUPLICATES
    assert group.confidence == 1.0
    assert orchestrator.get_group_for_photo("C") is None
    # Only one photo left after removing duplicates, so nothing to describe
    assert descriptions.describe_calls == []


async def test_fewer_than_two_photos_completes_immediately(make_photo, make_context):
    descriptions = FakeDescriptionService()
    orchestrator = SimilarityOrchestrator(make_context({}, descriptions))

    result = await orchestrator.analyze([make_photo("only")])

    assert result.state == AnalysisState.COMPLETED
    assert result.groups == []
    assert orchestrator.progress.value == 100
    assert descriptions.describe_calls == []


async def test_retry_shots_are_grouped_and_unrelated_photo_is_never_described(make_photo, make_context):
    descriptions = FakeDescriptionService({
        "mem://r1.png": "Concrete footing formwork with rebar",
        "mem://r2.png": "Concrete footing formwork with rebar",
        "mem://b1.png": "Concrete footing formwork with rebar",
    })
    context = make_context(images_for(r1=RED, r2=(RED, 20), b1=BLUE), descriptions)
    orchestrator = SimilarityOrchestrator(context)
    photos = [
        make_photo("r1", minutes=0, coordinates=SITE),
        make_photo("r2", minutes=1, coordinates=SITE),
        make_photo("b1", minutes=300, project_id="other"),
    ]

    result = await orchestrator.analyze(photos)

    assert result.state == AnalysisState.COMPLETED
    assert len(result.groups) == 1
    group = result.groups[0]
    assert group.photo_ids == ["r1", "r2"]
    assert group.group_type == GroupType.RETRY_SHOTS
    assert group.confidence >= 0.85
    assert group.descriptions["r1"].startswith("Concrete")
    assert sorted(descriptions.describe_calls) == ["mem://r1.png", "mem://r2.png"]
    assert result.stats.feature_candidates == 2

    score = orchestrator.get_similarity_score("r2", "r1")
    assert score is not None
    assert score.visual_similarity == pytest.approx(1.0, abs=1e-4)


async def test_grouping_is_transitive(make_photo, make_context):
    descriptions = FakeDescriptionService({
        "mem://a.png": "alpha beta",
        "mem://b.png": "alpha beta gamma delta",
        "mem://c.png": "gamma delta",
    })
    context = make_context(images_for(a=(RED, 16), b=(RED, 18), c=(RED, 20)), descriptions)
    orchestrator = SimilarityOrchestrator(context)
    options = AnalysisOptions(
        layers=EnabledLayers(features=False),
        similarity_threshold=0.6,
        confidence_threshold=0.0,
    )

    result = await orchestrator.analyze(
        [make_photo("a", minutes=0), make_photo("b", minutes=10), make_photo("c", minutes=20)],
        options,
    )

    assert [sorted(g.photo_ids) for g in result.groups] == [["a", "b", "c"]]
    assert orchestrator.get_similarity_score("a", "b") is not None
    assert orchestrator.get_similarity_score("a", "c") is None
    assert orchestrator.get_group_for_photo("c") is result.groups[0]


async def test_fallback_samples_when_fast_filters_find_nothing(make_photo, make_context):
    photos = [
        make_photo(f"p{i}", minutes=i * 2 * 24 * 60, project_id=f"project-{i}")
        for i in range(20)
    ]
    descriptions = FakeDescriptionService({
        "mem://p0.png": "Water damage under bathroom sink",
        "mem://p1.png": "Water damage under bathroom sink",
    })
    images = {f"mem://p{i}.png": solid_png(RED, 16 + i) for i in range(20)}
    orchestrator = SimilarityOrchestrator(make_context(images, descriptions))

    result = await orchestrator.analyze(photos, AnalysisOptions(layers=EnabledLayers(features=False)))

    assert result.stats.used_fallback
    assert len(descriptions.describe_calls) == 15
    assert [sorted(g.photo_ids) for g in result.all_groups] == [["p0", "p1"]]
    # Different projects and days apart: found, but not confident enough to show
    assert result.groups == []
    assert result.all_groups[0].confidence < orchestrator.settings.confidence_threshold

    lowered = await orchestrator.analyze(
        photos, AnalysisOptions(layers=EnabledLayers(features=False), confidence_threshold=0.5)
    )
    assert [sorted(g.photo_ids) for g in lowered.groups] == [["p0", "p1"]]


async def test_model_failure_lets_every_photo_through(make_photo, make_context):
    descriptions = FakeDescriptionService({
        "mem://x.png": "Electrical panel with open cover",
        "mem://y.png": "Electrical panel with open cover",
    })
    context = make_context(
        images_for(x=RED, y=(BLUE, 20)), descriptions, embedder_factory=failing_embedder_factory
    )
    orchestrator = SimilarityOrchestrator(context)
    options = AnalysisOptions(layers=EnabledLayers(metadata=False), confidence_threshold=0.0)

    result = await orchestrator.analyze(
        [make_photo("x", minutes=0), make_photo("y", minutes=600, project_id="elsewhere")], options
    )

    assert result.state == AnalysisState.COMPLETED
    assert result.stats.feature_layer_skipped
    assert [sorted(g.photo_ids) for g in result.groups] == [["x", "y"]]


async def test_failed_description_excludes_only_that_photo(make_photo, make_context):
    descriptions = FakeDescriptionService(
        {
            "mem://a.png": "Scaffolding on north facade",
            "mem://b.png": "Scaffolding on north facade",
            "mem://c.png": "Scaffolding on north facade",
        },
        failing={"mem://c.png"},
    )
    context = make_context(images_for(a=(RED, 16), b=(RED, 18), c=(RED, 20)), descriptions)
    orchestrator = SimilarityOrchestrator(context)

    result = await orchestrator.analyze(
        [make_photo("a"), make_photo("b", minutes=1), make_photo("c", minutes=2)],
        AnalysisOptions(layers=EnabledLayers(features=False), confidence_threshold=0.0),
    )

    assert [g.photo_ids for g in result.groups] == [["a", "b"]]
    assert result.stats.descriptions_generated == 2


async def test_visual_only_grouping_without_ai(make_photo, make_context):
    descriptions = FakeDescriptionService()
    context = make_context(images_for(r1=RED, r2=(RED, 24), g=GREEN), descriptions)
    orchestrator = SimilarityOrchestrator(context)

    result = await orchestrator.analyze(
        [make_photo("r1"), make_photo("r2", minutes=1), make_photo("g", minutes=2)],
        AnalysisOptions(layers=EnabledLayers(ai_analysis=False, metadata=False), confidence_threshold=0.0),
    )

    assert [g.photo_ids for g in result.groups] == [["r1", "r2"]]
    assert descriptions.describe_calls == []


async def test_perceptual_hash_layer_adds_candidates(make_photo, make_context):
    descriptions = FakeDescriptionService()
    context = make_context(images_for(a=RED, b=(RED, 20)), descriptions)
    orchestrator = SimilarityOrchestrator(context)
    layers = EnabledLayers(perceptual_hash=True, features=False, metadata=False)

    result = await orchestrator.analyze(
        [make_photo("a"), make_photo("b", minutes=600, project_id="other")], AnalysisOptions(layers=layers)
    )

    assert result.stats.perceptual_candidates == 2
    assert not result.stats.used_fallback
    assert len(descriptions.describe_calls) == 2


async def test_cancel_before_start_returns_empty_cancelled_result(make_photo, make_context):
    descriptions = FakeDescriptionService()
    orchestrator = SimilarityOrchestrator(make_context(images_for(a=RED, b=RED), descriptions))
    token = CancellationToken()
    token.cancel()

    result = await orchestrator.analyze([make_photo("a"), make_photo("b")], token=token)

    assert result.state == AnalysisState.CANCELLED
    assert result.groups == []
    assert orchestrator.state == AnalysisState.CANCELLED
    assert descriptions.describe_calls == []


async def test_cancel_after_scheduling_cancels_the_run(make_photo, make_context):
    descriptions = FakeDescriptionService()
    orchestrator = SimilarityOrchestrator(make_context(images_for(A=RED, B=RED, C=BLUE), descriptions))
    photos = [make_photo("A"), make_photo("B"), make_photo("C")]

    task = asyncio.create_task(orchestrator.analyze(photos))
    orchestrator.cancel()
    result = await task

    assert result.state == AnalysisState.CANCELLED
    assert result.groups == []
    assert descriptions.describe_calls == []

    # The cancellation belonged to that run only
    again = await orchestrator.analyze(photos)
    assert again.state == AnalysisState.COMPLETED
    assert len(again.groups) == 1


async def test_cancel_during_descriptions(make_photo, make_context):
    orchestrator = None

    class CancellingDescriptions(FakeDescriptionService):
        async def describe(self, photo_url: str) -> str:
            orchestrator.cancel()
            return await super().describe(photo_url)

    descriptions = CancellingDescriptions()
    context = make_context(images_for(a=(RED, 16), b=(RED, 18)), descriptions)
    orchestrator = SimilarityOrchestrator(context)

    result = await orchestrator.analyze([make_photo("a"), make_photo("b", minutes=1)])

    assert result.state == AnalysisState.CANCELLED
    assert result.groups == []
    assert result.all_groups == []
    assert descriptions.similarity_calls == 0


async def test_progress_is_monotonic_and_finishes(make_photo, make_context):
    descriptions = FakeDescriptionService({
        "mem://a.png": "Window frame install",
        "mem://b.png": "Window frame install",
    })
    orchestrator = SimilarityOrchestrator(make_context(images_for(a=(RED, 16), b=(RED, 18)), descriptions))
    seen = []
    orchestrator.progress.subscribe(seen.append)

    await orchestrator.analyze([make_photo("a"), make_photo("b", minutes=1)])

    values = [v for v in seen if v > 0]
    assert values == sorted(values)
    assert values[-1] == 100


async def test_second_run_while_active_is_rejected(make_photo, make_context):
    orchestrator = SimilarityOrchestrator(make_context({}))
    orchestrator.state = AnalysisState.ANALYZING

    with pytest.raises(RuntimeError):
        await orchestrator.analyze([make_photo("a"), make_photo("b")])


async def test_confidence_filter_is_idempotent(make_photo, make_context):
    descriptions = FakeDescriptionService({
        "mem://a.png": "alpha beta",
        "mem://b.png": "alpha beta",
        "mem://c.png": "gamma delta",
        "mem://d.png": "gamma delta",
    })
    images = images_for(a=(RED, 16), b=(RED, 18), c=(BLUE, 16), d=(BLUE, 18))
    orchestrator = SimilarityOrchestrator(make_context(images, descriptions))
    photos = [
        make_photo("a", coordinates=SITE),
        make_photo("b", minutes=1, coordinates=SITE),
        make_photo("c", minutes=3000, project_id="x"),
        make_photo("d", minutes=6000, project_id="y"),
    ]
    options = AnalysisOptions(layers=EnabledLayers(features=False, metadata=False), confidence_threshold=0.0)

    result = await orchestrator.analyze(photos, options)

    once = filter_by_confidence(result.all_groups, 0.85)
    assert filter_by_confidence(once, 0.85) == once
    assert [g.photo_ids for g in once] == [["a", "b"]]
    assert len(result.all_groups) == 2
