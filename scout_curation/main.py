"""Command-line interface for photo similarity analysis and the curation service."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List

from tqdm import tqdm

from .config import get_settings
from .curation.recommender import generate_suggestion_message, recommend_all
from .errors import FilterValidationError
from .inference_service.schemas import GroupModel, PhotoModel, RecommendationModel
from .models import AnalysisState, Photo
from .pipeline.context import PipelineContext
from .pipeline.orchestrator import AnalysisOptions, EnabledLayers, SimilarityOrchestrator
from .scanner.selection import AnalysisMode, FilterOptions, describe_filter_options, filter_photos_for_analysis

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def load_photos(path: Path) -> List[Photo]:
    """Load photos from a JSON list (or an object with a ``photos`` list)."""
    with open(path, "r") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("photos", [])
    return [PhotoModel.model_validate(item).to_photo() for item in data]


async def run_analysis(args: argparse.Namespace) -> int:
    settings = get_settings()
    photos = load_photos(args.photos)
    logger.info(f"Loaded {len(photos)} photos from {args.photos}")

    filter_options = FilterOptions(
        mode=AnalysisMode(args.mode),
        new_photo_days=args.days,
        selected_photo_ids=args.select or [],
        force_reanalysis=args.force,
        include_archived=args.include_archived,
    )
    try:
        selected = filter_photos_for_analysis(photos, filter_options)
    except FilterValidationError as e:
        logger.error(f"Invalid selection: {e}")
        return 2
    logger.info(f"Selection: {describe_filter_options(filter_options)} ({len(selected)} photos)")

    options = AnalysisOptions(
        layers=EnabledLayers(
            file_hash=not args.no_hash,
            perceptual_hash=args.perceptual_hash,
            features=not args.no_features,
            metadata=not args.no_metadata,
            ai_analysis=not args.no_ai,
        ),
        similarity_threshold=args.similarity_threshold,
        confidence_threshold=args.confidence_threshold,
    )

    async with PipelineContext.from_settings(settings) as context:
        orchestrator = SimilarityOrchestrator(context)
        with tqdm(total=100, desc="Analyzing photos", unit="%") as pbar:
            unsubscribe = orchestrator.progress.subscribe(lambda value: pbar.update(value - pbar.n))
            try:
                result = await orchestrator.analyze(selected, options)
            finally:
                unsubscribe()

    if result.state != AnalysisState.COMPLETED:
        logger.error(f"Analysis {result.state.value}: {result.error or 'no result'}")
        return 1

    recommendations = recommend_all(result.groups)
    message = generate_suggestion_message(recommendations)

    print(f"\n{message}\n")
    for rec in recommendations:
        group = rec.group
        print(f"[{group.group_type.value}] {len(group.photos)} photos, confidence {group.confidence:.2f}")
        print(f"  keep:    {', '.join(p.id for p in rec.keep)}")
        print(f"  archive: {', '.join(p.id for p in rec.archive)}")
    print(
        f"\n{len(result.groups)} groups shown, "
        f"{len(result.all_groups) - len(result.groups)} below the confidence threshold"
    )

    if args.output:
        payload = {
            "message": message,
            "groups": [GroupModel.from_group(g).model_dump(mode="json") for g in result.groups],
            "recommendations": [RecommendationModel.from_recommendation(r).model_dump(mode="json") for r in recommendations],
            "stats": vars(result.stats),
        }
        args.output.parent.mkdir(parents=True, exist_ok=True)
        with open(args.output, "w") as f:
            json.dump(payload, f, indent=2)
        logger.info(f"Results saved to {args.output}")

    return 0


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .inference_service.server import create_app

    app = create_app(settings=get_settings(), user_id=args.user_id)
    uvicorn.run(app, host=args.host, port=args.port, log_level="debug" if args.verbose else "info")
    return 0


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="Find similar photos and suggest which to archive")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser("analyze", help="Analyze a JSON list of photos")
    analyze.add_argument("photos", type=Path, help="JSON file with photos")
    analyze.add_argument("--output", type=Path, help="Write groups and recommendations to this JSON file")
    analyze.add_argument(
        "--mode",
        choices=[m.value for m in AnalysisMode],
        default=AnalysisMode.ALL.value,
        help="Which photos to analyze (default: all)",
    )
    analyze.add_argument("--days", type=int, default=7, help="Window for smart mode (default: 7)")
    analyze.add_argument("--select", nargs="+", help="Photo ids for selection mode")
    analyze.add_argument("--force", action="store_true", help="Re-analyze already analyzed photos")
    analyze.add_argument("--include-archived", action="store_true", help="Include archived photos")
    analyze.add_argument("--similarity-threshold", type=float, help="Description similarity threshold")
    analyze.add_argument("--confidence-threshold", type=float, help="Minimum group confidence to report")
    analyze.add_argument("--no-hash", action="store_true", help="Skip exact-duplicate hashing")
    analyze.add_argument("--perceptual-hash", action="store_true", help="Add perceptual-hash candidates")
    analyze.add_argument("--no-features", action="store_true", help="Skip the local vision model")
    analyze.add_argument("--no-metadata", action="store_true", help="Skip time/location candidates")
    analyze.add_argument("--no-ai", action="store_true", help="Skip remote descriptions")

    server = subparsers.add_parser("serve", help="Run the curation HTTP service")
    server.add_argument("--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    server.add_argument("--port", type=int, default=8002, help="Port to bind (default: 8002)")
    server.add_argument("--user-id", default="default", help="User whose preferences are served")

    args = parser.parse_args()
    setup_logging(args.verbose)

    if args.command == "analyze":
        sys.exit(asyncio.run(run_analysis(args)))
    sys.exit(serve(args))


if __name__ == "__main__":
    main()
