"""Choosing which photos are handed to the similarity pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Optional, Tuple

from ..errors import FilterValidationError
from ..models import Photo, ensure_utc


class AnalysisMode(str, Enum):
    SMART = "smart"
    DATE_RANGE = "date-range"
    ALL = "all"
    SELECTION = "selection"


@dataclass
class FilterOptions:
    mode: AnalysisMode = AnalysisMode.SMART
    new_photo_days: int = 7
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    selected_photo_ids: List[str] = field(default_factory=list)
    force_reanalysis: bool = False
    include_archived: bool = False

    def __post_init__(self):
        self.start_date = ensure_utc(self.start_date)
        self.end_date = ensure_utc(self.end_date)


@dataclass
class AnalysisStats:
    total_photos: int
    analyzed_photos: int
    new_photos: int
    never_analyzed_count: int
    last_analysis_date: Optional[datetime]


def _now(now: Optional[datetime]) -> datetime:
    return ensure_utc(now) or datetime.now(timezone.utc)


def validate_filter_options(options: FilterOptions) -> None:
    """Raise FilterValidationError when the options cannot select photos."""
    mode = AnalysisMode(options.mode)

    if mode == AnalysisMode.DATE_RANGE:
        if options.start_date is None or options.end_date is None:
            raise FilterValidationError("Start date and end date are required for date-range mode")
        if options.start_date > options.end_date:
            raise FilterValidationError("Start date must be before end date")
    elif mode == AnalysisMode.SELECTION:
        if not options.selected_photo_ids:
            raise FilterValidationError("Selected photo IDs are required for selection mode")
    elif mode == AnalysisMode.SMART and options.new_photo_days < 0:
        raise FilterValidationError("new_photo_days must not be negative")


def _is_new(photo: Photo, cutoff: datetime, force: bool) -> bool:
    # Never-analyzed photos only count inside the window
    if force or photo.scout_ai_analyzed_at is None:
        return photo.captured_at >= cutoff
    if photo.captured_at > photo.scout_ai_analyzed_at:
        return True
    return photo.scout_ai_analyzed_at < cutoff


def filter_photos_for_analysis(
    photos: List[Photo],
    options: FilterOptions,
    now: Optional[datetime] = None,
) -> List[Photo]:
    """
    Select the photos an analysis run should look at.

    Args:
        photos: Every photo available to the user
        options: Selection mode and its parameters
        now: Reference time for ``smart`` mode (defaults to current UTC time)

    Returns:
        Selected photos in input order

    Raises:
        FilterValidationError: Options are missing required values
    """
    validate_filter_options(options)
    mode = AnalysisMode(options.mode)
    force = options.force_reanalysis

    pool = photos if options.include_archived else [p for p in photos if not p.is_archived]

    if mode == AnalysisMode.SMART:
        cutoff = _now(now) - timedelta(days=options.new_photo_days)
        return [p for p in pool if _is_new(p, cutoff, force)]

    if mode == AnalysisMode.DATE_RANGE:
        in_range = [p for p in pool if options.start_date <= p.captured_at <= options.end_date]
        return in_range if force else [p for p in in_range if p.scout_ai_analyzed_at is None]

    if mode == AnalysisMode.ALL:
        return list(pool) if force else [p for p in pool if p.scout_ai_analyzed_at is None]

    selected = set(options.selected_photo_ids)
    return [p for p in pool if p.id in selected]


def describe_filter_options(options: FilterOptions) -> str:
    """Short human-readable description of a selection."""
    mode = AnalysisMode(options.mode)
    archived = " including archived" if options.include_archived else " excluding archived"

    if mode == AnalysisMode.SMART:
        days = options.new_photo_days
        forced = " (re-analyzing all)" if options.force_reanalysis else ""
        return f"New photos from last {days} day{'' if days == 1 else 's'}{forced}{archived}"

    if mode == AnalysisMode.DATE_RANGE:
        if options.start_date is None or options.end_date is None:
            return "Custom date range"
        forced = " (re-analyzing all)" if options.force_reanalysis else " (new only)"
        return f"{options.start_date.date().isoformat()} to {options.end_date.date().isoformat()}{forced}"

    if mode == AnalysisMode.ALL:
        if options.force_reanalysis:
            return f"All photos (re-analyzing{archived})"
        return f"All unanalyzed photos{archived}"

    count = len(options.selected_photo_ids)
    return f"{count} selected photo{'' if count == 1 else 's'}"


def estimate_analysis_count(
    photos: List[Photo],
    options: FilterOptions,
    now: Optional[datetime] = None,
) -> Tuple[int, str]:
    """Number of photos a run would analyze, with a description (or the validation error)."""
    try:
        selected = filter_photos_for_analysis(photos, options, now=now)
    except FilterValidationError as e:
        return 0, str(e)
    return len(selected), describe_filter_options(options)


def get_analysis_stats(
    photos: List[Photo],
    new_photo_days: int = 7,
    now: Optional[datetime] = None,
) -> AnalysisStats:
    cutoff = _now(now) - timedelta(days=new_photo_days)
    analyzed = [p.scout_ai_analyzed_at for p in photos if p.scout_ai_analyzed_at is not None]

    # Every never-analyzed photo counts as new here, regardless of capture date
    new = [
        p for p in photos
        if p.scout_ai_analyzed_at is None
        or p.captured_at > p.scout_ai_analyzed_at
        or p.scout_ai_analyzed_at < cutoff
    ]

    return AnalysisStats(
        total_photos=len(photos),
        analyzed_photos=len(analyzed),
        new_photos=len(new),
        never_analyzed_count=len(photos) - len(analyzed),
        last_analysis_date=max(analyzed) if analyzed else None,
    )


def should_suggest_analysis(photos: List[Photo], new_photo_days: int = 7, now: Optional[datetime] = None) -> bool:
    return get_analysis_stats(photos, new_photo_days, now).new_photos > 0


def analysis_status_message(photos: List[Photo], new_photo_days: int = 7, now: Optional[datetime] = None) -> str:
    stats = get_analysis_stats(photos, new_photo_days, now)

    if stats.total_photos == 0:
        return "No photos to analyze"
    if stats.never_analyzed_count == stats.total_photos:
        return f"{stats.total_photos} photos have never been analyzed"
    if stats.new_photos == 0:
        last = stats.last_analysis_date.date().isoformat() if stats.last_analysis_date else "unknown time"
        return f"All photos analyzed (last analysis: {last})"
    return f"{stats.new_photos} new photos since last analysis"
