"""HTTP surface exposing analysis and the suggestion store to the surrounding app.

The server holds one store (one user's suggestions, preferences and undo
stack) and the last photo state it has seen, so accept/undo requests may omit
the photo list.
"""

import dataclasses
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from ..config import Settings, get_settings
from ..curation.preferences import JsonPreferenceStore
from ..curation.store import SuggestionStore
from ..errors import (
    FilterValidationError,
    PreferencesNotLoadedError,
    SuggestionNotFoundError,
    SuggestionStateError,
)
from ..models import Photo
from ..pipeline.context import PipelineContext
from ..pipeline.orchestrator import AnalysisOptions, SimilarityOrchestrator
from ..scanner.selection import analysis_status_message, get_analysis_stats, should_suggest_analysis
from .client import HttpPhotoMutator
from .schemas import (
    ActionResultModel,
    AnalysisStatsResponse,
    AnalyzeRequest,
    AnalyzeResponse,
    GroupModel,
    PhotosRequest,
    PreferencesUpdate,
    ProgressResponse,
    SuggestionModel,
)

logger = logging.getLogger(__name__)


class PhotoRegistry:
    """Last known state of every photo the server has been given."""

    def __init__(self):
        self._photos: Dict[str, Photo] = {}

    def update(self, photos: List[Photo]) -> None:
        for photo in photos:
            self._photos[photo.id] = photo

    def resolve(self, photos: List[Photo]) -> List[Photo]:
        if photos:
            self.update(photos)
            return photos
        return list(self._photos.values())


def create_app(
    store: Optional[SuggestionStore] = None,
    settings: Optional[Settings] = None,
    user_id: str = "default",
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        store: Suggestion store to serve; built from settings (httpx + OpenCLIP)
            when None, and torn down on shutdown
        settings: Settings used to build the default store
        user_id: User whose preferences are loaded at startup
    """
    settings = settings or get_settings()
    registry = PhotoRegistry()
    owned_context: Optional[PipelineContext] = None

    if store is None:
        owned_context = PipelineContext.from_settings(settings)
        store = SuggestionStore(
            orchestrator=SimilarityOrchestrator(owned_context),
            mutator=HttpPhotoMutator(settings.photo_service_url, timeout=settings.request_timeout),
            preference_store=JsonPreferenceStore(settings.preferences_file),
            settings=settings,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting curation service...")
        if store.preferences is None:
            store.load_preferences(user_id)
        yield
        if owned_context is not None:
            await owned_context.dispose()
            close = getattr(store.mutator, "aclose", None)
            if close is not None:
                await close()
        logger.info("Curation service stopped")

    app = FastAPI(
        title="Scout Curation Service",
        description="Photo similarity grouping and curation suggestions",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.store = store
    app.state.photos = registry

    @app.exception_handler(FilterValidationError)
    async def filter_validation_error(request: Request, exc: FilterValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(SuggestionNotFoundError)
    async def suggestion_not_found(request: Request, exc: SuggestionNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(SuggestionStateError)
    async def suggestion_state_error(request: Request, exc: SuggestionStateError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(PreferencesNotLoadedError)
    async def preferences_not_loaded(request: Request, exc: PreferencesNotLoadedError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.get("/health")
    @app.get("/healthz")
    async def health():
        """Health check endpoint."""
        return {
            "status": "ok",
            "analysis_state": store.orchestrator.state.value,
            "model_loaded": store.orchestrator.context.extractor.is_ready,
        }

    @app.post("/analyze", response_model=AnalyzeResponse)
    async def analyze(request: AnalyzeRequest):
        """Run an analysis and publish a suggestion for the groups found."""
        if store.is_analyzing:
            raise HTTPException(status_code=409, detail="An analysis is already running")

        photos = [p.to_photo() for p in request.photos]
        registry.update(photos)

        options = AnalysisOptions(
            layers=request.layers.to_layers() if request.layers else dataclasses.replace(store.layers),
            similarity_threshold=request.similarity_threshold,
            confidence_threshold=request.confidence_threshold,
        )
        groups = await store.analyze(
            photos,
            clear_existing=request.clear_existing,
            filter_options=request.filter_options.to_options() if request.filter_options else None,
            options=options,
        )

        return AnalyzeResponse(
            state=store.orchestrator.state.value,
            groups=[GroupModel.from_group(g) for g in groups],
            suggestions=[SuggestionModel.from_suggestion(s) for s in store.get_suggestions()],
            error=store.error,
        )

    @app.get("/analysis/progress", response_model=ProgressResponse)
    async def analysis_progress():
        return ProgressResponse(
            state=store.orchestrator.state.value,
            progress=store.orchestrator.progress.value,
            error=store.error,
        )

    @app.get("/analysis/stats", response_model=AnalysisStatsResponse)
    async def analysis_stats(new_photo_days: int = 7):
        """How many of the known photos are new since their last analysis."""
        photos = registry.resolve([])
        return AnalysisStatsResponse.from_stats(
            get_analysis_stats(photos, new_photo_days),
            suggest=should_suggest_analysis(photos, new_photo_days),
            message=analysis_status_message(photos, new_photo_days),
        )

    @app.post("/analysis/cancel")
    async def cancel_analysis():
        cancelled = store.is_analyzing
        if cancelled:
            store.cancel_analysis()
        return {"cancelled": cancelled}

    @app.get("/suggestions", response_model=List[SuggestionModel])
    async def list_suggestions():
        return [SuggestionModel.from_suggestion(s) for s in store.get_suggestions()]

    @app.post("/suggestions/{suggestion_id}/accept", response_model=ActionResultModel)
    async def accept_suggestion(suggestion_id: str, body: Optional[PhotosRequest] = None):
        photos = registry.resolve([p.to_photo() for p in body.photos] if body else [])
        result = await store.accept(suggestion_id, photos)
        registry.update(result.updated_photos)
        return ActionResultModel.from_result(result)

    @app.post("/suggestions/{suggestion_id}/reject", response_model=SuggestionModel)
    async def reject_suggestion(suggestion_id: str):
        return SuggestionModel.from_suggestion(store.reject(suggestion_id))

    @app.post("/suggestions/{suggestion_id}/dismiss", response_model=SuggestionModel)
    async def dismiss_suggestion(suggestion_id: str):
        return SuggestionModel.from_suggestion(store.dismiss(suggestion_id))

    @app.post("/undo")
    async def undo(body: Optional[PhotosRequest] = None):
        photos = registry.resolve([p.to_photo() for p in body.photos] if body else [])
        result = await store.undo(photos)
        if result is None:
            raise HTTPException(status_code=404, detail="Nothing to undo")
        registry.update(result.updated_photos)
        return ActionResultModel.from_result(result)

    @app.get("/preferences")
    async def get_preferences():
        if store.preferences is None:
            raise PreferencesNotLoadedError("User preferences not loaded")
        prefs = store.preferences
        return {
            **prefs.to_dict(),
            "acceptance_rate": prefs.acceptance_rate(),
            "effective_quality_threshold": prefs.effective_quality_threshold(),
        }

    @app.patch("/preferences")
    async def update_preferences(update: PreferencesUpdate):
        try:
            prefs = store.update_preferences(update.model_dump(exclude_none=True))
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))
        return {
            **prefs.to_dict(),
            "acceptance_rate": prefs.acceptance_rate(),
            "effective_quality_threshold": prefs.effective_quality_threshold(),
        }

    return app
