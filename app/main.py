"""Entry point for the FastAPI-powered recommendation engine."""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import JSONResponse

from .categories import parse_category
from .config import Settings, get_settings
from .database import Database
from .errors import ConfigurationMissing
from .scheduler import RecommendationScheduler
from .services.catalog_store import LibraryCatalog
from .services.collections import CollectionLifecycleManager
from .services.event_bus import MessageBusPublisher, RestProxyPublisher
from .services.events import EventEmitter
from .services.fallback import FallbackRecommender
from .services.identity import IdentityResolver
from .services.playback import PlaybackEventHandler, PlaybackNotification
from .services.recommendations import RecommendationOrchestrator
from .services.scoring import ScoringServiceClient, UnconfiguredScoringService
from .services.sync import SyncOrchestrator, SyncStateStore

logger = logging.getLogger(__name__)

app: FastAPI


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.enable_debug_logging else logging.INFO
    )


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    settings: Settings = fastapi_app.state.settings
    exit_stack = AsyncExitStack()
    scoring_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.scoring_service_url or ""),
            timeout=httpx.Timeout(float(settings.http_timeout_seconds), connect=10.0),
        )
    )
    bus: MessageBusPublisher | None = None
    if settings.bus_enabled:
        bus_http = await exit_stack.enter_async_context(
            httpx.AsyncClient(
                base_url=str(settings.event_bus_url),
                timeout=httpx.Timeout(15.0, connect=5.0),
            )
        )
        bus = RestProxyPublisher(settings, bus_http)
    else:
        logger.warning("Message bus not configured; events go to the scoring service only")

    scoring: ScoringServiceClient | None = None
    upstream: ScoringServiceClient | UnconfiguredScoringService
    try:
        scoring = ScoringServiceClient(settings, scoring_http)
        upstream = scoring
    except ConfigurationMissing as exc:
        # Only the scoring component is lost; fallback recommendations still work.
        logger.error("Scoring service disabled: %s", exc)
        upstream = UnconfiguredScoringService(str(exc))

    try:
        database = Database(settings.database_url)
        await database.create_all()
    except Exception:
        await exit_stack.aclose()
        raise

    catalog = LibraryCatalog(database.session_factory)
    events = EventEmitter(scoring, bus, topic=settings.event_bus_topic)
    collections = CollectionLifecycleManager(catalog, settings)
    recommendations = RecommendationOrchestrator(
        settings,
        catalog,
        upstream,
        IdentityResolver(catalog),
        FallbackRecommender(catalog),
        collections,
        events,
    )
    sync = SyncOrchestrator(
        settings, catalog, upstream, events, SyncStateStore(database.session_factory)
    )
    scheduler = RecommendationScheduler(settings, sync, recommendations)

    fastapi_app.state.database = database
    fastapi_app.state.collection_manager = collections
    fastapi_app.state.recommendation_service = recommendations
    fastapi_app.state.sync_service = sync
    fastapi_app.state.playback_handler = PlaybackEventHandler(
        events, progress_interval_seconds=settings.progress_event_interval_seconds
    )
    fastapi_app.state.scheduler = scheduler
    await scheduler.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await scheduler.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Resolves scored recommendations into per-user collections",
        version="1.0.0",
        lifespan=lifespan,
    )
    fastapi_app.state.settings = settings
    register_routes(fastapi_app)
    return fastapi_app


def get_sync_service(app: FastAPI) -> SyncOrchestrator:
    service = getattr(app.state, "sync_service", None)
    if not isinstance(service, SyncOrchestrator):
        raise RuntimeError("Sync service not initialised")
    return service


def get_recommendation_service(app: FastAPI) -> RecommendationOrchestrator:
    service = getattr(app.state, "recommendation_service", None)
    if not isinstance(service, RecommendationOrchestrator):
        raise RuntimeError("Recommendation service not initialised")
    return service


def get_collection_manager(app: FastAPI) -> CollectionLifecycleManager:
    manager = getattr(app.state, "collection_manager", None)
    if not isinstance(manager, CollectionLifecycleManager):
        raise RuntimeError("Collection manager not initialised")
    return manager


def get_playback_handler(app: FastAPI) -> PlaybackEventHandler:
    handler = getattr(app.state, "playback_handler", None)
    if not isinstance(handler, PlaybackEventHandler):
        raise RuntimeError("Playback handler not initialised")
    return handler


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.post("/sync")
    async def sync_all() -> JSONResponse:
        report = await get_sync_service(fastapi_app).trigger_sync()
        return JSONResponse(report.to_payload())

    @fastapi_app.post("/sync/users")
    async def sync_users() -> JSONResponse:
        report = await get_sync_service(fastapi_app).trigger_user_sync()
        return JSONResponse(report.to_payload())

    @fastapi_app.post("/sync/content")
    async def sync_content() -> JSONResponse:
        report = await get_sync_service(fastapi_app).trigger_content_sync()
        return JSONResponse(report.to_payload())

    @fastapi_app.get("/test")
    async def test_connection() -> JSONResponse:
        report = await get_sync_service(fastapi_app).test_connection()
        return JSONResponse(report.to_payload())

    @fastapi_app.post("/recommendations/generate")
    async def generate_recommendations(
        user_id: str | None = Query(default=None, alias="userId"),
    ) -> JSONResponse:
        service = get_recommendation_service(fastapi_app)
        summary = await service.trigger(user_id or None)
        return JSONResponse(summary.to_payload())

    @fastapi_app.get("/recommendations/{user_id}/home")
    async def home_screen(
        user_id: str,
        category: str | None = None,
        limit: int | None = Query(default=None, ge=1, le=100),
    ) -> dict[str, Any]:
        try:
            parsed = parse_category(category)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        service = get_recommendation_service(fastapi_app)
        items = await service.get_home_screen_recommendations(user_id, parsed, limit)
        return {
            "userId": user_id,
            "category": parsed.value if parsed else None,
            "items": [item.to_payload() for item in items],
        }

    @fastapi_app.get("/collections/{user_id}")
    async def list_collections(user_id: str) -> dict[str, Any]:
        manager = get_collection_manager(fastapi_app)
        collections = await manager.list_collections(user_id)
        return {
            "userId": user_id,
            "collections": [collection.to_payload() for collection in collections],
        }

    @fastapi_app.post("/events/playback")
    async def playback_event(notification: PlaybackNotification) -> dict[str, bool]:
        delivered = await get_playback_handler(fastapi_app).handle(notification)
        return {"delivered": delivered}


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=_settings.server_host,
        port=_settings.server_port,
        reload=_settings.environment == "development",
    )
