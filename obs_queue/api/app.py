"""FastAPI application factory"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from cachetools import TTLCache  # type: ignore[import-untyped]
from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles

from obs_queue import __version__
from obs_queue.api.routers import auth_router, queue_router, status_router
from obs_queue.core.config import Settings, get_settings
from obs_queue.core.errors import NotFoundError, TwitchAPIError, UnauthorizedError
from obs_queue.services import (
    AdmissionService,
    ProfileService,
    QueueService,
    TokenService,
    TwitchAPIClient,
)
from obs_queue.services.housekeeping import sweep_processed_messages
from obs_queue.shared.database import DatabaseManager
from obs_queue.shared.migrations import MigrationRunner
from obs_queue.shared.repositories import (
    AppStateRepository,
    ProcessedMessageRepository,
    QueueRepository,
    UserCacheRepository,
)
from obs_queue.twitch.eventsub import EventSubClient

logger = logging.getLogger(__name__)

# Pages served from STATIC_DIR
_PAGES = {
    "/obs": "obs.html",
    "/admin": "admin.html",
    "/admin/rewards": "rewards.html",
    "/admin/css": "css_creator.html",
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle startup and shutdown"""
    settings: Settings = app.state.settings

    # Startup
    logger.info("Starting obs-queue server")
    if not settings.has_twitch_credentials:
        logger.warning("CLIENT_ID / CLIENT_SECRET are empty; OAuth will not work")
    if not settings.target_reward_id:
        logger.warning("TARGET_REWARD_ID is not set; redemptions are logged, not enqueued")

    db_manager = DatabaseManager(settings.database_url)
    await db_manager.connect()
    await MigrationRunner(db_manager.pool).run_pending()
    pool = db_manager.pool

    twitch = TwitchAPIClient(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        redirect_url=settings.redirect_url,
    )
    tokens = TokenService(AppStateRepository(pool), twitch)
    queue = QueueService(QueueRepository(pool), settings.participation_window_secs)
    profiles = ProfileService(
        UserCacheRepository(pool), twitch, tokens, settings.user_cache_ttl_secs
    )
    ledger = ProcessedMessageRepository(pool)
    admission = AdmissionService(
        ledger,
        queue,
        profiles,
        target_reward_id=settings.target_reward_id,
        cancel_reward_id=settings.cancel_reward_id,
    )
    eventsub = EventSubClient(
        tokens,
        twitch,
        admission,
        ws_url=settings.eventsub_ws_url,
        target_reward_id=settings.target_reward_id,
        cancel_reward_id=settings.cancel_reward_id,
    )

    app.state.db_manager = db_manager
    app.state.twitch_api = twitch
    app.state.token_service = tokens
    app.state.queue_service = queue

    tasks = [
        asyncio.create_task(eventsub.run_forever(), name="eventsub"),
        asyncio.create_task(
            sweep_processed_messages(ledger, settings.processed_message_ttl_secs),
            name="ledger-sweep",
        ),
    ]
    logger.info(f"Listening on http://{settings.host}:{settings.port}")

    yield

    # Shutdown
    logger.info("Shutting down obs-queue server")
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)
    try:
        await twitch.close()
        await db_manager.disconnect()
        logger.info("Database disconnected")
    except Exception as e:
        logger.exception(f"Error during shutdown: {e}")
    app.state.db_manager = None


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(UnauthorizedError)
    async def unauthorized(request: Request, exc: UnauthorizedError) -> JSONResponse:
        return JSONResponse(status_code=401, content={"detail": str(exc)})

    @app.exception_handler(TwitchAPIError)
    async def twitch_error(request: Request, exc: TwitchAPIError) -> JSONResponse:
        logger.warning(f"Twitch API error on {request.url.path}: {exc}")
        return JSONResponse(status_code=502, content={"detail": "Twitch API request failed"})

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Internal error"})


def _file_endpoint(file_path: Path):
    async def page() -> FileResponse:
        return FileResponse(file_path)

    return page


def _mount_static(app: FastAPI, settings: Settings) -> None:
    static_dir = settings.static_dir
    if not static_dir.is_dir():
        logger.warning(f"Static directory {static_dir} not found; overlay/admin pages disabled")
        return

    for path, filename in _PAGES.items():
        app.add_api_route(
            path, _file_endpoint(static_dir / filename), methods=["GET"], include_in_schema=False
        )

    assets_dir = static_dir / "assets"
    if assets_dir.is_dir():
        app.mount("/assets", StaticFiles(directory=assets_dir), name="assets")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application"""
    settings = settings or get_settings()

    app = FastAPI(
        title="obs-queue",
        description="Fairness-ordered Twitch channel point queue for OBS overlays",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    # CSRF states for in-flight OAuth logins
    app.state.oauth_states = TTLCache(maxsize=64, ttl=600)

    _register_exception_handlers(app)

    # Register routers
    app.include_router(auth_router.router)
    app.include_router(status_router.router)
    app.include_router(queue_router.router)

    @app.get("/", include_in_schema=False)
    async def root() -> RedirectResponse:
        return RedirectResponse("/admin", status_code=307)

    # Liveness probe, includes DB health when connected
    @app.get("/health")
    async def health(request: Request) -> dict:
        db_manager = getattr(request.app.state, "db_manager", None)
        db_ok = db_manager is not None and await db_manager.check_health()
        return {"status": "healthy", "db_connected": db_ok}

    _mount_static(app, settings)

    logger.info("FastAPI application configured")

    return app
