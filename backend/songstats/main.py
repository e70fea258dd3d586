from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from .api.endpoints import health, playlists, songs, sync
from .core.cache import StatsCache
from .core.config import Settings, settings as default_settings
from .core.database import DatabaseManager
from .core.logging import setup_logging
from .core.redis import close_redis, get_redis
from .core.tasks import StatsSyncScheduler
from .services.extractor import MediaExtractor
from .services.stats_sync import StatsSynchronizer
import logging

logger = logging.getLogger(__name__)

async def _connect_cache(settings: Settings) -> StatsCache:
    """Redis is advisory: run without a cache rather than refuse to start"""
    if not settings.REDIS_URL:
        logger.warning("REDIS_URL not set; stats cache disabled")
        return StatsCache(None, prefix=settings.CACHE_KEY_PREFIX, default_ttl=settings.CACHE_TTL_SECONDS)
    try:
        client = await get_redis(settings.REDIS_URL)
    except Exception as e:
        logger.error(f"Stats cache disabled, Redis unavailable: {e}")
        client = None
    return StatsCache(client, prefix=settings.CACHE_KEY_PREFIX, default_ttl=settings.CACHE_TTL_SECONDS)

def create_app(
    settings: Optional[Settings] = None,
    *,
    db: Optional[DatabaseManager] = None,
    cache: Optional[StatsCache] = None,
    extractor: Optional[MediaExtractor] = None,
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize services on startup, stop the sync job on shutdown"""
        database = db or DatabaseManager(settings=settings)
        await database.initialize()
        stats_cache = cache or await _connect_cache(settings)
        synchronizer = StatsSynchronizer(
            database,
            stats_cache,
            extractor or MediaExtractor(settings=settings),
            settings=settings,
        )
        scheduler = StatsSyncScheduler(synchronizer, settings.SYNC_INTERVAL_SECONDS)

        app.state.db = database
        app.state.cache = stats_cache
        app.state.scheduler = scheduler

        if settings.SYNC_ENABLED:
            await scheduler.start()
        else:
            logger.info("Background stats sync disabled")

        try:
            yield
        finally:
            await scheduler.stop()
            if cache is None:
                await close_redis()
            if db is None:
                await database.close()
            logger.info("Application shutdown")

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Playlist song stats kept fresh by a background yt-dlp sync job",
        version=settings.VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Include routers
    app.include_router(health.router, prefix=settings.API_V1_STR, tags=["health"])
    app.include_router(playlists.router, prefix=f"{settings.API_V1_STR}/playlists", tags=["playlists"])
    app.include_router(songs.router, prefix=f"{settings.API_V1_STR}/songs", tags=["songs"])
    app.include_router(sync.router, prefix=f"{settings.API_V1_STR}/sync", tags=["sync"])

    @app.get("/")
    def root():
        """Root endpoint"""
        return {
            "message": f"Welcome to the {settings.PROJECT_NAME} API",
            "docs_url": "/docs",
        }

    return app

setup_logging()
app = create_app()
