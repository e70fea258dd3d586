from fastapi import APIRouter, Depends, Request
from typing import Dict
from urllib.parse import urlparse
import logging

from ..deps import get_cache, get_db_manager, get_scheduler
from ...core.cache import StatsCache
from ...core.database import DatabaseManager
from ...core.tasks import StatsSyncScheduler
from ...services.extractor import MediaExtractor

logger = logging.getLogger(__name__)

router = APIRouter()

def get_redacted_url(url: str | None) -> str:
    """Return a redacted version of the URL with password hidden."""
    if not url:
        return "not set"
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.netloc.replace(parsed.password, "***")
            return url.replace(parsed.netloc, netloc)
        return url
    except ValueError as e:
        logger.error(f"Error redacting URL: {e}")
        return "invalid url format"

@router.get("/health")
async def health_check(
    request: Request,
    db: DatabaseManager = Depends(get_db_manager),
    cache: StatsCache = Depends(get_cache),
    scheduler: StatsSyncScheduler = Depends(get_scheduler),
) -> Dict:
    """Health check: database, Redis cache, extractor and sync job"""
    response = {
        "status": "healthy",
        "database": {"status": "unknown", "dialect": db.engine.dialect.name, "error": None},
        "redis": {"status": "unknown", "version": None,
                  "url": get_redacted_url(request.app.state.settings.REDIS_URL)},
        "extractor": {"command": " ".join(scheduler.synchronizer.extractor.command),
                      "version": MediaExtractor.version()},
        "sync": {"scheduler_running": scheduler.is_running, "sync_in_progress": scheduler.is_syncing},
    }

    # Check database
    try:
        await db.ping()
        response["database"]["status"] = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {str(e)}")
        response["database"].update({"status": "unhealthy", "error": f"Database connection failed: {str(e)}"})
        response["status"] = "unhealthy"

    # Check Redis; the cache is advisory so an outage only degrades the service
    if not cache.enabled:
        response["redis"]["status"] = "not configured"
        if response["status"] == "healthy":
            response["status"] = "degraded"
    elif await cache.ping():
        info = await cache.get_info()
        response["redis"].update({"status": "healthy", "version": info.get("version", "unknown")})
    else:
        response["redis"]["status"] = "unhealthy"
        if response["status"] == "healthy":
            response["status"] = "degraded"

    return response
