import uvicorn
from songstats.core.config import settings

# Configure logging for uvicorn
log_config = uvicorn.config.LOGGING_CONFIG
log_config["formatters"]["access"]["fmt"] = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
log_config["formatters"]["default"]["fmt"] = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

if __name__ == "__main__":
    print(f"Starting server on {settings.HOST}:{settings.PORT}")
    print(f"Environment: {settings.ENVIRONMENT}")
    print(f"Stats sync every {settings.SYNC_INTERVAL_SECONDS:g}s, "
          f"stale after {settings.SYNC_STALE_AFTER_SECONDS:g}s, "
          f"cooldown {settings.SYNC_COOLDOWN_SECONDS:g}s")
    print(f"API docs available at: http://{settings.HOST}:{settings.PORT}/docs")

    # A single process: the sync job must not run once per worker
    uvicorn.run(
        "songstats.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
        log_config=log_config,
        access_log=True
    )
