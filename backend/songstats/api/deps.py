from fastapi import Request
from ..core.cache import StatsCache
from ..core.database import DatabaseManager
from ..core.tasks import StatsSyncScheduler

def get_db_manager(request: Request) -> DatabaseManager:
    return request.app.state.db

def get_cache(request: Request) -> StatsCache:
    return request.app.state.cache

def get_scheduler(request: Request) -> StatsSyncScheduler:
    return request.app.state.scheduler
