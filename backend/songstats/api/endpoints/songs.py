from fastapi import APIRouter, Depends, HTTPException
import logging

from ..deps import get_cache, get_db_manager
from ...core.cache import StatsCache
from ...core.database import DatabaseManager, StorageError
from ...models.models import SongStats

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("/{media_id}/stats", response_model=SongStats)
async def get_song_stats(
    media_id: str,
    db: DatabaseManager = Depends(get_db_manager),
    cache: StatsCache = Depends(get_cache),
) -> SongStats:
    """Views/likes for one song: cache first, database on a miss"""
    cached = await cache.get_snapshot(media_id)
    if cached is not None:
        return SongStats.from_snapshot(media_id, cached, source="cache")

    try:
        song = await db.get_song(media_id)
    except StorageError as e:
        logger.error(f"Error loading stats for {media_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to load song stats")
    if song is None:
        raise HTTPException(status_code=404, detail=f"Unknown media id: {media_id}")

    snapshot = song.snapshot
    await cache.set_snapshot(media_id, snapshot, nx=True)
    return SongStats.from_snapshot(media_id, snapshot, source="database")
