from fastapi import APIRouter, Depends, HTTPException
import logging

from ..deps import get_db_manager
from ...core.database import DatabaseManager, StorageError
from ...models.models import PlaylistList, PlaylistOut

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("", response_model=PlaylistList)
async def list_playlists(db: DatabaseManager = Depends(get_db_manager)) -> PlaylistList:
    """All playlists with their songs and last synced metrics"""
    try:
        playlists = await db.list_playlists()
    except StorageError as e:
        logger.error(f"Error listing playlists: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to list playlists")
    return PlaylistList(playlists=[PlaylistOut.from_orm_playlist(p) for p in playlists])
