from fastapi import APIRouter, Depends, HTTPException, status
from typing import Dict
import logging

from ..deps import get_db_manager, get_scheduler
from ...core.database import DatabaseManager, StorageError
from ...core.tasks import StatsSyncScheduler, SyncAlreadyRunning

router = APIRouter()
logger = logging.getLogger(__name__)

@router.get("/status")
async def sync_status(
    db: DatabaseManager = Depends(get_db_manager),
    scheduler: StatsSyncScheduler = Depends(get_scheduler),
) -> Dict:
    """Scheduler state, last pass report and store counts"""
    response = scheduler.status()
    try:
        response["store"] = await db.get_stats()
    except StorageError as e:
        logger.error(f"Error collecting store stats: {str(e)}")
        response["store"] = None
    return response

@router.post("/run", status_code=status.HTTP_202_ACCEPTED)
async def run_sync(scheduler: StatsSyncScheduler = Depends(get_scheduler)) -> Dict:
    """Start a sync pass now instead of waiting for the next tick"""
    try:
        scheduler.trigger()
    except SyncAlreadyRunning as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    logger.info("Manual stats sync pass started")
    return {"status": "started"}
