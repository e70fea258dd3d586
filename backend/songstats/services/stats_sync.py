"""Background refresh of song view/like counts.

One pass selects every song whose metrics are older than the staleness
window and walks them strictly one at a time: fetch metadata, write the
database, write the cache, then cool down before the next song so the
upstream service never sees more than one request per cooldown period.
A song that fails to fetch gets the unknown sentinel; nothing that goes
wrong with one song stops the pass.
"""
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Optional

from ..core.cache import StatsCache
from ..core.config import Settings, settings as default_settings
from ..core.database import DatabaseManager, StorageError
from ..models.metrics import StatsSnapshot
from ..models.models import utcnow
from .extractor import ExtractionError, MediaExtractor

logger = logging.getLogger(__name__)


class SyncOutcome(str, Enum):
    UPDATED = "updated"
    EXTRACTION_FAILED = "extraction_failed"
    STORAGE_FAILED = "storage_failed"
    MISSING = "missing"
    ERROR = "error"

    @property
    def failed(self) -> bool:
        return self is not SyncOutcome.UPDATED


@dataclass
class SyncReport:
    started_at: datetime
    cutoff: datetime
    selected: int = 0
    processed: int = 0
    failed: int = 0
    outcomes: Counter = field(default_factory=Counter)
    finished_at: Optional[datetime] = None

    def record(self, outcome: SyncOutcome) -> None:
        self.processed += 1
        self.outcomes[outcome.value] += 1
        if outcome.failed:
            self.failed += 1

    def to_dict(self) -> Dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "cutoff": self.cutoff.isoformat(),
            "selected": self.selected,
            "processed": self.processed,
            "failed": self.failed,
            "outcomes": dict(self.outcomes),
        }


class StatsSynchronizer:
    def __init__(
        self,
        db: DatabaseManager,
        cache: StatsCache,
        extractor: MediaExtractor,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = settings or default_settings
        self.db = db
        self.cache = cache
        self.extractor = extractor
        self.stale_after = timedelta(seconds=settings.SYNC_STALE_AFTER_SECONDS)
        self.cooldown = settings.SYNC_COOLDOWN_SECONDS
        self.cache_ttl = settings.CACHE_TTL_SECONDS
        self.clock = clock

    async def fetch_snapshot(self, media_id: str) -> Optional[StatsSnapshot]:
        """Fetch fresh stats; None when the extractor failed."""
        try:
            info = await self.extractor.fetch_metadata(media_id)
        except ExtractionError as e:
            logger.warning(f"Extraction failed: {e}", extra={"media_id": media_id})
            return None
        return StatsSnapshot.from_metadata(info)

    async def sync_song(self, media_id: str) -> SyncOutcome:
        snapshot = await self.fetch_snapshot(media_id)
        outcome = SyncOutcome.UPDATED
        if snapshot is None:
            snapshot = StatsSnapshot.unknown()
            outcome = SyncOutcome.EXTRACTION_FAILED

        # Database first: the cache may lag the database, never lead it
        try:
            if not await self.db.update_song_metrics(media_id, snapshot):
                return SyncOutcome.MISSING
        except StorageError as e:
            logger.error(f"Could not persist stats: {e}", extra={"media_id": media_id})
            return SyncOutcome.STORAGE_FAILED

        await self.cache.set_snapshot(media_id, snapshot, ttl=self.cache_ttl)
        return outcome

    async def run_pass(self) -> SyncReport:
        """Refresh every stale song once. Raises only if selection fails."""
        started = self.clock()
        report = SyncReport(started_at=started, cutoff=started - self.stale_after)
        songs = await self.db.list_stale_songs(report.cutoff)
        report.selected = len(songs)
        logger.info(f"Stats sync pass started: {len(songs)} stale song(s)", extra={"selected": len(songs)})

        for song in songs:
            media_id = song.media_id
            try:
                outcome = await self.sync_song(media_id)
            except Exception:
                logger.exception(f"Unexpected error syncing {media_id}", extra={"media_id": media_id})
                outcome = SyncOutcome.ERROR
            report.record(outcome)

            message = f"Synced stats for {media_id}: {outcome.value}. Waiting {self.cooldown:g}s..."
            log = logger.info if not outcome.failed else logger.warning
            log(message, extra={"media_id": media_id, "outcome": outcome.value})

            # Rate limit against the upstream service, success or not
            await asyncio.sleep(self.cooldown)

        report.finished_at = self.clock()
        logger.info(
            f"Stats sync pass finished: {report.processed} processed, {report.failed} failed",
            extra={"processed": report.processed, "failed": report.failed},
        )
        return report
