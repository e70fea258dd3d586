from sqlalchemy import event, func, select, update, delete
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import selectinload
from typing import Dict, List, Optional
from datetime import datetime
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential
import logging

from .config import Settings, settings as default_settings
from ..models.models import Base, Playlist, Song, utcnow
from ..models.metrics import StatsSnapshot

logger = logging.getLogger(__name__)

class StorageError(Exception):
    pass

def get_async_database_url(url: str) -> str:
    """Convert DATABASE_URL to async format if needed"""
    if url.startswith('postgresql://'):
        url = url.replace('postgresql://', 'postgresql+asyncpg://', 1)
    elif url.startswith('postgres://'):
        url = url.replace('postgres://', 'postgresql+asyncpg://', 1)
    elif url.startswith('sqlite://') and not url.startswith('sqlite+'):
        url = url.replace('sqlite://', 'sqlite+aiosqlite://', 1)
    return url

def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()

class DatabaseManager:
    def __init__(self, database_url: Optional[str] = None, settings: Optional[Settings] = None):
        settings = settings or default_settings
        self.database_url = get_async_database_url(database_url or settings.DATABASE_URL)
        self.write_attempts = settings.STORAGE_WRITE_ATTEMPTS
        self.engine = create_async_engine(self.database_url)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.SessionLocal = async_sessionmaker(self.engine, expire_on_commit=False)

    async def initialize(self):
        """Create tables if they don't exist yet"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized", extra={"database": self.engine.dialect.name})

    async def close(self):
        await self.engine.dispose()

    async def ping(self) -> bool:
        async with self.engine.connect() as conn:
            await conn.execute(select(1))
        return True

    # Administrative operations

    async def create_playlist(self, name: str, cover: Optional[str] = None) -> Playlist:
        async with self.SessionLocal() as session:
            try:
                playlist = Playlist(name=name, cover=cover)
                session.add(playlist)
                await session.commit()
                logger.info(f"Created playlist {name!r}")
                return playlist
            except IntegrityError as e:
                await session.rollback()
                raise StorageError(f"Playlist {name!r} already exists") from e
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database error creating playlist {name!r}: {str(e)}")
                raise StorageError(f"Error creating playlist: {str(e)}") from e

    async def delete_playlist(self, name: str) -> bool:
        """Delete a playlist and all of its songs"""
        async with self.SessionLocal() as session:
            try:
                result = await session.execute(
                    select(Playlist).options(selectinload(Playlist.songs)).where(Playlist.name == name)
                )
                playlist = result.scalar_one_or_none()
                if playlist is None:
                    return False
                await session.delete(playlist)
                await session.commit()
                logger.info(f"Deleted playlist {name!r}")
                return True
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database error deleting playlist {name!r}: {str(e)}")
                raise StorageError(f"Error deleting playlist: {str(e)}") from e

    async def create_song(
        self,
        playlist: str,
        title: str,
        artist: str,
        media_id: str,
        cover: Optional[str] = None,
        updated_at: Optional[datetime] = None,
    ) -> Song:
        async with self.SessionLocal() as session:
            try:
                result = await session.execute(select(Playlist).where(Playlist.name == playlist))
                playlist_row = result.scalar_one_or_none()
                if playlist_row is None:
                    raise StorageError(f"Playlist {playlist!r} not found")

                now = utcnow()
                song = Song(
                    title=title,
                    artist=artist,
                    cover=cover,
                    media_id=media_id,
                    playlist_id=playlist_row.id,
                    created_at=now,
                    updated_at=updated_at or now,
                )
                session.add(song)
                await session.commit()
                logger.info(f"Created song {media_id!r} in playlist {playlist!r}")
                return song
            except IntegrityError as e:
                await session.rollback()
                raise StorageError(f"Song {media_id!r} already exists") from e
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database error creating song {media_id!r}: {str(e)}")
                raise StorageError(f"Error creating song: {str(e)}") from e

    async def delete_song(self, media_id: str) -> bool:
        async with self.SessionLocal() as session:
            try:
                result = await session.execute(delete(Song).where(Song.media_id == media_id))
                await session.commit()
                return result.rowcount > 0
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database error deleting song {media_id!r}: {str(e)}")
                raise StorageError(f"Error deleting song: {str(e)}") from e

    # Reads

    async def get_song(self, media_id: str) -> Optional[Song]:
        async with self.SessionLocal() as session:
            try:
                result = await session.execute(select(Song).where(Song.media_id == media_id))
                return result.scalar_one_or_none()
            except SQLAlchemyError as e:
                logger.error(f"Database error loading song {media_id!r}: {str(e)}")
                raise StorageError(f"Error loading song: {str(e)}") from e

    async def list_playlists(self) -> List[Playlist]:
        async with self.SessionLocal() as session:
            try:
                result = await session.execute(
                    select(Playlist).options(selectinload(Playlist.songs)).order_by(Playlist.id)
                )
                return list(result.scalars().all())
            except SQLAlchemyError as e:
                logger.error(f"Database error listing playlists: {str(e)}")
                raise StorageError(f"Error listing playlists: {str(e)}") from e

    async def list_stale_songs(self, cutoff: datetime) -> List[Song]:
        """Snapshot of every song last updated before `cutoff`, in id order."""
        async with self.SessionLocal() as session:
            try:
                result = await session.execute(
                    select(Song).where(Song.updated_at < cutoff).order_by(Song.id)
                )
                return list(result.scalars().all())
            except SQLAlchemyError as e:
                logger.error(f"Database error selecting stale songs: {str(e)}")
                raise StorageError(f"Error selecting stale songs: {str(e)}") from e

    async def get_stats(self) -> Dict[str, int]:
        async with self.SessionLocal() as session:
            try:
                playlists = await session.scalar(select(func.count(Playlist.id)))
                songs = await session.scalar(select(func.count(Song.id)))
                unknown = await session.scalar(
                    select(func.count(Song.id)).where((Song.views.is_(None)) | (Song.likes.is_(None)))
                )
                return {
                    "playlists": playlists or 0,
                    "songs": songs or 0,
                    "songs_with_unknown_metrics": unknown or 0,
                }
            except SQLAlchemyError as e:
                logger.error(f"Database error collecting stats: {str(e)}")
                raise StorageError(f"Error collecting stats: {str(e)}") from e

    # Metrics writes (synchronizer only)

    async def update_song_metrics(self, media_id: str, snapshot: StatsSnapshot) -> bool:
        """Overwrite views/likes for one song and refresh its updated_at.

        Returns False when no song has this media id (deleted meanwhile).
        Transient OperationalErrors are retried before giving up.
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.write_attempts),
                wait=wait_exponential(multiplier=0.5, max=4),
                retry=retry_if_exception_type(OperationalError),
                reraise=True,
            ):
                with attempt:
                    # updated_at is the time of the attempt that commits
                    stmt = (
                        update(Song)
                        .where(Song.media_id == media_id)
                        .values(
                            views=snapshot.views.to_column(),
                            likes=snapshot.likes.to_column(),
                            updated_at=utcnow(),
                        )
                    )
                    async with self.SessionLocal() as session:
                        result = await session.execute(stmt)
                        await session.commit()
            return result.rowcount > 0
        except SQLAlchemyError as e:
            logger.error(f"Database error updating metrics for {media_id!r}: {str(e)}")
            raise StorageError(f"Error updating metrics for {media_id!r}: {str(e)}") from e
