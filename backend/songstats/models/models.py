from sqlalchemy import BigInteger, Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import declarative_base, relationship
from datetime import datetime, timezone
from typing import List, Optional, Union
from pydantic import BaseModel

from .metrics import MetricValue, StatsSnapshot

Base = declarative_base()

def utcnow() -> datetime:
    """Naive UTC timestamp, the form the timestamp columns are stored in."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

class Playlist(Base):
    __tablename__ = "playlists"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True, index=True)
    cover = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    songs = relationship(
        "Song",
        back_populates="playlist",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Song.id",
    )

    def __repr__(self):
        return f"<Playlist(id={self.id}, name='{self.name}')>"

class Song(Base):
    __tablename__ = "songs"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    artist = Column(String, nullable=False)
    cover = Column(String, nullable=True)
    media_id = Column(String, nullable=False, unique=True, index=True)
    # NULL means the last fetch failed (unknown), never zero
    views = Column(BigInteger, nullable=True, default=0)
    likes = Column(BigInteger, nullable=True, default=0)
    playlist_id = Column(Integer, ForeignKey("playlists.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    playlist = relationship("Playlist", back_populates="songs")

    @property
    def snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(
            views=MetricValue.from_column(self.views),
            likes=MetricValue.from_column(self.likes),
        )

    def __repr__(self):
        return f"<Song(id={self.id}, media_id='{self.media_id}', title='{self.title}')>"

# Pydantic models for API
MetricOut = Union[int, str]

class SongStats(BaseModel):
    media_id: str
    views: MetricOut
    likes: MetricOut
    source: str

    @classmethod
    def from_snapshot(cls, media_id: str, snapshot: StatsSnapshot, source: str) -> "SongStats":
        return cls(media_id=media_id, source=source, **snapshot.to_json())

class SongOut(BaseModel):
    title: str
    artist: str
    cover: Optional[str] = None
    media_id: str
    views: MetricOut
    likes: MetricOut
    updated_at: datetime

    @classmethod
    def from_orm_song(cls, song: Song) -> "SongOut":
        return cls(
            title=song.title,
            artist=song.artist,
            cover=song.cover,
            media_id=song.media_id,
            updated_at=song.updated_at,
            **song.snapshot.to_json(),
        )

class PlaylistOut(BaseModel):
    name: str
    cover: Optional[str] = None
    songs: List[SongOut]

    @classmethod
    def from_orm_playlist(cls, playlist: Playlist) -> "PlaylistOut":
        return cls(
            name=playlist.name,
            cover=playlist.cover,
            songs=[SongOut.from_orm_song(song) for song in playlist.songs],
        )

class PlaylistList(BaseModel):
    playlists: List[PlaylistOut]
