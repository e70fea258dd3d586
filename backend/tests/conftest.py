import pytest
import sys
import time
from datetime import timedelta
from typing import Any, Dict, Optional
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import update

from songstats.core.cache import StatsCache
from songstats.core.config import Settings
from songstats.core.database import DatabaseManager
from songstats.models.models import Song, utcnow

class FakeRedis:
    """In-memory stand-in for redis.asyncio.Redis with a manual clock for TTLs."""

    def __init__(self, fail: bool = False):
        self.store: Dict[str, Any] = {}
        self.expiry: Dict[str, float] = {}
        self.now = 0.0
        self.fail = fail

    def advance(self, seconds: float):
        self.now += seconds

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")

    def _expired(self, key: str) -> bool:
        deadline = self.expiry.get(key)
        return deadline is not None and self.now >= deadline

    async def get(self, key):
        self._check()
        if key not in self.store or self._expired(key):
            return None
        return self.store[key]

    async def set(self, key, value, ex=None, nx=False):
        self._check()
        if nx and key in self.store and not self._expired(key):
            return None
        self.store[key] = value
        if ex is not None:
            self.expiry[key] = self.now + ex
        else:
            self.expiry.pop(key, None)
        return True

    async def ping(self):
        self._check()
        return True

    async def info(self):
        self._check()
        return {"redis_version": "7.2.4", "keyspace_hits": 0, "keyspace_misses": 0}

class FakeExtractor:
    """Scripted extractor: media id -> metadata dict or exception to raise."""

    command = ["fake-extractor"]

    def __init__(self, responses: Optional[Dict[str, Any]] = None, default: Optional[Dict[str, Any]] = None):
        self.responses = responses or {}
        self.default = default if default is not None else {"view_count": 1, "like_count": 1}
        self.calls = []

    async def fetch_metadata(self, media_id: str) -> Dict[str, Any]:
        self.calls.append((media_id, time.monotonic()))
        result = self.responses.get(media_id, self.default)
        if isinstance(result, Exception):
            raise result
        return result

    @property
    def called_ids(self):
        return [media_id for media_id, _ in self.calls]

@pytest.fixture
def test_settings(tmp_path):
    """Settings pointing at a throwaway SQLite file with no waiting between songs."""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'songstats_test.db'}",
        REDIS_URL=None,
        SYNC_ENABLED=False,
        SYNC_INTERVAL_SECONDS=60,
        SYNC_STALE_AFTER_SECONDS=600,
        SYNC_COOLDOWN_SECONDS=0,
        CACHE_TTL_SECONDS=60,
        STORAGE_WRITE_ATTEMPTS=1,
    )

@pytest.fixture
async def db(test_settings):
    manager = DatabaseManager(settings=test_settings)
    await manager.initialize()
    yield manager
    await manager.close()

@pytest.fixture
def fake_redis():
    return FakeRedis()

@pytest.fixture
def cache(fake_redis, test_settings):
    return StatsCache(fake_redis, prefix=test_settings.CACHE_KEY_PREFIX, default_ttl=test_settings.CACHE_TTL_SECONDS)

@pytest.fixture
def fake_extractor():
    return FakeExtractor()

@pytest.fixture
def extractor_script(tmp_path):
    """A stand-in for the yt-dlp executable whose behaviour depends on the video id."""
    script = tmp_path / "fake_ytdlp.py"
    script.write_text(
        "import json, sys, time\n"
        "url = sys.argv[-1]\n"
        "media_id = url.rsplit('=', 1)[-1]\n"
        "if media_id == 'slow':\n"
        "    time.sleep(30)\n"
        "elif media_id == 'broken':\n"
        "    sys.stderr.write('ERROR: [youtube] broken: Video unavailable\\n')\n"
        "    sys.exit(1)\n"
        "elif media_id == 'garbage':\n"
        "    print('this is not json')\n"
        "elif media_id == 'list':\n"
        "    print('[]')\n"
        "else:\n"
        "    print(json.dumps({'id': media_id, 'view_count': 150, 'like_count': 12, 'args': sys.argv[1:-1]}))\n"
    )
    return [sys.executable, str(script)]

async def add_song(
    db: DatabaseManager,
    media_id: str,
    *,
    playlist: str = "Road Trip",
    age: timedelta = timedelta(minutes=11),
    views: Optional[int] = 0,
    likes: Optional[int] = 0,
) -> None:
    """Create a song (and its playlist if needed) last updated `age` ago."""
    playlists = {p.name for p in await db.list_playlists()}
    if playlist not in playlists:
        await db.create_playlist(playlist, cover=f"https://img.example/{playlist}.jpg")
    await db.create_song(playlist, title=f"Title {media_id}", artist="Artist", media_id=media_id)
    async with db.SessionLocal() as session:
        await session.execute(
            update(Song)
            .where(Song.media_id == media_id)
            .values(views=views, likes=likes, updated_at=utcnow() - age)
        )
        await session.commit()

@pytest.fixture(name="add_song")
def add_song_fixture():
    return add_song
