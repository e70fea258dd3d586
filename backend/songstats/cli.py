"""Command-line administration for playlists and songs.

    songstats init-db
    songstats add-playlist "Road Trip" --cover https://example.com/c.jpg
    songstats add-song --playlist "Road Trip" --title "Song" --artist "Band" --media-id dQw4w9WgXcQ
    songstats remove-song dQw4w9WgXcQ
    songstats remove-playlist "Road Trip"
    songstats list
    songstats sync-once
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from .core.cache import StatsCache
from .core.config import Settings, settings as default_settings
from .core.database import DatabaseManager, StorageError
from .core.logging import setup_logging
from .core.redis import close_redis, get_redis
from .models.models import PlaylistOut
from .services.extractor import MediaExtractor
from .services.stats_sync import StatsSynchronizer

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="songstats", description="Manage playlists, songs and stats sync")
    parser.add_argument("--database-url", help="Override DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")

    p = sub.add_parser("add-playlist", help="Create a playlist")
    p.add_argument("name")
    p.add_argument("--cover")

    p = sub.add_parser("remove-playlist", help="Delete a playlist and its songs")
    p.add_argument("name")

    p = sub.add_parser("add-song", help="Add a song to a playlist")
    p.add_argument("--playlist", required=True)
    p.add_argument("--title", required=True)
    p.add_argument("--artist", required=True)
    p.add_argument("--media-id", required=True)
    p.add_argument("--cover")

    p = sub.add_parser("remove-song", help="Delete a song by media id")
    p.add_argument("media_id")

    sub.add_parser("list", help="Print playlists and songs as JSON")
    sub.add_parser("sync-once", help="Run one stats sync pass in the foreground")
    return parser


async def _sync_once(db: DatabaseManager, settings: Settings) -> int:
    client = None
    if settings.REDIS_URL:
        try:
            client = await get_redis(settings.REDIS_URL)
        except Exception as e:
            logger.error(f"Running without stats cache: {e}")
    cache = StatsCache(client, prefix=settings.CACHE_KEY_PREFIX, default_ttl=settings.CACHE_TTL_SECONDS)
    synchronizer = StatsSynchronizer(db, cache, MediaExtractor(settings=settings), settings=settings)
    try:
        report = await synchronizer.run_pass()
    finally:
        await close_redis()
    print(json.dumps(report.to_dict(), indent=2))
    return 0 if report.failed == 0 else 1


async def run(args: argparse.Namespace, settings: Settings) -> int:
    db = DatabaseManager(args.database_url, settings=settings)
    try:
        await db.initialize()
        if args.command == "init-db":
            print("Database ready")
        elif args.command == "add-playlist":
            await db.create_playlist(args.name, cover=args.cover)
            print(f"Added playlist {args.name}")
        elif args.command == "remove-playlist":
            if not await db.delete_playlist(args.name):
                print(f"No playlist named {args.name}", file=sys.stderr)
                return 1
            print(f"Removed playlist {args.name}")
        elif args.command == "add-song":
            await db.create_song(
                args.playlist,
                title=args.title,
                artist=args.artist,
                media_id=args.media_id,
                cover=args.cover,
            )
            print(f"Added song {args.media_id} to {args.playlist}")
        elif args.command == "remove-song":
            if not await db.delete_song(args.media_id):
                print(f"No song with media id {args.media_id}", file=sys.stderr)
                return 1
            print(f"Removed song {args.media_id}")
        elif args.command == "list":
            playlists = await db.list_playlists()
            print(json.dumps([PlaylistOut.from_orm_playlist(p).model_dump(mode="json") for p in playlists], indent=2))
        elif args.command == "sync-once":
            return await _sync_once(db, settings)
        return 0
    except StorageError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await db.close()


def main(argv: Optional[List[str]] = None, settings: Optional[Settings] = None) -> int:
    settings = settings or default_settings
    args = build_parser().parse_args(argv)
    # stdout carries command output
    setup_logging(settings, stream=sys.stderr)
    return asyncio.run(run(args, settings))


if __name__ == "__main__":
    sys.exit(main())
