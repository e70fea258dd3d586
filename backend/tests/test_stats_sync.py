import asyncio
import json
import time
from datetime import timedelta

import pytest

from songstats.core.database import StorageError
from songstats.models.metrics import StatsSnapshot
from songstats.models.models import Song, utcnow
from songstats.services.extractor import ExtractionError
from songstats.services.stats_sync import StatsSynchronizer, SyncOutcome


@pytest.fixture
def make_synchronizer(db, cache, test_settings):
    def _make(extractor, **overrides):
        settings = test_settings.model_copy(update=overrides)
        return StatsSynchronizer(db, cache, extractor, settings=settings)
    return _make


async def test_stale_song_is_refreshed(db, fake_redis, fake_extractor, make_synchronizer, add_song):
    await add_song(db, "abc123", views=100, likes=10, age=timedelta(minutes=11))
    fake_extractor.responses["abc123"] = {"view_count": 150, "like_count": 12}
    before = utcnow()

    report = await make_synchronizer(fake_extractor).run_pass()

    song = await db.get_song("abc123")
    assert (song.views, song.likes) == (150, 12)
    assert song.updated_at >= before
    assert json.loads(fake_redis.store["ytstats:abc123"]) == {"views": 150, "likes": 12}
    assert fake_redis.expiry["ytstats:abc123"] == 60
    assert report.selected == 1
    assert report.processed == 1
    assert report.failed == 0
    assert report.outcomes == {"updated": 1}


async def test_fresh_song_is_left_alone(db, fake_redis, fake_extractor, make_synchronizer, add_song):
    await add_song(db, "fresh", views=100, likes=10, age=timedelta(minutes=5))

    report = await make_synchronizer(fake_extractor).run_pass()

    assert fake_extractor.calls == []
    assert report.selected == 0
    song = await db.get_song("fresh")
    assert (song.views, song.likes) == (100, 10)
    assert fake_redis.store == {}


async def test_extraction_failure_records_unknown(db, fake_redis, fake_extractor, make_synchronizer, add_song):
    await add_song(db, "xyz789", views=100, likes=10)
    await add_song(db, "abc123", views=100, likes=10)
    fake_extractor.responses["xyz789"] = ExtractionError("xyz789", "Video unavailable")
    fake_extractor.responses["abc123"] = {"view_count": 150, "like_count": 12}

    report = await make_synchronizer(fake_extractor).run_pass()

    failed = await db.get_song("xyz789")
    assert failed.views is None and failed.likes is None
    assert failed.snapshot == StatsSnapshot.unknown()
    assert json.loads(fake_redis.store["ytstats:xyz789"]) == {"views": "unknown", "likes": "unknown"}

    # The failure does not stop the pass
    assert fake_extractor.called_ids == ["xyz789", "abc123"]
    assert (await db.get_song("abc123")).views == 150
    assert report.processed == 2
    assert report.failed == 1
    assert report.outcomes == {"extraction_failed": 1, "updated": 1}


async def test_missing_fields_become_unknown(db, fake_extractor, make_synchronizer, add_song):
    await add_song(db, "abc123", views=100, likes=10)
    fake_extractor.responses["abc123"] = {"view_count": 5}

    report = await make_synchronizer(fake_extractor).run_pass()

    song = await db.get_song("abc123")
    assert song.views == 5
    assert song.likes is None
    assert report.outcomes == {"updated": 1}


async def test_songs_are_processed_in_order_with_cooldown(db, fake_extractor, make_synchronizer, add_song):
    for media_id in ("s1", "s2", "s3"):
        await add_song(db, media_id)
    cooldown = 0.1

    started = time.monotonic()
    report = await make_synchronizer(fake_extractor, SYNC_COOLDOWN_SECONDS=cooldown).run_pass()
    elapsed = time.monotonic() - started

    assert fake_extractor.called_ids == ["s1", "s2", "s3"]
    gaps = [b[1] - a[1] for a, b in zip(fake_extractor.calls, fake_extractor.calls[1:])]
    assert all(gap >= cooldown * 0.9 for gap in gaps)
    assert elapsed >= 2 * cooldown * 0.9
    assert report.processed == 3


async def test_repeated_pass_is_idempotent(db, fake_redis, fake_extractor, make_synchronizer, add_song):
    await add_song(db, "abc123", views=100, likes=10)
    fake_extractor.responses["abc123"] = {"view_count": 150, "like_count": 12}
    # Zero staleness window: every song is stale on every pass
    synchronizer = make_synchronizer(fake_extractor, SYNC_STALE_AFTER_SECONDS=0)

    await synchronizer.run_pass()
    first = (await db.get_song("abc123")).snapshot
    await asyncio.sleep(0.01)
    await synchronizer.run_pass()
    second = (await db.get_song("abc123")).snapshot

    assert first == second
    assert second.to_json() == {"views": 150, "likes": 12}
    assert json.loads(fake_redis.store["ytstats:abc123"]) == {"views": 150, "likes": 12}
    assert len(fake_extractor.calls) == 2


async def test_refreshed_song_is_not_selected_again(db, fake_extractor, make_synchronizer, add_song):
    await add_song(db, "abc123")
    synchronizer = make_synchronizer(fake_extractor)

    await synchronizer.run_pass()
    report = await synchronizer.run_pass()

    assert report.selected == 0
    assert fake_extractor.called_ids == ["abc123"]


async def test_storage_failure_skips_cache_and_continues(
    db, fake_redis, fake_extractor, make_synchronizer, add_song, mocker
):
    await add_song(db, "bad")
    await add_song(db, "good")
    real_update = db.update_song_metrics

    async def flaky_update(media_id, snapshot):
        if media_id == "bad":
            raise StorageError("database is locked")
        return await real_update(media_id, snapshot)

    mocker.patch.object(db, "update_song_metrics", side_effect=flaky_update)

    report = await make_synchronizer(fake_extractor).run_pass()

    assert "ytstats:bad" not in fake_redis.store
    assert "ytstats:good" in fake_redis.store
    assert report.outcomes == {"storage_failed": 1, "updated": 1}
    assert report.failed == 1


async def test_song_deleted_mid_pass(db, fake_redis, fake_extractor, make_synchronizer, mocker):
    mocker.patch.object(db, "list_stale_songs", return_value=[Song(media_id="ghost")])

    report = await make_synchronizer(fake_extractor).run_pass()

    assert report.outcomes == {"missing": 1}
    assert fake_redis.store == {}


async def test_unexpected_error_is_contained(db, fake_extractor, make_synchronizer, add_song):
    await add_song(db, "boom")
    await add_song(db, "abc123")
    fake_extractor.responses["boom"] = RuntimeError("unexpected")

    report = await make_synchronizer(fake_extractor).run_pass()

    assert report.outcomes == {"error": 1, "updated": 1}
    assert fake_extractor.called_ids == ["boom", "abc123"]


async def test_cache_outage_does_not_block_durable_write(
    db, fake_redis, fake_extractor, make_synchronizer, add_song
):
    await add_song(db, "abc123", views=100, likes=10)
    fake_extractor.responses["abc123"] = {"view_count": 150, "like_count": 12}
    fake_redis.fail = True

    report = await make_synchronizer(fake_extractor).run_pass()

    assert (await db.get_song("abc123")).views == 150
    assert report.outcomes == {"updated": 1}


async def test_expired_cache_falls_back_to_database(
    db, cache, fake_redis, fake_extractor, make_synchronizer, add_song
):
    await add_song(db, "abc123")
    fake_extractor.responses["abc123"] = {"view_count": 150, "like_count": 12}

    await make_synchronizer(fake_extractor).run_pass()
    fake_redis.advance(61)

    assert await cache.get_snapshot("abc123") is None
    assert (await db.get_song("abc123")).snapshot.to_json() == {"views": 150, "likes": 12}


async def test_report_to_dict(db, fake_extractor, make_synchronizer, add_song):
    await add_song(db, "abc123")

    data = (await make_synchronizer(fake_extractor).run_pass()).to_dict()

    assert data["selected"] == 1
    assert data["processed"] == 1
    assert data["outcomes"] == {"updated": 1}
    assert data["finished_at"] is not None


def test_outcome_failed_flag():
    assert not SyncOutcome.UPDATED.failed
    assert all(o.failed for o in SyncOutcome if o is not SyncOutcome.UPDATED)
