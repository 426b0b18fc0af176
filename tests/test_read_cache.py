from unittest.mock import MagicMock

from apps.backend.services.points.read_cache import LEADERBOARD_KEY, NullCache, ReadCache


def test_get_returns_value_until_ttl(cache, clock):
    cache.set(LEADERBOARD_KEY, ["row"])
    assert cache.get(LEADERBOARD_KEY) == ["row"]

    clock.advance(30)
    assert cache.get(LEADERBOARD_KEY) == ["row"]

    clock.advance(0.5)
    assert cache.get(LEADERBOARD_KEY) is None
    assert len(cache) == 0


def test_missing_key_is_absent(cache):
    assert cache.get("nothing") is None


def test_set_refreshes_timestamp(cache, clock):
    cache.set("k", 1)
    clock.advance(20)
    cache.set("k", 2)
    clock.advance(20)
    assert cache.get("k") == 2


def test_invalidate_removes_key_and_prefixed_variants(cache):
    cache.set("leaderboard", "all")
    cache.set("leaderboard:clanA", "a")
    cache.set("calendar:2024-01", "cal")

    removed = cache.invalidate("leaderboard")

    assert removed == 2
    assert cache.get("leaderboard") is None
    assert cache.get("leaderboard:clanA") is None
    assert cache.get("calendar:2024-01") == "cal"


def test_invalidate_without_key_clears_everything(cache):
    cache.set("a", 1)
    cache.set("b", 2)
    assert cache.invalidate() == 2
    assert len(cache) == 0


def test_set_after_invalidate_is_visible(cache):
    cache.set(LEADERBOARD_KEY, "old")
    cache.invalidate(LEADERBOARD_KEY)
    assert cache.get(LEADERBOARD_KEY) is None
    cache.set(LEADERBOARD_KEY, "new")
    assert cache.get(LEADERBOARD_KEY) == "new"


def test_set_schedules_lazy_eviction(clock):
    scheduler = MagicMock()
    cache = ReadCache(ttl_seconds=30, clock=clock, scheduler=scheduler)

    cache.set(LEADERBOARD_KEY, "rows")

    scheduler.add_job.assert_called_once()
    args, kwargs = scheduler.add_job.call_args
    assert args[0] == cache.evict_if_stale
    assert args[1] == "date"
    assert kwargs["args"] == [LEADERBOARD_KEY]
    assert kwargs["replace_existing"] is True


def test_scheduler_failure_does_not_break_set(clock):
    scheduler = MagicMock()
    scheduler.add_job.side_effect = RuntimeError("scheduler stopped")
    cache = ReadCache(ttl_seconds=30, clock=clock, scheduler=scheduler)

    cache.set("k", "v")
    assert cache.get("k") == "v"


def test_evict_if_stale_only_drops_expired_entries(cache, clock):
    cache.set("k", "v")
    assert cache.evict_if_stale("k") is False
    clock.advance(30)
    assert cache.evict_if_stale("k") is True
    assert cache.evict_if_stale("k") is False


def test_null_cache_stores_nothing():
    cache = NullCache()
    cache.set(LEADERBOARD_KEY, "rows")
    assert cache.get(LEADERBOARD_KEY) is None
    assert cache.invalidate() == 0
