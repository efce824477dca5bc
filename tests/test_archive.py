from datetime import datetime, timedelta, timezone

from timekeeper.archive import DismissalCache

NOW = datetime(2026, 2, 1, 12, 0, tzinfo=timezone.utc)


def make_cache() -> DismissalCache:
    cache = DismissalCache(":memory:")
    cache.initialize()
    return cache


def test_dismissed_ids_are_kept_per_worker() -> None:
    cache = make_cache()

    cache.mark_dismissed("worker-1", ["a", "b"], NOW)
    cache.mark_dismissed("worker-2", ["c"], NOW)

    assert cache.get_dismissed_ids("worker-1") == {"a", "b"}
    assert cache.get_dismissed_ids("worker-2") == {"c"}
    assert cache.get_dismissed_ids("worker-3") == set()


def test_sweep_removes_entries_older_than_sixty_days() -> None:
    cache = make_cache()
    cache.mark_dismissed("worker-1", ["old"], NOW - timedelta(days=61))
    cache.mark_dismissed("worker-1", ["recent"], NOW - timedelta(days=59))

    removed = cache.sweep_expired(NOW)

    assert removed == 1
    assert cache.get_dismissed_ids("worker-1") == {"recent"}


def test_remarking_refreshes_archive_time() -> None:
    cache = make_cache()
    cache.mark_dismissed("worker-1", ["a"], NOW - timedelta(days=61))
    cache.mark_dismissed("worker-1", ["a"], NOW)

    cache.sweep_expired(NOW)

    assert cache.get_dismissed_ids("worker-1") == {"a"}
