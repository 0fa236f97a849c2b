import asyncio

import pytest

from price_insights.core.cache import CacheStatus, StableQueryCache, generate_fingerprint
from price_insights.core.errors import AnalyticsServiceError, QueryCompilationError
from price_insights.schemas.filters import FilterModel
from price_insights.schemas.query import ResultSet
from price_insights.services.query_builder import compile_query


class ControlledFetcher:
    """Fetcher whose requests stay open until the test resolves them."""

    def __init__(self):
        self.calls = []

    async def __call__(self, query, on_progress):
        future = asyncio.get_running_loop().create_future()
        self.calls.append((query, on_progress, future))
        return await future

    def resolve(self, index, rows):
        self.calls[index][2].set_result(ResultSet(rows=rows))

    def fail(self, index, exc):
        self.calls[index][2].set_exception(exc)


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


def _factory(filters, counter=None):
    def build():
        if counter is not None:
            counter.append(1)
        return compile_query(["averageRetailPrice"], filters)

    return build


KAUFLAND = FilterModel(retailers=["Kaufland"])
BILLA = FilterModel(retailers=["Billa"])


def test_fingerprint_depends_on_view_and_keys():
    assert generate_fingerprint("trend", ["a", "b"]) == generate_fingerprint("trend", ["a", "b"])
    assert generate_fingerprint("trend", ["a", "b"]) != generate_fingerprint("trend", ["b", "a"])
    assert generate_fingerprint("trend", ["a,b"]) != generate_fingerprint("trend", ["a", "b"])
    assert generate_fingerprint("trend", ["a"]) != generate_fingerprint("retailers", ["a"])


@pytest.mark.anyio
async def test_first_load_then_success():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)

    state = cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    assert state.is_loading
    assert state.result is None
    assert not state.has_ever_loaded

    await settle()
    fetcher.resolve(0, [{"prices.averageRetailPrice": "2.49"}])
    state = await cache.wait("trend")

    assert not state.is_loading
    assert state.has_ever_loaded
    assert state.result.rows == [{"prices.averageRetailPrice": "2.49"}]
    assert cache.entry("trend").status == CacheStatus.SUCCESS


@pytest.mark.anyio
async def test_unchanged_fingerprint_does_not_rebuild_or_refetch():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)
    built = []

    cache.use_query("trend", _factory(KAUFLAND, built), KAUFLAND.dep_keys())
    await settle()
    fetcher.resolve(0, [])
    await cache.wait("trend")

    for _ in range(3):
        same = FilterModel(retailers=["Kaufland"])
        state = cache.use_query("trend", _factory(same, built), same.dep_keys())
        assert not state.is_loading
    await settle()

    assert len(built) == 1
    assert len(fetcher.calls) == 1


@pytest.mark.anyio
async def test_identical_renders_share_one_request():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)

    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    await settle()

    assert len(fetcher.calls) == 1


@pytest.mark.anyio
async def test_stale_result_is_kept_while_refetching():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)

    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    await settle()
    fetcher.resolve(0, [{"v": 1}])
    await cache.wait("trend")

    state = cache.use_query("trend", _factory(BILLA), BILLA.dep_keys())
    assert state.is_loading
    assert state.has_ever_loaded
    assert state.result.rows == [{"v": 1}]

    await settle()
    fetcher.resolve(1, [{"v": 2}])
    state = await cache.wait("trend")
    assert state.result.rows == [{"v": 2}]


@pytest.mark.anyio
async def test_last_fingerprint_wins():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)

    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    await settle()
    cache.use_query("trend", _factory(BILLA), BILLA.dep_keys())
    await settle()
    assert len(fetcher.calls) == 2

    fetcher.resolve(1, [{"retailer": "Billa"}])
    await settle()
    fetcher.resolve(0, [{"retailer": "Kaufland"}])
    await settle()

    state = cache.state("trend")
    assert state.fingerprint == generate_fingerprint("trend", BILLA.dep_keys())
    assert state.result.rows == [{"retailer": "Billa"}]


@pytest.mark.anyio
async def test_superseded_response_does_not_end_loading():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)

    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    await settle()
    cache.use_query("trend", _factory(BILLA), BILLA.dep_keys())
    await settle()

    fetcher.resolve(0, [{"retailer": "Kaufland"}])
    await settle()

    state = cache.state("trend")
    assert state.is_loading
    assert state.result is None

    await cache.close()


@pytest.mark.anyio
async def test_error_keeps_last_good_result():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)

    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    await settle()
    fetcher.resolve(0, [{"v": 1}])
    await cache.wait("trend")

    cache.use_query("trend", _factory(BILLA), BILLA.dep_keys())
    await settle()
    fetcher.fail(1, AnalyticsServiceError("boom", status_code=500))
    state = await cache.wait("trend")

    assert not state.is_loading
    assert isinstance(state.error, AnalyticsServiceError)
    assert state.result.rows == [{"v": 1}]
    assert cache.entry("trend").status == CacheStatus.ERROR


@pytest.mark.anyio
async def test_refresh_reissues_and_clears_error():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)

    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    await settle()
    fetcher.fail(0, AnalyticsServiceError("boom"))
    await cache.wait("trend")

    state = cache.refresh("trend")
    assert state.is_loading
    assert state.error is None

    await settle()
    assert len(fetcher.calls) == 2
    fetcher.resolve(1, [{"v": 1}])
    state = await cache.wait("trend")
    assert state.error is None
    assert state.result.rows == [{"v": 1}]

    with pytest.raises(KeyError):
        cache.refresh("unknown")


@pytest.mark.anyio
async def test_progress_is_reported_for_current_fingerprint_only():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)

    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    await settle()
    fetcher.calls[0][1]({"stage": "Building pre-aggregation"})
    assert cache.state("trend").progress == {"stage": "Building pre-aggregation"}

    cache.use_query("trend", _factory(BILLA), BILLA.dep_keys())
    await settle()
    fetcher.calls[0][1]({"stage": "stale"})
    assert cache.state("trend").progress is None

    fetcher.resolve(1, [])
    state = await cache.wait("trend")
    assert state.progress is None

    await cache.close()


@pytest.mark.anyio
async def test_compile_error_propagates_and_leaves_entry_untouched():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)

    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    await settle()
    fetcher.resolve(0, [{"v": 1}])
    before = await cache.wait("trend")

    def broken():
        raise QueryCompilationError("no measures")

    with pytest.raises(QueryCompilationError):
        cache.use_query("trend", broken, ["broken"])

    assert cache.state("trend") == before
    assert len(fetcher.calls) == 1


@pytest.mark.anyio
async def test_returning_to_pending_fingerprint_reuses_request():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)

    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    await settle()
    cache.use_query("trend", _factory(BILLA), BILLA.dep_keys())
    await settle()
    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    await settle()

    assert len(fetcher.calls) == 2
    fetcher.resolve(0, [{"retailer": "Kaufland"}])
    state = await cache.wait("trend")
    assert state.result.rows == [{"retailer": "Kaufland"}]

    await cache.close()


@pytest.mark.anyio
async def test_views_are_independent():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)

    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    cache.use_query("retailers", _factory(KAUFLAND), KAUFLAND.dep_keys())
    await settle()

    assert len(fetcher.calls) == 2
    fetcher.resolve(1, [{"v": "retailers"}])
    await settle()

    assert cache.state("trend").is_loading
    assert cache.state("retailers").result.rows == [{"v": "retailers"}]

    await cache.close()


@pytest.mark.anyio
async def test_unmount_discards_in_flight_results():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)

    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    await settle()
    entry = cache.entry("trend")
    cache.unmount("trend")

    fetcher.resolve(0, [{"v": 1}])
    await settle()

    assert "trend" not in cache
    assert entry.last_good_result is None
    assert cache.state("trend").result is None


@pytest.mark.anyio
async def test_close_cancels_outstanding_requests():
    fetcher = ControlledFetcher()
    cache = StableQueryCache(fetcher)

    cache.use_query("trend", _factory(KAUFLAND), KAUFLAND.dep_keys())
    await settle()
    await cache.close()

    assert fetcher.calls[0][2].cancelled()
    assert "trend" not in cache
