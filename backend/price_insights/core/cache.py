"""Per-view query result cache with request de-duplication and stale-while-revalidate.

Each mounted view owns one :class:`CacheEntry`, keyed by ``view_key``. The entry
is addressed by a fingerprint of the view key and the caller's dependency keys
(the pre-stringified filter values), never by the identity of the compiled
query, so rebuilding an equivalent query on every render costs nothing.

Lifecycle of an entry::

    idle -> loading -> success | error -> loading -> ...

``last_good_result`` is only written on success and survives every later
``loading`` or ``error`` transition. Resolutions are applied only while their
fingerprint is still the view's current one (last fingerprint wins).
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

from loguru import logger

from price_insights.core.logging import view_key_ctx_var
from price_insights.schemas.query import Query, ResultSet

ProgressCallback = Callable[[dict[str, Any]], None]
Fetcher = Callable[[Query, ProgressCallback], Awaitable[ResultSet]]


def generate_fingerprint(view_key: str, dep_keys: Sequence[str]) -> str:
    """Generate a cache fingerprint from the view identity and dependency keys."""
    key_str = json.dumps([view_key, [str(k) for k in dep_keys]], ensure_ascii=False)
    return f"{view_key}:{hashlib.sha256(key_str.encode()).hexdigest()[:32]}"


class CacheStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(slots=True)
class CacheEntry:
    """Mutable per-view slot, owned by the cache."""

    view_key: str
    fingerprint: Optional[str] = None
    status: CacheStatus = CacheStatus.IDLE
    last_good_result: Optional[ResultSet] = None
    has_ever_loaded: bool = False
    progress: Optional[dict[str, Any]] = None
    error: Optional[Exception] = None
    query: Optional[Query] = None
    pending: dict[str, asyncio.Task] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class QueryState:
    """What a view renders from."""

    result: Optional[ResultSet] = None
    is_loading: bool = False
    error: Optional[Exception] = None
    progress: Optional[dict[str, Any]] = None
    has_ever_loaded: bool = False
    fingerprint: Optional[str] = None


class StableQueryCache:
    """Fingerprint-keyed result cache shared by the views of one page.

    All bookkeeping runs on the event loop thread; the only suspension point
    is the ``fetcher`` awaiting the analytics service.
    """

    def __init__(self, fetcher: Fetcher) -> None:
        self._fetcher = fetcher
        self._entries: dict[str, CacheEntry] = {}

    def __contains__(self, view_key: str) -> bool:
        return view_key in self._entries

    def use_query(
        self,
        view_key: str,
        query_factory: Callable[[], Query],
        dep_keys: Sequence[str],
    ) -> QueryState:
        """Return the view's current state, issuing a request if its fingerprint moved.

        ``query_factory`` is only called when the fingerprint differs from the
        previous call for this view. Compilation errors it raises propagate to
        the caller and leave the entry untouched.
        """

        fingerprint = generate_fingerprint(view_key, dep_keys)
        entry = self._entries.get(view_key)
        if entry is not None and entry.fingerprint == fingerprint:
            return self._snapshot(entry)

        query = query_factory()
        if entry is None:
            entry = self._entries[view_key] = CacheEntry(view_key=view_key)
        entry.fingerprint = fingerprint
        entry.query = query
        self._issue(entry)
        return self._snapshot(entry)

    def refresh(self, view_key: str) -> QueryState:
        """Re-issue the current query, e.g. after the view showed an error."""

        entry = self._entries.get(view_key)
        if entry is None or entry.query is None:
            raise KeyError(view_key)
        self._issue(entry)
        return self._snapshot(entry)

    def state(self, view_key: str) -> QueryState:
        entry = self._entries.get(view_key)
        if entry is None:
            return QueryState()
        return self._snapshot(entry)

    def entry(self, view_key: str) -> Optional[CacheEntry]:
        return self._entries.get(view_key)

    async def wait(self, view_key: str) -> QueryState:
        """Wait until the view's current fingerprint has no request in flight."""

        entry = self._entries.get(view_key)
        if entry is None:
            raise KeyError(view_key)
        while True:
            task = entry.pending.get(entry.fingerprint)
            if task is None:
                break
            await asyncio.wait({task})
        return self._snapshot(entry)

    def unmount(self, view_key: str) -> None:
        """Release a view's slot; its in-flight requests resolve into nothing."""

        entry = self._entries.pop(view_key, None)
        if entry is not None:
            logger.bind(view_key=view_key, pending=len(entry.pending)).debug("stable_query_unmounted")

    async def close(self) -> None:
        """Cancel every outstanding request and drop all slots."""

        tasks = [task for entry in self._entries.values() for task in entry.pending.values()]
        self._entries.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _is_current(self, entry: CacheEntry, fingerprint: str) -> bool:
        return self._entries.get(entry.view_key) is entry and entry.fingerprint == fingerprint

    def _issue(self, entry: CacheEntry) -> None:
        fingerprint = entry.fingerprint
        entry.status = CacheStatus.LOADING
        entry.error = None
        entry.progress = None
        pending = entry.pending.get(fingerprint)
        if pending is not None and not pending.done():
            logger.bind(view_key=entry.view_key, fingerprint=fingerprint).debug("stable_query_deduplicated")
            return
        loop = asyncio.get_running_loop()
        entry.pending[fingerprint] = loop.create_task(self._run(entry, fingerprint, entry.query))
        logger.bind(
            view_key=entry.view_key,
            fingerprint=fingerprint,
            stale_result=entry.last_good_result is not None,
        ).debug("stable_query_issued")

    async def _run(self, entry: CacheEntry, fingerprint: str, query: Query) -> None:
        token = view_key_ctx_var.set(entry.view_key)
        started = time.perf_counter()

        def on_progress(progress: dict[str, Any]) -> None:
            if self._is_current(entry, fingerprint):
                entry.progress = progress

        try:
            result = await self._fetcher(query, on_progress)
        except Exception as exc:
            if self._is_current(entry, fingerprint):
                entry.status = CacheStatus.ERROR
                entry.error = exc
                entry.progress = None
                logger.bind(
                    fingerprint=fingerprint,
                    error=str(exc),
                    kept_stale_result=entry.last_good_result is not None,
                ).warning("stable_query_failed")
            else:
                self._log_discarded(entry, fingerprint, "error")
        else:
            if self._is_current(entry, fingerprint):
                entry.status = CacheStatus.SUCCESS
                entry.last_good_result = result
                entry.has_ever_loaded = True
                entry.progress = None
                logger.bind(
                    fingerprint=fingerprint,
                    rows=len(result.rows),
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                ).debug("stable_query_resolved")
            else:
                self._log_discarded(entry, fingerprint, "success")
        finally:
            entry.pending.pop(fingerprint, None)
            view_key_ctx_var.reset(token)

    @staticmethod
    def _log_discarded(entry: CacheEntry, fingerprint: str, outcome: str) -> None:
        logger.bind(
            fingerprint=fingerprint,
            current=entry.fingerprint,
            outcome=outcome,
        ).debug("stable_query_discarded")

    @staticmethod
    def _snapshot(entry: CacheEntry) -> QueryState:
        return QueryState(
            result=entry.last_good_result,
            is_loading=entry.status == CacheStatus.LOADING,
            error=entry.error,
            progress=entry.progress,
            has_ever_loaded=entry.has_ever_loaded,
            fingerprint=entry.fingerprint,
        )


# Process-wide value cache for slow-changing lookups (filter dropdown values).
# Structure: {key: (value, expiry_timestamp)}
_value_cache: dict[str, tuple[Any, float]] = {}
_value_cache_max_size: int = 256


def get_cached_value(key: str) -> Optional[Any]:
    """Get value from the value cache if not expired."""
    if key not in _value_cache:
        return None
    value, expiry = _value_cache[key]
    if expiry > 0 and time.time() > expiry:
        del _value_cache[key]
        return None
    return value


def set_cached_value(key: str, value: Any, ttl: int) -> None:
    """Set value with TTL in seconds (0 means no expiry)."""
    expiry = time.time() + ttl if ttl > 0 else 0
    if key not in _value_cache and len(_value_cache) >= _value_cache_max_size:
        # Evict the oldest 10%
        for stale_key in list(_value_cache)[: max(1, _value_cache_max_size // 10)]:
            del _value_cache[stale_key]
    _value_cache[key] = (value, expiry)


def clear_cached_values(pattern: str = "*") -> int:
    """Clear every key matching a glob pattern; returns the number removed."""
    import fnmatch

    keys = [k for k in _value_cache if fnmatch.fnmatch(k, pattern)]
    for key in keys:
        del _value_cache[key]
    return len(keys)
