# td_platform/engine/_search.py
# debounced catalog search with sequence-number staleness checks.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from collections.abc import AsyncIterator, Callable, Mapping
from typing import Any

from _logging import log
from ._errors import ListError, ListValidationError, as_remote_error
from ._history import SearchHistory
from ._logging import Emitter
from ._status import OpStatus
from ._types import SearchPage, SearchSession

_log = log.child("engine.search")

IDLE = "idle"
DEBOUNCING = "debouncing"
IN_FLIGHT = "in_flight"
SETTLED = "settled"
CANCELLED = "cancelled"

SCOPES = ("anime", "manga", "both")
SEARCH_SORTS = ("relevance", "popularity", "score", "title")
CACHE_MAX = 64

CacheKey = tuple[str, str, str, int]


def to_page(raw: Mapping[str, Any] | None, page: int, page_size: int) -> SearchPage:
    raw = raw or {}
    items = tuple(dict(x) for x in (raw.get("items") or raw.get("data") or []))
    total = raw.get("total_count", raw.get("totalCount", raw.get("total")))
    total = int(total) if total is not None else (page - 1) * page_size + len(items)
    has_more = raw.get("has_more")
    if has_more is None:
        has_more = page * page_size < total
    return SearchPage(items=items, total=total, has_more=bool(has_more) and bool(items), page=page)


class SearchSessionManager:
    """One search box: debounce keystrokes, keep only the newest response, page on demand.

    States: idle -> debouncing -> in_flight -> settled | cancelled. A response is applied only
    if its sequence number is still current; anything older is dropped without an error.
    """

    def __init__(
        self,
        remote: Any,
        *,
        scope: str = "both",
        sort: str = "relevance",
        page_size: int = 20,
        debounce_ms: int = 300,
        min_query_length: int = 2,
        cache_ttl_sec: float = 0,
        history: SearchHistory | None = None,
        emitter: Emitter | None = None,
        status: OpStatus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.remote = remote
        self.session = SearchSession(scope=scope, sort=sort)
        self.page_size = max(1, int(page_size))
        self.debounce_ms = max(0, int(debounce_ms))
        self.min_query_length = max(1, int(min_query_length))
        self.cache_ttl_sec = float(cache_ttl_sec or 0)
        self.history = history
        self.emitter = emitter or Emitter(None)
        self.status = status or OpStatus("search")
        self.clock = clock

        self.state = IDLE
        self.results = SearchPage()
        self.last_error: ListError | None = None
        self._items: list[Mapping[str, Any]] = []
        self._debounce: asyncio.Task | None = None
        self._inflight: asyncio.Task | None = None
        self._cache: OrderedDict[CacheKey, tuple[float, SearchPage]] = OrderedDict()

    # --- flags ---------------------------------------------------------------
    @property
    def is_pending(self) -> bool:
        return self.state in (DEBOUNCING, IN_FLIGHT)

    def snapshot(self) -> dict[str, Any]:
        return {
            "query": self.session.query,
            "scope": self.session.scope,
            "sort": self.session.sort,
            "page": self.session.page,
            "seq": self.session.seq,
            "state": self.state,
            "total": self.results.total,
            "has_more": self.results.has_more,
            "items": [dict(x) for x in self.results.items],
            "last_error": self.last_error.to_dict() if self.last_error else None,
        }

    # --- input ---------------------------------------------------------------
    def set_query(self, query: str) -> None:
        """Record a keystroke. Must be called from inside the running event loop."""
        q = (query or "").strip()
        self.session.query = q
        self._cancel_debounce()
        if len(q) < self.min_query_length:
            self._abandon()
            self._items = []
            self.results = SearchPage()
            self.last_error = None
            self.state = IDLE
            self.emitter.emit("search:idle", query=q)
            return
        self.state = DEBOUNCING
        self._debounce = asyncio.get_running_loop().create_task(self._debounced(q))

    def set_scope(self, scope: str) -> None:
        if scope not in SCOPES:
            raise ListValidationError(f"scope must be one of {', '.join(SCOPES)}")
        self.session.scope = scope
        self._restart()

    def set_sort(self, sort: str) -> None:
        if sort not in SEARCH_SORTS:
            raise ListValidationError(f"sort must be one of {', '.join(SEARCH_SORTS)}")
        self.session.sort = sort
        self._restart()

    def load_more(self) -> asyncio.Task | None:
        """Fetch the next page and append it; no-op without more results or while busy."""
        if not self.results.has_more or self.is_pending or self._debounce_pending():
            return None
        return self._start(self.session.query, page=self.session.page + 1, append=True)

    def cancel(self) -> None:
        self._cancel_debounce()
        self._abandon()
        self.state = CANCELLED
        self.emitter.emit("search:cancelled", seq=self.session.seq)

    async def close(self) -> None:
        tasks = [t for t in (self._debounce, self._inflight) if t and not t.done()]
        self.cancel()
        if tasks:
            await asyncio.wait(tasks)

    async def settled(self) -> SearchPage:
        """Wait until no debounce timer or request is outstanding, then return the visible page."""
        while True:
            for t in (self._debounce, self._inflight):
                if t is not None and not t.done():
                    await asyncio.wait([t])
                    break
            else:
                return self.results

    # --- lazy paging ---------------------------------------------------------
    async def pages(self, query: str, *, scope: str | None = None, sort: str | None = None) -> AsyncIterator[SearchPage]:
        """Walk every page of one query, fetching each only when the consumer asks for it."""
        q = (query or "").strip()
        if len(q) < self.min_query_length:
            return
        page = 1
        while True:
            res = await self._fetch(q, scope or self.session.scope, sort or self.session.sort, page)
            yield res
            if not res.has_more:
                return
            page += 1

    # --- internals -----------------------------------------------------------
    def _restart(self) -> None:
        if len(self.session.query) >= self.min_query_length:
            self._cancel_debounce()
            self._start(self.session.query, page=1, append=False)

    async def _debounced(self, query: str) -> None:
        await asyncio.sleep(self.debounce_ms / 1000.0)
        self._debounce = None
        self._start(query, page=1, append=False)

    def _debounce_pending(self) -> bool:
        return self._debounce is not None and not self._debounce.done()

    def _is_current(self, seq: int, query: str) -> bool:
        # a newer keystroke still waiting out its debounce makes this response stale too
        return seq == self.session.seq and query == self.session.query and not self._debounce_pending()

    def _cancel_debounce(self) -> None:
        if self._debounce is not None and not self._debounce.done():
            self._debounce.cancel()
        self._debounce = None

    def _abandon(self) -> None:
        self.session.seq += 1
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None

    def _start(self, query: str, *, page: int, append: bool) -> asyncio.Task:
        self.session.seq += 1
        seq = self.session.seq
        prev = self._inflight
        if prev is not None and not prev.done():
            prev.cancel()
            self.emitter.emit("search:superseded", seq=seq - 1)
        self.state = IN_FLIGHT
        self._inflight = asyncio.get_running_loop().create_task(self._run(seq, query, page, append))
        return self._inflight

    async def _run(self, seq: int, query: str, page: int, append: bool) -> None:
        scope, sort = self.session.scope, self.session.sort
        self.status.begin()
        self.emitter.emit("search:start", seq=seq, query=query, page=page)
        try:
            res = await self._fetch(query, scope, sort, page)
        except asyncio.CancelledError:
            self.status.abandon()
            raise
        except Exception as e:
            err = as_remote_error(e, "search")
            if not self._is_current(seq, query):
                self.status.abandon()
                self.emitter.emit("search:stale", seq=seq, current=self.session.seq, error=str(err))
                return
            self.status.fail(err)
            self.last_error = err
            self.state = SETTLED
            _log.warn("search failed; keeping previous results", extra={"query": query, "error": str(err)})
            self.emitter.emit("search:error", seq=seq, error=str(err))
            return

        if not self._is_current(seq, query):
            self.status.abandon()
            self.emitter.emit("search:stale", seq=seq, current=self.session.seq)
            return

        self._items = self._items + list(res.items) if append else list(res.items)
        self.results = SearchPage(items=tuple(self._items), total=res.total, has_more=res.has_more, page=page)
        self.session.page = page
        self.last_error = None
        self.state = SETTLED
        self.status.succeed()
        self.emitter.emit("search:settled", seq=seq, total=res.total, page=page, has_more=res.has_more)
        if self.history is not None and page == 1:
            try:
                self.history.add(query, scope=scope, result_count=res.total)
            except OSError as e:
                _log.warn("could not persist search history", extra={"error": repr(e)})

    async def _fetch(self, query: str, scope: str, sort: str, page: int) -> SearchPage:
        key: CacheKey = (query.casefold(), scope, sort, page)
        hit = self._cache_get(key)
        if hit is not None:
            return hit
        raw = await self.remote.query({"search": query, "content_type": scope}, page, self.page_size, sort)
        res = to_page(raw, page, self.page_size)
        self._cache_put(key, res)
        return res

    def _cache_get(self, key: CacheKey) -> SearchPage | None:
        if self.cache_ttl_sec <= 0:
            return None
        hit = self._cache.get(key)
        if hit is None:
            return None
        ts, res = hit
        if self.clock() - ts > self.cache_ttl_sec:
            self._cache.pop(key, None)
            return None
        return res

    def _cache_put(self, key: CacheKey, res: SearchPage) -> None:
        if self.cache_ttl_sec <= 0:
            return
        self._cache[key] = (self.clock(), res)
        self._cache.move_to_end(key)
        while len(self._cache) > CACHE_MAX:
            self._cache.popitem(last=False)

    def clear_cache(self) -> None:
        self._cache.clear()


__all__ = ["SearchSessionManager", "to_page", "IDLE", "DEBOUNCING", "IN_FLIGHT", "SETTLED", "CANCELLED"]
