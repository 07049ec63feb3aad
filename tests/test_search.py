# Tsundoku test scripts
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

import pytest

from td_platform.engine import ListValidationError, TransientRemoteError
from td_platform.engine._history import SearchHistory
from td_platform.engine._logging import Emitter
from td_platform.engine._search import CANCELLED, DEBOUNCING, IDLE, IN_FLIGHT, SETTLED, SearchSessionManager, to_page


@dataclass
class FakeCatalog:
    total: int = 45
    fail: set[str] = field(default_factory=set)
    gates: dict[str, asyncio.Event] = field(default_factory=dict)
    calls: list[tuple[str, int]] = field(default_factory=list)

    async def query(self, filters: dict[str, Any], page: int, page_size: int, sort: str) -> dict[str, Any]:
        q = filters["search"]
        self.calls.append((q, page))
        gate = self.gates.get(q)
        if gate is not None:
            try:
                await gate.wait()
            except asyncio.CancelledError:
                # the response still arrives even though nobody is waiting for it
                await gate.wait()
        if q in self.fail:
            raise RuntimeError("catalog unavailable")
        start = (page - 1) * page_size
        n = max(0, min(page_size, self.total - start))
        items = [{"id": f"{q}-{start + i}", "title": f"{q} #{start + i}"} for i in range(n)]
        return {"items": items, "total_count": self.total, "has_more": start + n < self.total}


def _mgr(remote: FakeCatalog, **kw: Any) -> SearchSessionManager:
    kw.setdefault("debounce_ms", 0)
    kw.setdefault("emitter", Emitter(None))
    return SearchSessionManager(remote, **kw)


def test_to_page_reads_common_shapes() -> None:
    p = to_page({"data": [{"id": 1}], "totalCount": 30}, 1, 20)
    assert p.total == 30 and p.has_more is True
    p = to_page({"items": [], "total": 0}, 1, 20)
    assert p.has_more is False
    p = to_page({"items": [{"id": 1}]}, 2, 20)
    assert p.total == 21 and p.has_more is False


def test_keystrokes_inside_debounce_window_send_one_query() -> None:
    remote = FakeCatalog()

    async def scenario():
        mgr = _mgr(remote, debounce_ms=40)
        for q in ("na", "nar", "naru", "narut"):
            mgr.set_query(q)
            await asyncio.sleep(0.005)
        assert mgr.state == DEBOUNCING
        assert remote.calls == []
        page = await mgr.settled()
        return mgr, page

    mgr, page = asyncio.run(scenario())
    assert remote.calls == [("narut", 1)]
    assert mgr.state == SETTLED
    assert page.items[0]["id"] == "narut-0"


def test_short_query_goes_idle_without_a_request() -> None:
    remote = FakeCatalog()

    async def scenario():
        mgr = _mgr(remote, min_query_length=3)
        mgr.set_query("naruto")
        await mgr.settled()
        assert len(mgr.results.items) == 20
        mgr.set_query("na")
        return mgr

    mgr = asyncio.run(scenario())
    assert mgr.state == IDLE
    assert mgr.results.items == ()
    assert remote.calls == [("naruto", 1)]


def test_slow_response_for_old_query_is_dropped() -> None:
    remote = FakeCatalog()

    async def scenario():
        mgr = _mgr(remote)
        remote.gates["slow"] = asyncio.Event()
        mgr.set_query("slow")
        await asyncio.sleep(0.01)
        assert mgr.state == IN_FLIGHT
        mgr.set_query("fast")
        await mgr.settled()
        assert mgr.results.items[0]["id"] == "fast-0"

        remote.gates["slow"].set()
        await asyncio.sleep(0.02)
        return mgr

    mgr = asyncio.run(scenario())
    assert mgr.results.items[0]["id"] == "fast-0"
    assert mgr.session.query == "fast"
    assert mgr.emitter.events("search:stale")
    assert mgr.emitter.events("search:superseded")
    assert not mgr.status.is_pending


def test_old_response_during_new_debounce_is_dropped() -> None:
    remote = FakeCatalog(total=45)

    async def scenario():
        mgr = _mgr(remote, debounce_ms=100, page_size=20)
        remote.gates["nar"] = asyncio.Event()
        mgr.set_query("nar")
        await asyncio.sleep(0.15)
        assert mgr.state == IN_FLIGHT

        mgr.set_query("naruto")
        remote.gates["nar"].set()
        await asyncio.sleep(0.01)
        seen = (mgr.state, mgr.is_pending, mgr.results.items, mgr.load_more())
        await mgr.settled()
        return mgr, seen

    mgr, (state, pending, items, more) = asyncio.run(scenario())
    assert state == DEBOUNCING
    assert pending is True
    assert items == ()
    assert more is None
    assert remote.calls == [("nar", 1), ("naruto", 1)]
    assert {x["id"].split("-")[0] for x in mgr.results.items} == {"naruto"}
    assert mgr.session.page == 1
    assert mgr.emitter.events("search:stale")


def test_failed_stale_response_is_not_reported() -> None:
    remote = FakeCatalog(fail={"slow"})

    async def scenario():
        mgr = _mgr(remote)
        remote.gates["slow"] = asyncio.Event()
        mgr.set_query("slow")
        await asyncio.sleep(0.01)
        mgr.set_query("fast")
        await mgr.settled()
        remote.gates["slow"].set()
        await asyncio.sleep(0.02)
        return mgr

    mgr = asyncio.run(scenario())
    assert mgr.results.items[0]["id"] == "fast-0"
    assert mgr.last_error is None
    assert mgr.status.last_error is None
    assert not mgr.status.is_pending
    assert mgr.emitter.events("search:stale")[-1]["error"]


def test_failure_keeps_previous_results() -> None:
    remote = FakeCatalog(fail={"narutoo"})

    async def scenario():
        mgr = _mgr(remote)
        mgr.set_query("naruto")
        first = await mgr.settled()
        mgr.set_query("narutoo")
        await mgr.settled()
        return mgr, first

    mgr, first = asyncio.run(scenario())
    assert mgr.results is first
    assert isinstance(mgr.last_error, TransientRemoteError)
    assert mgr.state == SETTLED
    assert mgr.status.last_error
    assert mgr.snapshot()["last_error"]["retryable"] is True


def test_load_more_appends_until_exhausted() -> None:
    remote = FakeCatalog(total=45)

    async def scenario():
        mgr = _mgr(remote, page_size=20)
        mgr.set_query("naruto")
        await mgr.settled()
        assert len(mgr.results.items) == 20 and mgr.results.has_more
        await mgr.load_more()
        assert len(mgr.results.items) == 40
        await mgr.load_more()
        return mgr

    mgr = asyncio.run(scenario())
    assert len(mgr.results.items) == 45
    assert mgr.results.has_more is False
    assert mgr.session.page == 3
    assert mgr.load_more() is None
    assert remote.calls == [("naruto", 1), ("naruto", 2), ("naruto", 3)]
    assert [x["id"] for x in mgr.results.items][:2] == ["naruto-0", "naruto-1"]


def test_pages_are_fetched_lazily() -> None:
    remote = FakeCatalog(total=45)

    async def scenario():
        mgr = _mgr(remote, page_size=20)
        gen = mgr.pages("naruto")
        first = await gen.__anext__()
        assert remote.calls == [("naruto", 1)]
        rest = [p async for p in gen]
        return first, rest

    first, rest = asyncio.run(scenario())
    assert first.page == 1
    assert [p.page for p in rest] == [2, 3]
    assert len(rest[-1].items) == 5


def test_cache_serves_repeat_queries_until_ttl() -> None:
    remote = FakeCatalog()
    now = [100.0]

    async def scenario():
        mgr = _mgr(remote, cache_ttl_sec=30, clock=lambda: now[0])
        for q in ("naruto", "Naruto"):
            mgr.set_query(q)
            await mgr.settled()
        now[0] += 31
        mgr.set_query("naruto")
        await mgr.settled()

    asyncio.run(scenario())
    assert remote.calls == [("naruto", 1), ("naruto", 1)]


def test_scope_and_sort_validation() -> None:
    remote = FakeCatalog()

    async def scenario():
        mgr = _mgr(remote)
        with pytest.raises(ListValidationError):
            mgr.set_scope("movies")
        with pytest.raises(ListValidationError):
            mgr.set_sort("random")
        mgr.set_query("naruto")
        await mgr.settled()
        mgr.set_scope("manga")
        await mgr.settled()
        return mgr

    mgr = asyncio.run(scenario())
    assert mgr.session.scope == "manga"
    assert remote.calls == [("naruto", 1), ("naruto", 1)]


def test_cancel_stops_pending_search() -> None:
    remote = FakeCatalog()

    async def scenario():
        mgr = _mgr(remote, debounce_ms=50)
        mgr.set_query("naruto")
        mgr.cancel()
        await mgr.settled()
        return mgr

    mgr = asyncio.run(scenario())
    assert mgr.state == CANCELLED
    assert remote.calls == []


def test_history_is_recorded_and_persisted(tmp_path) -> None:
    remote = FakeCatalog(total=3)
    path = tmp_path / "search_history.json"

    async def scenario():
        mgr = _mgr(remote, history=SearchHistory(path=path, max_items=2))
        for q in ("naruto", "bleach", "NARUTO", "mushishi"):
            mgr.set_query(q)
            await mgr.settled()

    asyncio.run(scenario())
    saved = json.loads(path.read_text("utf-8"))
    assert [x["query"] for x in saved] == ["mushishi", "NARUTO"]
    assert saved[0]["result_count"] == 3

    again = SearchHistory(path=path)
    assert [x["query"] for x in again.recent()] == ["mushishi", "NARUTO"]
    assert again.remove("naruto") is True
    assert again.popular() == [("mushishi", 1)]
    again.clear()
    assert json.loads(path.read_text("utf-8")) == []


def test_corrupt_history_file_starts_empty(tmp_path) -> None:
    path = tmp_path / "search_history.json"
    path.write_text("{not json", "utf-8")
    hist = SearchHistory(path=path)
    assert hist.recent() == []
    hist.add("berserk", scope="manga", result_count=1)
    assert json.loads(path.read_text("utf-8"))[0]["scope"] == "manga"
