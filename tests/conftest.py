# Tsundoku test scripts
from __future__ import annotations

import asyncio
import copy
import sys
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from providers.store._mod_MEMORY import MemoryStore  # noqa: E402
from td_platform.engine import ListManager, TransientRemoteError  # noqa: E402

ROWS: list[dict[str, Any]] = [
    {
        "id": "a", "catalog_item_id": "t-akira", "status_id": "completed", "media_type": "anime",
        "progress": 1, "score": 9, "tags": ["classic", "cyberpunk"], "notes": "Rewatch in 4K",
        "sort_order": 0, "title": "Akira", "unit_count": 1, "created_at": "2025-01-10T00:00:00Z",
    },
    {
        "id": "b", "catalog_item_id": "t-bebop", "status_id": "watching", "media_type": "anime",
        "progress": 12, "score": 8, "tags": ["space"], "notes": None,
        "sort_order": 1, "title": "Cowboy Bebop", "unit_count": 26, "created_at": "2025-02-01T00:00:00Z",
    },
    {
        "id": "c", "catalog_item_id": "t-chainsaw", "status_id": "reading", "media_type": "manga",
        "progress": 40, "score": None, "tags": [], "notes": "Part 2 pending",
        "sort_order": 2, "title": "Chainsaw Man", "unit_count": None, "created_at": "2025-03-05T00:00:00Z",
    },
]

CATALOG: list[dict[str, Any]] = [
    {"id": "t-akira", "title": "Akira", "content_type": "anime", "episodes": 1, "popularity": 90},
    {"id": "t-bebop", "title": "Cowboy Bebop", "content_type": "anime", "episodes": 26, "popularity": 95},
    {"id": "t-chainsaw", "title": "Chainsaw Man", "content_type": "manga", "chapters": None, "popularity": 99},
    {"id": "t-naruto", "title": "Naruto", "content_type": "anime", "episodes": 220, "popularity": 97},
    {"id": "t-naruto-m", "title": "Naruto", "content_type": "manga", "chapters": 700, "popularity": 93},
    {"id": "t-mushishi", "title": "Mushishi", "content_type": "anime", "episodes": 26, "popularity": 60},
]


class FlakyStore(MemoryStore):
    """MemoryStore with call recording, per-op failure injection and gates that hold a call open."""

    def __init__(self, *a: Any, **kw: Any):
        super().__init__(*a, **kw)
        self.fail: set[str] = set()
        self.fail_keys: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, Any]] = []

    async def _hook(self, op: str, key: Any = None) -> None:
        self.calls.append((op, key))
        gate = self.gates.get(op)
        if gate is not None:
            await gate.wait()
        if op in self.fail or (key is not None and str(key) in self.fail_keys):
            raise TransientRemoteError(f"{op} refused", status=503, op=op)

    def ops(self, name: str) -> list[Any]:
        return [k for op, k in self.calls if op == name]

    async def fetch_entries(self, media_type: str | None = None) -> list[dict[str, Any]]:
        await self._hook("fetch")
        return await super().fetch_entries(media_type)

    async def create_entry(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        await self._hook("create", payload.get("catalog_item_id"))
        return await super().create_entry(payload)

    async def update_entry(self, entry_id: str, delta: Mapping[str, Any]) -> dict[str, Any]:
        await self._hook("update", entry_id)
        return await super().update_entry(entry_id, delta)

    async def delete_entry(self, entry_id: str) -> None:
        await self._hook("delete", entry_id)
        await super().delete_entry(entry_id)

    async def bulk_update(self, ids: Sequence[str], delta: Mapping[str, Any]) -> None:
        await self._hook("bulk_update", tuple(ids))
        await super().bulk_update(ids, delta)

    async def bulk_delete(self, ids: Sequence[str]) -> None:
        await self._hook("bulk_delete", tuple(ids))
        await super().bulk_delete(ids)

    async def bulk_set_order(self, updates: Sequence[Mapping[str, Any]]) -> None:
        await self._hook("bulk_set_order", tuple((u["id"], u["sort_order"]) for u in updates))
        await super().bulk_set_order(updates)

    async def query(self, filters: Mapping[str, Any], page: int, page_size: int, sort: str) -> dict[str, Any]:
        await self._hook("query", (filters.get("search"), page))
        return await super().query(filters, page, page_size, sort)

    async def fetch_custom_lists(self) -> list[dict[str, Any]]:
        await self._hook("fetch_custom_lists")
        return await super().fetch_custom_lists()

    async def create_custom_list(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        await self._hook("create_custom_list", payload.get("name"))
        return await super().create_custom_list(payload)


@pytest.fixture()
def config_base(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("CONFIG_BASE", str(tmp_path))
    return tmp_path


@pytest.fixture()
def rows() -> list[dict[str, Any]]:
    return copy.deepcopy(ROWS)


@pytest.fixture()
def catalog() -> list[dict[str, Any]]:
    return copy.deepcopy(CATALOG)


@pytest.fixture()
def store(rows: list[dict[str, Any]], catalog: list[dict[str, Any]]) -> FlakyStore:
    return FlakyStore(catalog=catalog, rows=rows)


@pytest.fixture()
def empty_store(catalog: list[dict[str, Any]]) -> FlakyStore:
    return FlakyStore(catalog=catalog)


@pytest.fixture()
def make_manager(store: FlakyStore, tmp_path: Path) -> Callable[..., ListManager]:
    def _make(remote: Any = None, **sections: Mapping[str, Any]) -> ListManager:
        conf: dict[str, Any] = {
            "runtime": {"auto_refresh": False},
            "lists": {"content_type": "both", "optimistic_updates": True},
            "search": {"debounce_ms": 0, "min_query_length": 2, "page_size": 20, "cache_ttl_sec": 0},
        }
        for name, values in sections.items():
            conf[name] = {**conf.get(name, {}), **dict(values)}
        return ListManager(remote=remote if remote is not None else store, config=conf, on_progress=None,
                           history_path=tmp_path / "search_history.json")

    return _make
