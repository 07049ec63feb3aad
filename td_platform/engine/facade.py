# td_platform/engine/facade.py
# list manager facade wiring store, mutations, reorder, bulk, view, search and transfer.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from _logging import log
from .. import config_base
from ._bulk import BulkExecutor, BulkOutcome, Selection
from ._custom_lists import CustomListRegistry
from ._errors import as_remote_error
from ._history import SearchHistory
from ._logging import Emitter, default_sink
from ._mutations import MutationCoordinator, MutationOutcome
from ._reorder import ReorderEngine, ReorderOutcome
from ._search import SearchSessionManager
from ._snapshots import SnapshotManager
from ._status import OpStatus
from ._store import EntityStore
from ._transfer import TransferAdapter
from ._types import CustomList, ImportOptions, ImportResult, ListEntry, ListFilter, ListSort, Mutation, RemoteStore
from ._view import derive, stats as _stats

__all__ = ["ListManager"]

_log = log.child("engine")


@dataclass
class ListManager:
    remote: RemoteStore
    config: Mapping[str, Any] = field(default_factory=dict)
    on_progress: Callable[[str], None] | None = default_sink
    history_path: Path | None = None

    store: EntityStore = field(init=False)
    selection: Selection = field(init=False)
    emitter: Emitter = field(init=False)
    status: dict[str, OpStatus] = field(init=False)

    debug: bool = field(init=False, default=False)
    auto_refresh: bool = field(init=False, default=True)
    content_type: str = field(init=False, default="both")

    def __post_init__(self) -> None:
        self.cfg: dict[str, Any] = dict(self.config or {})
        rt = dict(self.cfg.get("runtime") or {})
        lists = dict(self.cfg.get("lists") or {})
        srch = dict(self.cfg.get("search") or {})
        self.debug = bool(rt.get("debug", False))
        self.auto_refresh = bool(rt.get("auto_refresh", True))
        self.content_type = str(lists.get("content_type") or "both")
        self.import_defaults = ImportOptions.from_mapping(self.cfg.get("import") or {})

        self.emitter = Emitter(self.on_progress)
        self.store = EntityStore()
        self.selection = Selection()
        self.snapshots = SnapshotManager()
        self.status = {k: OpStatus(k) for k in (
            "mutation", "reorder", "bulk", "import", "search", "refresh", "custom_lists",
        )}

        self.reorderer = ReorderEngine(
            self.store, self.remote, self.snapshots,
            emitter=self.emitter, status=self.status["reorder"], on_settled=self._settled,
        )
        self.mutations = MutationCoordinator(
            self.store, self.remote, self.snapshots,
            emitter=self.emitter, status=self.status["mutation"],
            next_position=self.reorderer.next_position,
            optimistic=bool(lists.get("optimistic_updates", True)),
            on_settled=self._settled,
        )
        self.bulk = BulkExecutor(
            self.store, self.remote, self.snapshots,
            emitter=self.emitter, status=self.status["bulk"], on_settled=self._settled,
        )
        self.transfer = TransferAdapter(
            self.store, self.mutations, self.remote,
            emitter=self.emitter, status=self.status["import"], content_type=self.content_type,
        )

        hist_path = self.history_path or (config_base.CONFIG_BASE() / "search_history.json")
        self.search = SearchSessionManager(
            self.remote,
            scope=self.content_type,
            sort=str(srch.get("sort") or "relevance"),
            page_size=int(srch.get("page_size") or 20),
            debounce_ms=int(srch.get("debounce_ms", 300)),
            min_query_length=int(srch.get("min_query_length", 2)),
            cache_ttl_sec=float(srch.get("cache_ttl_sec") or 0),
            history=SearchHistory(path=hist_path, max_items=int(srch.get("history_size") or 100)),
            emitter=self.emitter,
            status=self.status["search"],
        )
        self.custom_lists = CustomListRegistry(
            self.remote, emitter=self.emitter, status=self.status["custom_lists"],
        )

        self._refresh_queued = False
        self._refresh_task: asyncio.Task | None = None
        self._confirm_gen = 0

    # --- reads -----------------------------------------------------------------
    def view(self, flt: ListFilter | None = None, sort: ListSort | None = None) -> tuple[ListEntry, ...]:
        return derive(self.store.entries(), flt, sort)

    def stats(self) -> dict[str, Any]:
        return _stats(self.store.entries(), self.content_type)

    def get(self, entry_id: str) -> ListEntry | None:
        return self.store.get(entry_id)

    @property
    def is_pending(self) -> bool:
        return any(self.status[k].is_pending for k in ("mutation", "reorder", "bulk", "import"))

    @property
    def is_reordering(self) -> bool:
        return self.reorderer.is_reordering

    @property
    def last_error(self) -> str | None:
        for k in ("mutation", "reorder", "bulk", "import", "search", "refresh", "custom_lists"):
            if self.status[k].last_error:
                return self.status[k].last_error
        return None

    def flags(self) -> dict[str, Any]:
        return {
            "is_pending": self.is_pending,
            "is_reordering": self.is_reordering,
            "last_error": self.last_error,
            "ops": {k: s.to_dict() for k, s in self.status.items()},
            "store_version": self.store.version,
        }

    # --- loading ---------------------------------------------------------------
    async def refresh(self) -> int:
        """Reload the store from the remote; skipped if a write confirmed while fetching."""
        st = self.status["refresh"]
        gen = self._confirm_gen
        st.begin()
        try:
            rows = await self.remote.fetch_entries(None if self.content_type == "both" else self.content_type)
        except Exception as e:
            err = as_remote_error(e, "refresh")
            st.fail(err)
            self.emitter.emit("refresh:error", error=str(err))
            if err is e:
                raise
            raise err from e
        if gen != self._confirm_gen:
            st.abandon()
            self._refresh_queued = True
            self._maybe_refresh()
            return len(self.store)
        entries: list[ListEntry] = []
        for r in rows or []:
            try:
                entries.append(ListEntry.from_dict(r))
            except (TypeError, ValueError) as e:
                self.emitter.emit("refresh:skip", error=str(e))
        self.store.load(entries)
        self.selection.prune(self.store)
        st.succeed()
        self.emitter.emit("refresh:done", count=len(entries))
        return len(entries)

    def _settled(self, confirmed: bool) -> None:
        if confirmed:
            self._confirm_gen += 1
            if self.auto_refresh:
                self._refresh_queued = True
        self._maybe_refresh()

    def _maybe_refresh(self) -> None:
        if not self._refresh_queued or self.is_pending:
            return
        if self._refresh_task is not None and not self._refresh_task.done():
            return
        self._refresh_task = asyncio.get_running_loop().create_task(self._background_refresh())

    async def _background_refresh(self) -> None:
        while True:
            self._refresh_queued = False
            try:
                await self.refresh()
            except Exception as e:
                _log.warn("background refresh failed", extra={"error": str(e)})
                return
            if not self._refresh_queued or self.is_pending:
                return

    async def settle(self) -> None:
        """Wait for any queued background refresh to finish."""
        while self._refresh_task is not None and not self._refresh_task.done():
            await asyncio.wait([self._refresh_task])

    # --- writes ----------------------------------------------------------------
    async def apply(self, m: Mutation) -> MutationOutcome:
        return await self.mutations.apply(m)

    async def add(self, payload: Mapping[str, Any]) -> MutationOutcome:
        return await self.mutations.create(payload)

    async def update(self, entry_id: str, delta: Mapping[str, Any]) -> MutationOutcome:
        return await self.mutations.update(entry_id, delta)

    async def delete(self, entry_id: str) -> MutationOutcome:
        out = await self.mutations.delete(entry_id)
        self.selection.prune(self.store)
        return out

    async def reorder(self, ordered_ids: Sequence[str]) -> ReorderOutcome:
        return await self.reorderer.reorder(ordered_ids)

    async def move(self, from_index: int, to_index: int, *, flt: ListFilter | None = None,
                   sort: ListSort | None = None) -> ReorderOutcome:
        visible = [e.id for e in self.view(flt, sort or ListSort("sort_order", "asc"))]
        return await self.reorderer.move(visible, from_index, to_index)

    async def bulk_update(self, ids: Iterable[str], delta: Mapping[str, Any]) -> BulkOutcome:
        return await self.bulk.update(ids, delta)

    async def bulk_delete(self, ids: Iterable[str] | None = None) -> BulkOutcome:
        targets = list(ids) if ids is not None else self.selection.ids()
        return await self.bulk.delete(targets, selection=self.selection)

    async def import_list(self, raw: Any, source_format: str, options: Mapping[str, Any] | None = None,
                          *, server_side: bool = False) -> ImportResult:
        opts = ImportOptions.from_mapping({**vars(self.import_defaults), **dict(options or {})})
        try:
            res = await self.transfer.import_records(raw, source_format, opts, server_side=server_side)
            if server_side:
                self._refresh_queued = True
        finally:
            self._maybe_refresh()
        return res

    async def export(self, fmt: str = "json", *, remote: bool = False) -> str:
        return await self.transfer.export(fmt, remote=remote)

    # --- custom lists ----------------------------------------------------------
    async def refresh_custom_lists(self) -> list[CustomList]:
        return await self.custom_lists.refresh()

    async def create_custom_list(self, payload: Mapping[str, Any]) -> CustomList:
        return await self.custom_lists.create(payload)

    async def aclose(self) -> None:
        await self.search.close()
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
            await asyncio.wait([self._refresh_task])
        await self.remote.aclose()
