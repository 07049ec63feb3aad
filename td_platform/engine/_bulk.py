# td_platform/engine/_bulk.py
# all-or-nothing bulk update/delete and the selection set.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from ._errors import ListValidationError, as_remote_error
from ._logging import Emitter
from ._mutations import check_delta, is_temp_id, wire
from ._snapshots import Snapshot, SnapshotManager
from ._status import OpStatus
from ._store import EntityStore
from ._types import CONFIRMED, PENDING, utc_now


class Selection:
    """Ordered set of entry ids picked for a bulk action."""

    def __init__(self, ids: Iterable[str] = ()):
        self._ids: dict[str, None] = dict.fromkeys(ids)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._ids))

    def ids(self) -> list[str]:
        return list(self._ids)

    def select(self, ids: Iterable[str]) -> None:
        for k in ids:
            self._ids[k] = None

    def deselect(self, ids: Iterable[str]) -> None:
        for k in ids:
            self._ids.pop(k, None)

    def toggle(self, entry_id: str) -> bool:
        if entry_id in self._ids:
            del self._ids[entry_id]
            return False
        self._ids[entry_id] = None
        return True

    def select_all(self, ids: Iterable[str]) -> None:
        self._ids = dict.fromkeys(ids)

    def clear(self) -> None:
        self._ids.clear()

    def prune(self, store: EntityStore) -> list[str]:
        gone = [k for k in self._ids if k not in store]
        for k in gone:
            del self._ids[k]
        return gone


@dataclass(frozen=True)
class BulkOutcome:
    kind: str
    ids: tuple[str, ...] = ()

    @property
    def count(self) -> int:
        return len(self.ids)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind, "ids": list(self.ids), "count": self.count}


class BulkExecutor:
    """Applies one delta (or deletion) to many entries; the remote call is all-or-nothing."""

    def __init__(
        self,
        store: EntityStore,
        remote: Any,
        snapshots: SnapshotManager,
        *,
        emitter: Emitter | None = None,
        status: OpStatus | None = None,
        on_settled: Callable[[bool], None] | None = None,
    ):
        self.store = store
        self.remote = remote
        self.snapshots = snapshots
        self.emitter = emitter or Emitter(None)
        self.status = status or OpStatus("bulk")
        self.on_settled = on_settled

    def _targets(self, ids: Iterable[str]) -> list[str]:
        out = list(dict.fromkeys(str(k) for k in ids))
        missing = [k for k in out if k not in self.store]
        if missing:
            raise ListValidationError(f"unknown ids: {', '.join(missing)}")
        pending = [k for k in out if is_temp_id(k)]
        if pending:
            raise ListValidationError(f"entries still being created: {', '.join(pending)}")
        return out

    async def update(self, ids: Iterable[str], delta: Mapping[str, Any]) -> BulkOutcome:
        targets = self._targets(ids)
        if not targets:
            return BulkOutcome("update")
        changes: dict[str, Any] = {}
        for k in targets:
            changes = check_delta(delta, entry=self.store.get(k))
        if not changes:
            raise ListValidationError("empty update")

        snap = self.snapshots.capture(self.store, targets)
        now = utc_now()
        with self.store.transaction():
            for k in targets:
                cur = self.store.get(k)
                self.store.put(cur.with_changes(**changes, updated_at=now), state=PENDING)  # type: ignore[union-attr]
        await self._dispatch("update", snap, targets, self.remote.bulk_update(targets, wire(changes)))
        self.store.set_state(targets, CONFIRMED)
        self._done("update", snap, targets)
        return BulkOutcome("update", tuple(targets))

    async def delete(self, ids: Iterable[str], *, selection: Selection | None = None) -> BulkOutcome:
        targets = self._targets(ids)
        if not targets:
            return BulkOutcome("delete")
        snap = self.snapshots.capture(self.store, targets)
        with self.store.transaction():
            for k in targets:
                self.store.remove(k, keep_state=PENDING)
        await self._dispatch("delete", snap, targets, self.remote.bulk_delete(targets))
        for k in targets:
            self.store.drop_state(k)
        if selection is not None:
            selection.prune(self.store)
        self._done("delete", snap, targets)
        return BulkOutcome("delete", tuple(targets))

    async def _dispatch(self, kind: str, snap: Snapshot, targets: Sequence[str], call: Any) -> None:
        self.status.begin()
        self.emitter.emit(f"bulk:{kind}:start", count=len(targets))
        try:
            await call
        except (Exception, asyncio.CancelledError) as e:
            self.snapshots.restore(self.store, snap)
            self.status.fail(e)
            self.emitter.emit(f"bulk:{kind}:rollback", count=len(targets), error=str(e) or e.__class__.__name__)
            if self.on_settled:
                self.on_settled(False)
            if isinstance(e, asyncio.CancelledError):
                raise
            err = as_remote_error(e, f"bulk {kind}")
            if err is e:
                raise
            raise err from e

    def _done(self, kind: str, snap: Snapshot, targets: Sequence[str]) -> None:
        self.snapshots.release(snap)
        self.status.succeed()
        self.emitter.emit(f"bulk:{kind}:confirm", count=len(targets))
        if self.on_settled:
            self.on_settled(True)


__all__ = ["BulkExecutor", "BulkOutcome", "Selection"]
