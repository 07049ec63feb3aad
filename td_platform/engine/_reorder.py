# td_platform/engine/_reorder.py
# manual ordering: dense positions, changed-only persistence.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeVar

from ._errors import ListValidationError, as_remote_error
from ._logging import Emitter
from ._snapshots import SnapshotManager
from ._status import OpStatus
from ._store import EntityStore
from ._types import CONFIRMED, PENDING

T = TypeVar("T")


def array_move(seq: Sequence[T], from_index: int, to_index: int) -> list[T]:
    """Return a copy of `seq` with the item at `from_index` moved to `to_index`."""
    out = list(seq)
    n = len(out)
    if not (0 <= from_index < n) or not (0 <= to_index < n):
        raise ListValidationError(f"move {from_index} -> {to_index} out of range for {n} items")
    out.insert(to_index, out.pop(from_index))
    return out


def dense_positions(ids: Sequence[str]) -> dict[str, int]:
    return {k: i for i, k in enumerate(ids)}


@dataclass(frozen=True)
class ReorderOutcome:
    positions: dict[str, int] = field(default_factory=dict)
    persisted: tuple[dict[str, Any], ...] = ()

    @property
    def changed(self) -> int:
        return len(self.persisted)

    def to_dict(self) -> dict[str, Any]:
        return {"positions": dict(self.positions), "persisted": list(self.persisted), "changed": self.changed}


class ReorderEngine:
    """Turns a caller-supplied ordering into dense sort_order values and persists the changed ones."""

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
        self.status = status or OpStatus("reorder")
        self.on_settled = on_settled

    @property
    def is_reordering(self) -> bool:
        return self.status.is_pending

    def next_position(self) -> int:
        return self.store.max_sort_order() + 1

    def plan(self, ordered_ids: Sequence[str]) -> ReorderOutcome:
        ids = [str(k) for k in ordered_ids]
        if len(set(ids)) != len(ids):
            dupes = sorted({k for k in ids if ids.count(k) > 1})
            raise ListValidationError(f"duplicate ids in ordering: {', '.join(dupes)}")
        missing = [k for k in ids if k not in self.store]
        if missing:
            raise ListValidationError(f"unknown ids in ordering: {', '.join(missing)}")
        positions = dense_positions(ids)
        persisted = tuple(
            {"id": k, "sort_order": pos}
            for k, pos in positions.items()
            if self.store.get(k).sort_order != pos  # type: ignore[union-attr]
        )
        return ReorderOutcome(positions, persisted)

    async def reorder(self, ordered_ids: Sequence[str]) -> ReorderOutcome:
        if len(ordered_ids) <= 1:
            return ReorderOutcome(dense_positions([str(k) for k in ordered_ids]) if ordered_ids else {})
        plan = self.plan(ordered_ids)
        if not plan.persisted:
            self.emitter.emit("reorder:noop", count=len(plan.positions))
            return plan

        ids = [u["id"] for u in plan.persisted]
        snap = self.snapshots.capture(self.store, ids)
        with self.store.transaction():
            for u in plan.persisted:
                cur = self.store.get(u["id"])
                self.store.put(cur.with_changes(sort_order=u["sort_order"]), state=PENDING)  # type: ignore[union-attr]
        self.status.begin()
        self.emitter.emit("reorder:start", changed=len(ids), total=len(plan.positions))
        try:
            await self.remote.bulk_set_order([dict(u) for u in plan.persisted])
        except (Exception, asyncio.CancelledError) as e:
            self.snapshots.restore(self.store, snap)
            self.status.fail(e)
            self.emitter.emit("reorder:rollback", changed=len(ids), error=str(e) or e.__class__.__name__)
            if self.on_settled:
                self.on_settled(False)
            if isinstance(e, asyncio.CancelledError):
                raise
            err = as_remote_error(e, "reorder")
            if err is e:
                raise
            raise err from e

        self.store.set_state(ids, CONFIRMED)
        self.snapshots.release(snap)
        self.status.succeed()
        self.emitter.emit("reorder:confirm", changed=len(ids))
        if self.on_settled:
            self.on_settled(True)
        return plan

    async def move(self, visible_ids: Sequence[str], from_index: int, to_index: int) -> ReorderOutcome:
        """Drag-and-drop helper: move one item inside the visible ordering, then reorder."""
        return await self.reorder(array_move(visible_ids, from_index, to_index))


__all__ = ["ReorderEngine", "ReorderOutcome", "array_move", "dense_positions"]
