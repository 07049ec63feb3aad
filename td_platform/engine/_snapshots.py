# td_platform/engine/_snapshots.py
# pre-mutation snapshots and rollback.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field

from ._store import EntityStore
from ._types import REVERTED, EntryState, ListEntry


@dataclass(frozen=True)
class SnapItem:
    entry_id: str
    entry: ListEntry | None  # None: did not exist before the mutation
    index: int
    state: EntryState | None


@dataclass(frozen=True)
class Snapshot:
    token: str
    items: tuple[SnapItem, ...]
    taken_at: float = field(default_factory=time.time)

    @property
    def ids(self) -> list[str]:
        return [i.entry_id for i in self.items]


class SnapshotManager:
    """Captures the slice of the store a mutation will touch and restores it on failure.

    Entries are immutable, so a snapshot holds references, not copies.
    """

    def __init__(self) -> None:
        self.open: dict[str, Snapshot] = {}

    def capture(self, store: EntityStore, ids: Iterable[str]) -> Snapshot:
        seen: set[str] = set()
        items: list[SnapItem] = []
        for k in ids:
            if k in seen:
                continue
            seen.add(k)
            items.append(SnapItem(k, store.get(k), store.index_of(k), store.state_of(k)))
        snap = Snapshot(token=uuid.uuid4().hex, items=tuple(items))
        self.open[snap.token] = snap
        return snap

    def restore(self, store: EntityStore, snap: Snapshot, *, mark_reverted: bool = True) -> None:
        with store.transaction():
            for it in snap.items:
                store.remove(it.entry_id)
            for it in sorted((i for i in snap.items if i.entry is not None), key=lambda i: i.index):
                state = REVERTED if mark_reverted else (it.state or REVERTED)
                at = it.index if it.index >= 0 else None
                store.put(it.entry, state=state, at=at)  # type: ignore[arg-type]
        self.release(snap)

    def release(self, snap: Snapshot) -> None:
        self.open.pop(snap.token, None)

    def __len__(self) -> int:
        return len(self.open)
