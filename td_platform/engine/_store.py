# td_platform/engine/_store.py
# in-memory entity store for list entries.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator
from contextlib import contextmanager

from ._types import CONFIRMED, PENDING, EntryState, ListEntry

Listener = Callable[[int], None]


class EntityStore:
    """Keyed, ordered collection of the user's list entries plus their lifecycle state.

    Only the mutation coordinator, reorder engine and bulk executor write here. Readers go
    through `entries()`, which returns the same tuple object until the next write.
    """

    def __init__(self, entries: Iterable[ListEntry] = ()):
        self._entries: dict[str, ListEntry] = {}
        self._states: dict[str, EntryState] = {}
        self._listeners: list[Listener] = []
        self._frozen: tuple[ListEntry, ...] | None = None
        self._depth = 0
        self._dirty = False
        self.version = 0
        for e in entries:
            self._entries[e.id] = e
            self._states[e.id] = CONFIRMED

    # reads
    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return entry_id in self._entries

    def __iter__(self) -> Iterator[ListEntry]:
        return iter(self.entries())

    def get(self, entry_id: str) -> ListEntry | None:
        return self._entries.get(entry_id)

    def entries(self) -> tuple[ListEntry, ...]:
        if self._frozen is None:
            self._frozen = tuple(self._entries.values())
        return self._frozen

    def ids(self) -> list[str]:
        return list(self._entries)

    def index_of(self, entry_id: str) -> int:
        for i, k in enumerate(self._entries):
            if k == entry_id:
                return i
        return -1

    def state_of(self, entry_id: str) -> EntryState | None:
        return self._states.get(entry_id)

    def states(self) -> dict[str, EntryState]:
        return dict(self._states)

    def pending_ids(self) -> list[str]:
        return [k for k, v in self._states.items() if v == PENDING]

    def by_catalog_item(self, catalog_item_id: str, media_type: str | None = None) -> ListEntry | None:
        for e in self._entries.values():
            if e.catalog_item_id == catalog_item_id and (media_type is None or e.media_type == media_type):
                return e
        return None

    def max_sort_order(self) -> int:
        return max((e.sort_order for e in self._entries.values()), default=-1)

    # writes
    @contextmanager
    def transaction(self) -> Iterator["EntityStore"]:
        """Group several writes so listeners see one version bump."""
        self._depth += 1
        try:
            yield self
        finally:
            self._depth -= 1
            if self._depth == 0 and self._dirty:
                self._commit()

    def put(self, entry: ListEntry, *, state: EntryState = CONFIRMED, at: int | None = None) -> None:
        if at is None or entry.id in self._entries:
            self._entries[entry.id] = entry
        else:
            self._insert_at(entry.id, entry, at)
        self._states[entry.id] = state
        self._touch()

    def remove(self, entry_id: str, *, keep_state: EntryState | None = None) -> ListEntry | None:
        old = self._entries.pop(entry_id, None)
        if keep_state is None:
            self._states.pop(entry_id, None)
        else:
            self._states[entry_id] = keep_state
        self._touch()
        return old

    def swap(self, old_id: str, entry: ListEntry, *, state: EntryState = CONFIRMED) -> None:
        """Replace `old_id` by `entry` at the same position (temporary id -> server id)."""
        idx = self.index_of(old_id)
        self._entries.pop(old_id, None)
        self._states.pop(old_id, None)
        self._entries.pop(entry.id, None)
        self._insert_at(entry.id, entry, idx if idx >= 0 else len(self._entries))
        self._states[entry.id] = state
        self._touch()

    def set_state(self, ids: Iterable[str], state: EntryState) -> None:
        for k in ids:
            if k in self._entries:
                self._states[k] = state
            else:
                self._states.pop(k, None)
        self._touch()

    def drop_state(self, entry_id: str) -> None:
        if entry_id not in self._entries:
            self._states.pop(entry_id, None)

    def load(self, entries: Iterable[ListEntry]) -> None:
        """Replace confirmed content with server data; pending entries keep their local copy."""
        pending = {k: self._entries.get(k) for k in self.pending_ids()}
        fresh: dict[str, ListEntry] = {}
        for e in entries:
            if e.id in pending:
                local = pending[e.id]
                if local is not None:
                    fresh[e.id] = local
                continue
            fresh[e.id] = e
        for k, local in pending.items():
            if local is not None and k not in fresh:
                fresh[k] = local
        self._entries = fresh
        self._states = {k: (PENDING if k in pending else CONFIRMED) for k in fresh}
        for k, local in pending.items():
            if local is None:
                self._states[k] = PENDING
        self._touch()

    def subscribe(self, cb: Listener) -> Callable[[], None]:
        self._listeners.append(cb)

        def _unsubscribe() -> None:
            if cb in self._listeners:
                self._listeners.remove(cb)

        return _unsubscribe

    def _insert_at(self, key: str, entry: ListEntry, at: int) -> None:
        items = list(self._entries.items())
        at = max(0, min(at, len(items)))
        items.insert(at, (key, entry))
        self._entries = dict(items)

    def _touch(self) -> None:
        self._frozen = None
        self._dirty = True
        if self._depth == 0:
            self._commit()

    def _commit(self) -> None:
        self._dirty = False
        self.version += 1
        for cb in list(self._listeners):
            cb(self.version)
