# td_platform/engine/_mutations.py
# optimistic create/update/delete with rollback.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from _logging import log
from .. import statuses
from ._errors import ListValidationError, as_remote_error
from ._logging import Emitter
from ._snapshots import Snapshot, SnapshotManager
from ._status import OpStatus
from ._store import EntityStore
from ._types import (
    CONFIRMED,
    EDITABLE_FIELDS,
    MEDIA_TYPES,
    PENDING,
    ListEntry,
    Mutation,
    RemoteStore,
    coerce_fields,
    norm_keys,
    utc_now,
)

_log = log.child("engine.mutations")

TEMP_PREFIX = "temp-"
CREATE_FIELDS: frozenset[str] = EDITABLE_FIELDS | {"catalog_item_id", "media_type", "title", "unit_count", "created_at"}
SCORE_MIN, SCORE_MAX = 0.0, 10.0


def temp_id() -> str:
    return f"{TEMP_PREFIX}{uuid.uuid4().hex}"


def is_temp_id(entry_id: str | None) -> bool:
    return str(entry_id or "").startswith(TEMP_PREFIX)


#--- Validation ----------------------------------------------------------------
def check_delta(delta: Mapping[str, Any], *, entry: ListEntry | None = None, media_type: str | None = None,
                allowed: frozenset[str] = EDITABLE_FIELDS) -> dict[str, Any]:
    """Normalise a field delta, raising ListValidationError before anything touches the store."""
    d = norm_keys(delta or {})
    bad = sorted(k for k in d if k not in allowed)
    if bad:
        raise ListValidationError(f"fields not editable: {', '.join(bad)}")
    try:
        out = coerce_fields(d)
    except (TypeError, ValueError) as e:
        raise ListValidationError(f"invalid value: {e}") from e

    mt = media_type or (entry.media_type if entry else None)
    if "status_id" in out and not statuses.is_valid(out["status_id"], mt):
        raise ListValidationError(f"unknown status {out['status_id']!r} for {mt or 'list'}")
    if "progress" in out:
        if out["progress"] < 0:
            raise ListValidationError("progress must be >= 0")
        cap = out.get("unit_count", entry.unit_count if entry else None)
        if cap and out["progress"] > cap:
            raise ListValidationError(f"progress {out['progress']} exceeds {cap} units")
    if out.get("score") is not None and not (SCORE_MIN <= out["score"] <= SCORE_MAX):
        raise ListValidationError(f"score must be between {SCORE_MIN:g} and {SCORE_MAX:g}")
    return out


def check_create(payload: Mapping[str, Any]) -> dict[str, Any]:
    d = norm_keys(payload or {})
    mt = str(d.get("media_type") or "").strip().lower()
    if mt not in MEDIA_TYPES:
        raise ListValidationError(f"media_type must be one of {', '.join(MEDIA_TYPES)}")
    if not str(d.get("catalog_item_id") or "").strip():
        raise ListValidationError("catalog_item_id is required")
    if not d.get("status_id"):
        raise ListValidationError("status_id is required")
    return check_delta(d, media_type=mt, allowed=CREATE_FIELDS)


def wire(d: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in d.items():
        if k == "tags":
            out[k] = sorted(v or ())
        elif hasattr(v, "isoformat"):
            out[k] = v.isoformat().replace("+00:00", "Z")
        else:
            out[k] = v
    return out


def canonical(raw: Mapping[str, Any] | None, local: ListEntry) -> ListEntry:
    """Server record wins; catalog mirror fields fall back to what we already had."""
    if not raw:
        return local
    d = norm_keys(raw)
    for k in ("title", "unit_count"):
        if d.get(k) is None:
            d[k] = getattr(local, k)
    return ListEntry.from_dict(d)


@dataclass(frozen=True)
class MutationOutcome:
    kind: str
    entry_id: str
    entry: ListEntry | None = None
    temp_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.entry_id,
            "temp_id": self.temp_id,
            "entry": self.entry.to_dict() if self.entry else None,
        }


#--- Coordinator ---------------------------------------------------------------
class MutationCoordinator:
    """Applies one create/update/delete optimistically and resolves it against the remote store.

    Every dispatched mutation ends Confirmed or Reverted. Concurrent mutations on different
    entries resolve independently; callers serialise mutations on the same entry.
    """

    def __init__(
        self,
        store: EntityStore,
        remote: RemoteStore,
        snapshots: SnapshotManager,
        *,
        emitter: Emitter | None = None,
        status: OpStatus | None = None,
        next_position: Callable[[], int] | None = None,
        optimistic: bool = True,
        on_settled: Callable[[bool], None] | None = None,
    ):
        self.store = store
        self.remote = remote
        self.snapshots = snapshots
        self.emitter = emitter or Emitter(None)
        self.status = status or OpStatus("mutation")
        self.next_position = next_position or (lambda: store.max_sort_order() + 1)
        self.optimistic = optimistic
        self.on_settled = on_settled

    async def apply(self, m: Mutation) -> MutationOutcome:
        if m.kind == "create":
            return await self.create(m.delta)
        if m.kind == "update":
            return await self.update(str(m.entry_id or ""), m.delta)
        if m.kind == "delete":
            return await self.delete(str(m.entry_id or ""))
        raise ListValidationError(f"unknown mutation kind {m.kind!r}")

    async def create(self, payload: Mapping[str, Any]) -> MutationOutcome:
        fields = check_create(payload)
        tid = temp_id()
        now = utc_now()
        base: dict[str, Any] = {"id": tid, "sort_order": self.next_position(), "created_at": now, "updated_at": now}
        base.update(fields)
        if base.get("created_at") is None:
            base["created_at"] = now
        local = ListEntry(**base)

        snap = self.snapshots.capture(self.store, [tid])
        if self.optimistic:
            self.store.put(local, state=PENDING)
        body = wire({k: v for k, v in local.to_dict().items() if k not in ("id", "updated_at", "title", "unit_count")})
        self._start("create", tid)
        try:
            raw = await self.remote.create_entry(body)
            final = canonical(raw, local)
        except (Exception, asyncio.CancelledError) as e:
            self._rollback(snap, "create", tid, e)
            if isinstance(e, asyncio.CancelledError):
                raise
            err = as_remote_error(e, "create")
            if err is e:
                raise
            raise err from e

        if self.optimistic:
            self.store.swap(tid, final, state=CONFIRMED)
        else:
            self.store.put(final, state=CONFIRMED)
        self._confirm(snap, "create", final.id, temp_id=tid)
        return MutationOutcome("create", final.id, final, temp_id=tid)

    async def update(self, entry_id: str, delta: Mapping[str, Any]) -> MutationOutcome:
        cur = self._existing(entry_id)
        changes = check_delta(delta, entry=cur)
        if not changes:
            raise ListValidationError("empty update")
        local = cur.with_changes(**changes, updated_at=utc_now())

        snap = self.snapshots.capture(self.store, [entry_id])
        if self.optimistic:
            self.store.put(local, state=PENDING)
        self._start("update", entry_id)
        try:
            raw = await self.remote.update_entry(entry_id, wire(changes))
            final = canonical(raw, local)
        except (Exception, asyncio.CancelledError) as e:
            self._rollback(snap, "update", entry_id, e)
            if isinstance(e, asyncio.CancelledError):
                raise
            err = as_remote_error(e, "update")
            if err is e:
                raise
            raise err from e

        self.store.put(final, state=CONFIRMED)
        self._confirm(snap, "update", entry_id)
        return MutationOutcome("update", entry_id, final)

    async def delete(self, entry_id: str) -> MutationOutcome:
        self._existing(entry_id)
        snap = self.snapshots.capture(self.store, [entry_id])
        if self.optimistic:
            self.store.remove(entry_id, keep_state=PENDING)
        self._start("delete", entry_id)
        try:
            await self.remote.delete_entry(entry_id)
        except (Exception, asyncio.CancelledError) as e:
            self._rollback(snap, "delete", entry_id, e)
            if isinstance(e, asyncio.CancelledError):
                raise
            err = as_remote_error(e, "delete")
            if err is e:
                raise
            raise err from e

        if self.optimistic:
            self.store.drop_state(entry_id)
        else:
            self.store.remove(entry_id)
        self._confirm(snap, "delete", entry_id)
        return MutationOutcome("delete", entry_id, None)

    def _existing(self, entry_id: str) -> ListEntry:
        cur = self.store.get(entry_id)
        if cur is None:
            raise ListValidationError(f"unknown entry {entry_id!r}")
        if is_temp_id(entry_id):
            raise ListValidationError(f"entry {entry_id!r} is still being created")
        return cur

    def _start(self, kind: str, entry_id: str) -> None:
        self.status.begin()
        self.emitter.emit("mutation:start", kind=kind, id=entry_id)

    def _confirm(self, snap: Snapshot, kind: str, entry_id: str, **extra: Any) -> None:
        self.snapshots.release(snap)
        self.status.succeed()
        self.emitter.emit("mutation:confirm", kind=kind, id=entry_id, **extra)
        if self.on_settled:
            self.on_settled(True)

    def _rollback(self, snap: Snapshot, kind: str, entry_id: str, err: BaseException) -> None:
        self.snapshots.restore(self.store, snap)
        self.status.fail(err)
        _log.warn("mutation reverted", extra={"kind": kind, "id": entry_id, "error": repr(err)})
        self.emitter.emit("mutation:rollback", kind=kind, id=entry_id, error=str(err) or err.__class__.__name__)
        if self.on_settled:
            self.on_settled(False)


__all__ = [
    "MutationCoordinator", "MutationOutcome", "check_delta", "check_create",
    "temp_id", "is_temp_id", "canonical", "wire", "TEMP_PREFIX",
]
