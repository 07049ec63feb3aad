# /providers/store/_mod_MEMORY.py
# Tsundoku - in-process list store (local mode and tests)
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import secrets
import uuid
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from td_platform.engine._errors import ListValidationError
from td_platform.engine._mutations import wire
from td_platform.engine._transfer import MERGE_FIELDS, export_entries, merge_delta
from td_platform.engine._types import ListEntry, coerce_fields, iso, norm_keys, utc_now

from ._log import log as kvlog

__VERSION__ = "1.0.0"
__all__ = ["MemoryStore", "OPS", "get_manifest"]

STORE = "MEMORY"


def get_manifest() -> Mapping[str, Any]:
    return {
        "name": STORE,
        "label": "Local memory",
        "version": __VERSION__,
        "persistent": False,
        "features": {"search": True, "import_batch": True, "export_all": True, "custom_lists": True},
    }


class MemoryStore:
    """Keeps list rows and a small title catalog in dictionaries."""

    def __init__(self, catalog: Iterable[Mapping[str, Any]] = (), rows: Iterable[Mapping[str, Any]] = ()):
        self.catalog: list[dict[str, Any]] = [dict(c) for c in catalog]
        self.rows: dict[str, dict[str, Any]] = {}
        self.custom_lists: dict[str, dict[str, Any]] = {}
        for r in rows:
            d = norm_keys(r)
            d.setdefault("id", uuid.uuid4().hex)
            self.rows[str(d["id"])] = d

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any], **_: Any) -> "MemoryStore":
        st = dict(cfg.get("store") or {})
        return cls(catalog=st.get("catalog") or ())

    def _title(self, catalog_item_id: Any) -> Mapping[str, Any]:
        for c in self.catalog:
            if str(c.get("id")) == str(catalog_item_id):
                return c
        return {}

    def _out(self, row: Mapping[str, Any]) -> dict[str, Any]:
        d = dict(row)
        t = self._title(d.get("catalog_item_id"))
        if t:
            d.setdefault("title", t.get("title"))
            d.setdefault("unit_count", t.get("episodes") or t.get("chapters"))
        return d

    def _require(self, entry_id: str) -> dict[str, Any]:
        row = self.rows.get(str(entry_id))
        if row is None:
            raise ListValidationError(f"no list entry {entry_id!r}")
        return row

    async def fetch_entries(self, media_type: str | None = None) -> list[dict[str, Any]]:
        rows = [self._out(r) for r in self.rows.values() if media_type in (None, "both") or r.get("media_type") == media_type]
        rows.sort(key=lambda r: (int(r.get("sort_order") or 0), str(r.get("id"))))
        return rows

    async def create_entry(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        d = norm_keys(payload)
        d.pop("id", None)
        now = iso(utc_now())
        row = {**d, "id": uuid.uuid4().hex, "created_at": d.get("created_at") or now, "updated_at": now}
        self.rows[row["id"]] = row
        kvlog(STORE, "create", "debug", "entry created", id=row["id"])
        return self._out(row)

    async def update_entry(self, entry_id: str, delta: Mapping[str, Any]) -> dict[str, Any]:
        row = self._require(entry_id)
        row.update(norm_keys(delta))
        row["updated_at"] = iso(utc_now())
        return self._out(row)

    async def delete_entry(self, entry_id: str) -> None:
        self._require(entry_id)
        del self.rows[str(entry_id)]

    async def bulk_update(self, ids: Sequence[str], delta: Mapping[str, Any]) -> None:
        for k in ids:
            self._require(k)
        now = iso(utc_now())
        for k in ids:
            self.rows[str(k)].update(norm_keys(delta), updated_at=now)

    async def bulk_delete(self, ids: Sequence[str]) -> None:
        for k in ids:
            self._require(k)
        for k in ids:
            del self.rows[str(k)]

    async def bulk_set_order(self, updates: Sequence[Mapping[str, Any]]) -> None:
        for u in updates:
            self._require(str(u["id"]))
        for u in updates:
            self.rows[str(u["id"])]["sort_order"] = int(u["sort_order"])

    async def query(self, filters: Mapping[str, Any], page: int, page_size: int, sort: str) -> dict[str, Any]:
        q = str(filters.get("search") or "").casefold()
        ct = filters.get("content_type") or "both"
        hits = [
            c for c in self.catalog
            if (ct == "both" or c.get("content_type") == ct)
            and (q in str(c.get("title") or "").casefold() or q in str(c.get("title_english") or "").casefold())
        ]
        if sort == "title":
            hits.sort(key=lambda c: str(c.get("title") or "").casefold())
        elif sort in ("popularity", "score"):
            hits.sort(key=lambda c: -(c.get(sort) or 0))
        start = max(0, (page - 1) * page_size)
        items = hits[start:start + page_size]
        return {"items": items, "total_count": len(hits), "has_more": start + len(items) < len(hits)}

    async def import_batch(self, records: Sequence[Mapping[str, Any]], options: Mapping[str, Any]) -> dict[str, Any]:
        ok = skipped = 0
        for rec in records:
            d = norm_keys(rec)
            dup = next((r for r in self.rows.values()
                        if r.get("catalog_item_id") == d.get("catalog_item_id") and r.get("media_type") == d.get("media_type")), None)
            if dup is None:
                await self.create_entry(d)
                ok += 1
                continue
            if not options.get("merge_duplicates"):
                skipped += 1
                continue
            incoming = coerce_fields({k: v for k, v in d.items() if k in MERGE_FIELDS})
            delta = merge_delta(ListEntry.from_dict(dup), incoming, overwrite=bool(options.get("update_existing")))
            if not delta:
                skipped += 1
                continue
            dup.update(wire(delta), updated_at=iso(utc_now()))
            ok += 1
        return {"success_count": ok, "error_count": 0, "skipped_count": skipped, "errors": []}

    async def export_all(self, fmt: str) -> str:
        rows = await self.fetch_entries()
        return export_entries([ListEntry.from_dict(r) for r in rows], fmt)

    async def fetch_custom_lists(self) -> list[dict[str, Any]]:
        out = [dict(c) for c in self.custom_lists.values()]
        out.sort(key=lambda c: (int(c.get("sort_order") or 0), str(c.get("id"))))
        return out

    async def create_custom_list(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        now = iso(utc_now())
        row = {
            **dict(payload),
            "id": uuid.uuid4().hex,
            "share_token": secrets.token_urlsafe(12),
            "item_count": 0,
            "created_at": now,
            "updated_at": now,
        }
        self.custom_lists[row["id"]] = row
        kvlog(STORE, "custom_list", "debug", "custom list created", id=row["id"])
        return dict(row)

    async def aclose(self) -> None:
        return None


OPS = MemoryStore
