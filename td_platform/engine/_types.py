# td_platform/engine/_types.py
# types and protocols for the list engine.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import datetime as _dt
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, fields, replace
from typing import Any, Literal, Protocol

MediaType = Literal["anime", "manga"]
EntryState = Literal["confirmed", "pending", "reverted"]
MutationKind = Literal["create", "update", "delete"]

CONFIRMED: EntryState = "confirmed"
PENDING: EntryState = "pending"
REVERTED: EntryState = "reverted"

MEDIA_TYPES: tuple[str, ...] = ("anime", "manga")

# Fields a caller may change through update/bulk deltas. sort_order belongs to the reorder engine;
# title/unit_count mirror the catalog and are read-only here.
EDITABLE_FIELDS: frozenset[str] = frozenset({
    "status_id", "progress", "score", "tags", "notes",
    "is_favorite", "is_pinned", "is_private",
})

_CAMEL = {
    "catalogItemId": "catalog_item_id",
    "statusId": "status_id",
    "mediaType": "media_type",
    "sortOrder": "sort_order",
    "isFavorite": "is_favorite",
    "isPinned": "is_pinned",
    "isPrivate": "is_private",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "unitCount": "unit_count",
}


def parse_ts(v: Any) -> _dt.datetime | None:
    if v in (None, "", 0):
        return None
    if isinstance(v, _dt.datetime):
        return v if v.tzinfo else v.replace(tzinfo=_dt.timezone.utc)
    if isinstance(v, _dt.date):
        return _dt.datetime(v.year, v.month, v.day, tzinfo=_dt.timezone.utc)
    if isinstance(v, (int, float)):
        return _dt.datetime.fromtimestamp(float(v), tz=_dt.timezone.utc)
    s = str(v).strip().replace("Z", "+00:00")
    if len(s) == 10:
        s += "T00:00:00+00:00"
    out = _dt.datetime.fromisoformat(s.replace(" ", "T"))
    return out if out.tzinfo else out.replace(tzinfo=_dt.timezone.utc)


def iso(v: _dt.datetime | None) -> str | None:
    return v.isoformat().replace("+00:00", "Z") if v else None


def utc_now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def norm_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    """Accept both snake_case and the camelCase spelling used by JS clients."""
    return {_CAMEL.get(str(k), str(k)): v for k, v in data.items()}


def _as_tags(v: Any) -> frozenset[str]:
    if v is None or v == "":
        return frozenset()
    if isinstance(v, str):
        v = v.replace(",", ";").split(";")
    return frozenset(t.strip() for t in v if str(t).strip())


def _as_bool(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in ("1", "true", "yes", "y", "on")
    return bool(v)


@dataclass(frozen=True)
class ListEntry:
    id: str
    catalog_item_id: str
    status_id: str
    media_type: str
    progress: int = 0
    score: float | None = None
    tags: frozenset[str] = frozenset()
    notes: str | None = None
    sort_order: int = 0
    is_favorite: bool = False
    is_pinned: bool = False
    is_private: bool = False
    created_at: _dt.datetime | None = None
    updated_at: _dt.datetime | None = None
    title: str | None = None
    unit_count: int | None = None

    def with_changes(self, **changes: Any) -> "ListEntry":
        return replace(self, **coerce_fields(changes))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "catalog_item_id": self.catalog_item_id,
            "status_id": self.status_id,
            "media_type": self.media_type,
            "progress": self.progress,
            "score": self.score,
            "tags": sorted(self.tags),
            "notes": self.notes,
            "sort_order": self.sort_order,
            "is_favorite": self.is_favorite,
            "is_pinned": self.is_pinned,
            "is_private": self.is_private,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
            "title": self.title,
            "unit_count": self.unit_count,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ListEntry":
        d = norm_keys(data)
        known = {f.name for f in fields(cls)}
        kw = coerce_fields({k: v for k, v in d.items() if k in known})
        for req in ("id", "catalog_item_id", "status_id", "media_type"):
            if not kw.get(req):
                raise ValueError(f"missing {req}")
        return cls(**kw)


def coerce_fields(d: Mapping[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in d.items():
        if k in ("id", "catalog_item_id", "status_id"):
            out[k] = str(v) if v is not None else v
        elif k == "media_type":
            out[k] = str(v or "").strip().lower()
        elif k in ("progress", "sort_order"):
            out[k] = int(v or 0)
        elif k == "unit_count":
            out[k] = int(v) if v not in (None, "") else None
        elif k == "score":
            out[k] = float(v) if v not in (None, "") else None
        elif k == "tags":
            out[k] = _as_tags(v)
        elif k in ("is_favorite", "is_pinned", "is_private"):
            out[k] = _as_bool(v)
        elif k in ("created_at", "updated_at"):
            out[k] = parse_ts(v)
        elif k in ("notes", "title"):
            out[k] = str(v) if v not in (None, "") else None
        else:
            out[k] = v
    return out


@dataclass(frozen=True)
class Mutation:
    kind: MutationKind
    entry_id: str | None = None
    delta: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, payload: Mapping[str, Any]) -> "Mutation":
        return cls("create", None, dict(payload))

    @classmethod
    def update(cls, entry_id: str, delta: Mapping[str, Any]) -> "Mutation":
        return cls("update", entry_id, dict(delta))

    @classmethod
    def delete(cls, entry_id: str) -> "Mutation":
        return cls("delete", entry_id, {})


@dataclass(frozen=True)
class Range:
    min: float | None = None
    max: float | None = None

    def contains(self, v: float) -> bool:
        if self.min is not None and v < self.min:
            return False
        if self.max is not None and v > self.max:
            return False
        return True


@dataclass(frozen=True)
class DateRange:
    start: _dt.datetime | None = None
    end: _dt.datetime | None = None

    def contains(self, v: _dt.datetime | None) -> bool:
        if v is None:
            return self.start is None and self.end is None
        if self.start is not None and v < self.start:
            return False
        if self.end is not None and v > self.end:
            return False
        return True


@dataclass(frozen=True)
class ListFilter:
    search: str | None = None
    statuses: frozenset[str] | None = None
    media_type: str | None = None
    score: Range | None = None
    progress: Range | None = None
    tags: frozenset[str] | None = None
    created: DateRange | None = None

    @classmethod
    def build(
        cls,
        *,
        search: str | None = None,
        status: str | Iterable[str] | None = None,
        media_type: str | None = None,
        score: Mapping[str, Any] | Range | None = None,
        progress: Mapping[str, Any] | Range | None = None,
        tags: Iterable[str] | None = None,
        created: Mapping[str, Any] | DateRange | None = None,
    ) -> "ListFilter":
        def _rng(r: Any) -> Range | None:
            if r is None or isinstance(r, Range):
                return r
            lo, hi = r.get("min"), r.get("max")
            return Range(float(lo) if lo is not None else None, float(hi) if hi is not None else None)

        def _drng(r: Any) -> DateRange | None:
            if r is None or isinstance(r, DateRange):
                return r
            return DateRange(parse_ts(r.get("start")), parse_ts(r.get("end")))

        sts = frozenset([status] if isinstance(status, str) else status) if status else None
        mt = (media_type or "").strip().lower() or None
        return cls(
            search=(search or "").strip() or None,
            statuses=sts or None,
            media_type=None if mt == "both" else mt,
            score=_rng(score),
            progress=_rng(progress),
            tags=frozenset(tags) if tags else None,
            created=_drng(created),
        )


SortField = Literal["title", "status", "progress", "score", "updated_at", "created_at", "sort_order"]
SORT_FIELDS: tuple[str, ...] = ("title", "status", "progress", "score", "updated_at", "created_at", "sort_order")


@dataclass(frozen=True)
class ListSort:
    field: str = "sort_order"
    direction: Literal["asc", "desc"] = "asc"


@dataclass
class SearchSession:
    query: str = ""
    scope: str = "both"
    sort: str = "relevance"
    page: int = 1
    seq: int = 0


@dataclass(frozen=True)
class SearchPage:
    items: tuple[Mapping[str, Any], ...] = ()
    total: int = 0
    has_more: bool = False
    page: int = 1


@dataclass
class ImportOptions:
    merge_duplicates: bool = True
    update_existing: bool = False
    import_ratings: bool = True
    import_progress: bool = True
    import_dates: bool = True

    @classmethod
    def from_mapping(cls, m: Mapping[str, Any] | None) -> "ImportOptions":
        d = {_snake(k): v for k, v in (m or {}).items()}
        known = {f.name for f in fields(cls)}
        return cls(**{k: _as_bool(v) for k, v in d.items() if k in known})


def _snake(k: str) -> str:
    return "".join(f"_{c.lower()}" if c.isupper() else c for c in str(k)).lstrip("_")


@dataclass
class ImportResult:
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success_count": self.success_count,
            "error_count": self.error_count,
            "skipped_count": self.skipped_count,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class CustomList:
    """A named, user-curated collection kept beside the status list."""

    id: str
    name: str
    description: str | None = None
    is_public: bool = False
    is_collaborative: bool = False
    share_token: str | None = None
    sort_order: int = 0
    item_count: int = 0
    created_at: _dt.datetime | None = None
    updated_at: _dt.datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "is_public": self.is_public,
            "is_collaborative": self.is_collaborative,
            "share_token": self.share_token,
            "sort_order": self.sort_order,
            "item_count": self.item_count,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CustomList":
        d = {_snake(k): v for k, v in data.items()}
        items = d.get("items")
        count = d.get("item_count")
        if count is None and isinstance(items, Sequence) and not isinstance(items, str):
            count = len(items)
        if not d.get("id") or not str(d.get("name") or "").strip():
            raise ValueError("custom list needs an id and a name")
        return cls(
            id=str(d["id"]),
            name=str(d["name"]).strip(),
            description=str(d["description"]) if d.get("description") not in (None, "") else None,
            is_public=_as_bool(d.get("is_public")),
            is_collaborative=_as_bool(d.get("is_collaborative")),
            share_token=str(d["share_token"]) if d.get("share_token") else None,
            sort_order=int(d.get("sort_order") or 0),
            item_count=int(count or 0),
            created_at=parse_ts(d.get("created_at")),
            updated_at=parse_ts(d.get("updated_at")),
        )


class RemoteStore(Protocol):
    async def fetch_entries(self, media_type: str | None = None) -> Sequence[Mapping[str, Any]]: ...
    async def create_entry(self, payload: Mapping[str, Any]) -> Mapping[str, Any]: ...
    async def update_entry(self, entry_id: str, delta: Mapping[str, Any]) -> Mapping[str, Any]: ...
    async def delete_entry(self, entry_id: str) -> None: ...
    async def bulk_update(self, ids: Sequence[str], delta: Mapping[str, Any]) -> None: ...
    async def bulk_delete(self, ids: Sequence[str]) -> None: ...
    async def bulk_set_order(self, updates: Sequence[Mapping[str, Any]]) -> None: ...
    async def query(
        self,
        filters: Mapping[str, Any],
        page: int,
        page_size: int,
        sort: str,
    ) -> Mapping[str, Any]: ...
    async def import_batch(self, records: Sequence[Mapping[str, Any]], options: Mapping[str, Any]) -> Mapping[str, Any]: ...
    async def export_all(self, fmt: str) -> str: ...
    async def fetch_custom_lists(self) -> Sequence[Mapping[str, Any]]: ...
    async def create_custom_list(self, payload: Mapping[str, Any]) -> Mapping[str, Any]: ...
    async def aclose(self) -> None: ...


__all__ = [
    "MediaType", "EntryState", "MutationKind", "CONFIRMED", "PENDING", "REVERTED",
    "MEDIA_TYPES", "EDITABLE_FIELDS", "SORT_FIELDS",
    "ListEntry", "Mutation", "Range", "DateRange", "ListFilter", "ListSort",
    "SearchSession", "SearchPage", "ImportOptions", "ImportResult", "CustomList", "RemoteStore",
    "parse_ts", "iso", "utc_now", "norm_keys", "coerce_fields",
]
