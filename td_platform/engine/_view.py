# td_platform/engine/_view.py
# filtered, sorted view over the entity store.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

from collections.abc import Callable, Iterable
from functools import lru_cache
from typing import Any

from .. import statuses
from ._errors import ListValidationError
from ._types import SORT_FIELDS, ListEntry, ListFilter, ListSort

MINUTES_PER_EPISODE = 24


def matches(e: ListEntry, flt: ListFilter) -> bool:
    if flt.search:
        needle = flt.search.casefold()
        if not any(needle in s.casefold() for s in (e.title or "", e.notes or "", *e.tags)):
            return False
    if flt.statuses and e.status_id not in flt.statuses:
        return False
    if flt.media_type and e.media_type != flt.media_type:
        return False
    if flt.score and not flt.score.contains(e.score or 0):
        return False
    if flt.progress and not flt.progress.contains(e.progress):
        return False
    if flt.tags and not (e.tags & flt.tags):
        return False
    if flt.created and not flt.created.contains(e.created_at):
        return False
    return True


def _raw_key(name: str) -> Callable[[ListEntry], Any]:
    if name == "title":
        return lambda e: e.title.casefold() if e.title else None
    if name == "status":
        return lambda e: statuses.label_of(e.status_id)
    return lambda e: getattr(e, name)


def sort_key(name: str) -> Callable[[ListEntry], tuple]:
    """Null values sort lowest: first ascending, last descending."""
    if name not in SORT_FIELDS:
        raise ListValidationError(f"unknown sort field {name!r}")
    raw = _raw_key(name)

    def _key(e: ListEntry) -> tuple:
        v = raw(e)
        return (0,) if v is None else (1, v)

    return _key


@lru_cache(maxsize=32)
def _derive(entries: tuple[ListEntry, ...], flt: ListFilter | None, sort: ListSort | None) -> tuple[ListEntry, ...]:
    rows = [e for e in entries if flt is None or matches(e, flt)]
    srt = sort or ListSort()
    rows.sort(key=lambda e: e.id)
    rows.sort(key=sort_key(srt.field), reverse=srt.direction == "desc")
    return tuple(rows)


def derive(entries: Iterable[ListEntry], flt: ListFilter | None = None, sort: ListSort | None = None) -> tuple[ListEntry, ...]:
    """Filter then sort. Ties break on id ascending; equal inputs return the same tuple object."""
    if sort is not None and sort.field not in SORT_FIELDS:
        raise ListValidationError(f"unknown sort field {sort.field!r}")
    if sort is not None and sort.direction not in ("asc", "desc"):
        raise ListValidationError(f"unknown sort direction {sort.direction!r}")
    return _derive(tuple(entries), flt, sort)


def stats(entries: Iterable[ListEntry], media_type: str | None = None) -> dict[str, Any]:
    rows = [e for e in entries if media_type in (None, "both") or e.media_type == media_type]
    counts = {s.id: 0 for s in statuses.statuses_for(media_type)}
    for e in rows:
        counts[e.status_id] = counts.get(e.status_id, 0) + 1
    scored = [e.score for e in rows if e.score is not None]
    minutes = sum(e.progress for e in rows if e.media_type == "anime") * MINUTES_PER_EPISODE
    return {
        "total": len(rows),
        "status_counts": counts,
        "average_score": round(sum(scored) / len(scored), 2) if scored else 0.0,
        "scored": len(scored),
        "favorites": sum(1 for e in rows if e.is_favorite),
        "total_hours": round(minutes / 60, 1),
    }


__all__ = ["derive", "matches", "sort_key", "stats"]
