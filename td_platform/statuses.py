# td_platform/statuses.py
# Tsundoku - fixed catalogue of list statuses.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ListStatus:
    id: str
    label: str
    media_type: str  # anime | manga | both
    sort_order: int


STATUSES: tuple[ListStatus, ...] = (
    ListStatus("watching", "Watching", "anime", 0),
    ListStatus("reading", "Reading", "manga", 1),
    ListStatus("completed", "Completed", "both", 2),
    ListStatus("on_hold", "On Hold", "both", 3),
    ListStatus("dropped", "Dropped", "both", 4),
    ListStatus("plan_to_watch", "Plan to Watch", "anime", 5),
    ListStatus("plan_to_read", "Plan to Read", "manga", 6),
)

_BY_ID: dict[str, ListStatus] = {s.id: s for s in STATUSES}

# Labels used by MyAnimeList exports and other trackers.
_ALIASES: dict[str, str] = {
    "current": "watching",
    "in_progress": "watching",
    "planning": "plan_to_watch",
    "plan_to_watch": "plan_to_watch",
    "plantowatch": "plan_to_watch",
    "plan_to_read": "plan_to_read",
    "plantoread": "plan_to_read",
    "paused": "on_hold",
    "onhold": "on_hold",
    "finished": "completed",
    "complete": "completed",
}


def statuses_for(media_type: str | None) -> list[ListStatus]:
    mt = (media_type or "both").lower()
    if mt == "both":
        return list(STATUSES)
    return [s for s in STATUSES if s.media_type in (mt, "both")]


def label_of(status_id: str | None) -> str | None:
    s = _BY_ID.get(str(status_id or ""))
    return s.label if s else None


def is_valid(status_id: str | None, media_type: str | None = None) -> bool:
    s = _BY_ID.get(str(status_id or ""))
    if not s:
        return False
    return media_type in (None, "both") or s.media_type in (media_type, "both")


def resolve(raw: Any, media_type: str | None = None) -> str | None:
    """Map a free-form status label ("Plan to Watch", "CURRENT", "on-hold") to a status id."""
    k = str(raw or "").strip().lower().replace("-", "_").replace(" ", "_")
    if not k:
        return None
    k = _ALIASES.get(k, k)
    if media_type == "manga":
        k = {"watching": "reading", "plan_to_watch": "plan_to_read"}.get(k, k)
    elif media_type == "anime":
        k = {"reading": "watching", "plan_to_read": "plan_to_watch"}.get(k, k)
    return k if is_valid(k, media_type) else None


__all__ = ["ListStatus", "STATUSES", "statuses_for", "label_of", "is_valid", "resolve"]
