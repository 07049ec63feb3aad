# /api/listsAPI.py
# Tsundoku - list view, entry writes, ordering and bulk actions
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Body, Path as FPath, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from td_platform import statuses
from td_platform.engine import ListFilter, ListManager, ListSort
from td_platform.engine._errors import ListValidationError

router = APIRouter(prefix="/api/lists", tags=["lists"])


class EntryIn(BaseModel):
    catalog_item_id: str
    status_id: str
    media_type: str
    progress: int | None = None
    score: float | None = None
    tags: list[str] | None = None
    notes: str | None = None
    is_favorite: bool | None = None
    is_pinned: bool | None = None
    is_private: bool | None = None
    title: str | None = None
    unit_count: int | None = None


class EntryPatch(BaseModel):
    status_id: str | None = None
    progress: int | None = None
    score: float | None = None
    tags: list[str] | None = None
    notes: str | None = None
    is_favorite: bool | None = None
    is_pinned: bool | None = None
    is_private: bool | None = None


class ReorderIn(BaseModel):
    ids: list[str]


class MoveIn(BaseModel):
    from_index: int
    to_index: int
    search: str | None = None
    status: list[str] | None = None
    media_type: str | None = None


class BulkIn(BaseModel):
    ids: list[str]
    delta: dict[str, Any]


class BulkDeleteIn(BaseModel):
    ids: list[str] | None = None


class SelectionIn(BaseModel):
    ids: list[str] = []
    mode: Literal["set", "add", "remove", "toggle", "clear"] = "set"


class CustomListIn(BaseModel):
    name: str
    description: str | None = None
    is_public: bool = False
    is_collaborative: bool = False


def _mgr(request: Request) -> ListManager:
    return request.app.state.lists


def _row(mgr: ListManager, entry: Any) -> dict[str, Any]:
    d = entry.to_dict()
    d["state"] = mgr.store.state_of(entry.id)
    d["status_label"] = statuses.label_of(entry.status_id)
    return d


def _nostore(res: JSONResponse) -> JSONResponse:
    res.headers["Cache-Control"] = "no-store"
    return res


@router.get("")
def api_lists(
    request: Request,
    q: str | None = Query(None, description="Free text over title, notes and tags"),
    status: list[str] | None = Query(None),
    media_type: str | None = Query(None),
    score_min: float | None = Query(None),
    score_max: float | None = Query(None),
    progress_min: int | None = Query(None),
    progress_max: int | None = Query(None),
    tags: list[str] | None = Query(None),
    created_from: str | None = Query(None),
    created_to: str | None = Query(None),
    sort: str = Query("sort_order"),
    direction: Literal["asc", "desc"] = Query("asc"),
) -> JSONResponse:
    mgr = _mgr(request)
    try:
        flt = ListFilter.build(
            search=q,
            status=status,
            media_type=media_type,
            score={"min": score_min, "max": score_max} if score_min is not None or score_max is not None else None,
            progress={"min": progress_min, "max": progress_max} if progress_min is not None or progress_max is not None else None,
            tags=tags,
            created={"start": created_from, "end": created_to} if created_from or created_to else None,
        )
    except ValueError as e:
        raise ListValidationError(f"invalid filter: {e}") from e
    rows = mgr.view(flt, ListSort(sort, direction))
    return _nostore(JSONResponse({
        "items": [_row(mgr, e) for e in rows],
        "count": len(rows),
        "total": len(mgr.store),
        "flags": mgr.flags(),
    }))


@router.get("/stats")
def api_lists_stats(request: Request) -> dict[str, Any]:
    return _mgr(request).stats()


@router.get("/flags")
def api_lists_flags(request: Request) -> dict[str, Any]:
    return _mgr(request).flags()


@router.get("/statuses")
def api_lists_statuses(media_type: str | None = Query(None)) -> list[dict[str, Any]]:
    return [
        {"id": s.id, "label": s.label, "media_type": s.media_type, "sort_order": s.sort_order}
        for s in statuses.statuses_for(media_type)
    ]


@router.get("/entries/{entry_id}")
def api_entry_get(request: Request, entry_id: str = FPath(...)) -> JSONResponse:
    mgr = _mgr(request)
    e = mgr.get(entry_id)
    if e is None:
        return JSONResponse({"ok": False, "error": f"unknown entry {entry_id!r}"}, status_code=404)
    return JSONResponse(_row(mgr, e))


@router.post("/entries", status_code=201)
async def api_entry_create(request: Request, payload: EntryIn = Body(...)) -> dict[str, Any]:
    out = await _mgr(request).add(payload.model_dump(exclude_none=True))
    return {"ok": True, **out.to_dict()}


@router.patch("/entries/{entry_id}")
async def api_entry_update(request: Request, entry_id: str = FPath(...), payload: EntryPatch = Body(...)) -> dict[str, Any]:
    out = await _mgr(request).update(entry_id, payload.model_dump(exclude_unset=True))
    return {"ok": True, **out.to_dict()}


@router.delete("/entries/{entry_id}")
async def api_entry_delete(request: Request, entry_id: str = FPath(...)) -> dict[str, Any]:
    out = await _mgr(request).delete(entry_id)
    return {"ok": True, **out.to_dict()}


@router.post("/reorder")
async def api_reorder(request: Request, payload: ReorderIn = Body(...)) -> dict[str, Any]:
    out = await _mgr(request).reorder(payload.ids)
    return {"ok": True, **out.to_dict()}


@router.post("/move")
async def api_move(request: Request, payload: MoveIn = Body(...)) -> dict[str, Any]:
    mgr = _mgr(request)
    flt = ListFilter.build(search=payload.search, status=payload.status, media_type=payload.media_type)
    out = await mgr.move(payload.from_index, payload.to_index, flt=flt)
    return {"ok": True, **out.to_dict()}


@router.post("/bulk")
async def api_bulk_update(request: Request, payload: BulkIn = Body(...)) -> dict[str, Any]:
    out = await _mgr(request).bulk_update(payload.ids, payload.delta)
    return {"ok": True, **out.to_dict()}


@router.post("/bulk/delete")
async def api_bulk_delete(request: Request, payload: BulkDeleteIn = Body(...)) -> dict[str, Any]:
    mgr = _mgr(request)
    out = await mgr.bulk_delete(payload.ids)
    return {"ok": True, **out.to_dict(), "selection": mgr.selection.ids()}


@router.get("/selection")
def api_selection(request: Request) -> dict[str, Any]:
    return {"ids": _mgr(request).selection.ids()}


@router.post("/selection")
def api_selection_set(request: Request, payload: SelectionIn = Body(...)) -> dict[str, Any]:
    sel = _mgr(request).selection
    if payload.mode == "set":
        sel.select_all(payload.ids)
    elif payload.mode == "add":
        sel.select(payload.ids)
    elif payload.mode == "remove":
        sel.deselect(payload.ids)
    elif payload.mode == "toggle":
        for k in payload.ids:
            sel.toggle(k)
    else:
        sel.clear()
    return {"ids": sel.ids()}


@router.post("/refresh")
async def api_refresh(request: Request) -> dict[str, Any]:
    n = await _mgr(request).refresh()
    return {"ok": True, "count": n}


@router.get("/custom")
async def api_custom_lists(request: Request, reload: bool = Query(True)) -> dict[str, Any]:
    mgr = _mgr(request)
    rows = await mgr.refresh_custom_lists() if reload else mgr.custom_lists.lists()
    return {"items": [c.to_dict() for c in rows], "count": len(rows)}


@router.post("/custom", status_code=201)
async def api_custom_list_create(request: Request, payload: CustomListIn = Body(...)) -> dict[str, Any]:
    created = await _mgr(request).create_custom_list(payload.model_dump())
    return {"ok": True, "list": created.to_dict()}
