# /api/searchAPI.py
# Tsundoku - catalog search session endpoints
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Query, Request
from pydantic import BaseModel

from td_platform.engine import ListManager
from td_platform.engine._errors import ListValidationError
from td_platform.engine._search import SCOPES, SEARCH_SORTS

router = APIRouter(prefix="/api/search", tags=["search"])


class QueryIn(BaseModel):
    query: str
    scope: str | None = None
    sort: str | None = None
    wait: bool = False


class MoreIn(BaseModel):
    wait: bool = False


def _mgr(request: Request) -> ListManager:
    return request.app.state.lists


@router.get("")
def api_search_state(request: Request) -> dict[str, Any]:
    return _mgr(request).search.snapshot()


@router.put("/query")
async def api_search_query(request: Request, payload: QueryIn = Body(...)) -> dict[str, Any]:
    s = _mgr(request).search
    if payload.scope and payload.scope not in SCOPES:
        raise ListValidationError(f"scope must be one of {', '.join(SCOPES)}")
    if payload.sort and payload.sort not in SEARCH_SORTS:
        raise ListValidationError(f"sort must be one of {', '.join(SEARCH_SORTS)}")
    s.session.scope = payload.scope or s.session.scope
    s.session.sort = payload.sort or s.session.sort
    s.set_query(payload.query)
    if payload.wait:
        await s.settled()
    return s.snapshot()


@router.post("/more")
async def api_search_more(request: Request, payload: MoreIn = Body(MoreIn())) -> dict[str, Any]:
    s = _mgr(request).search
    task = s.load_more()
    if task is not None and payload.wait:
        await s.settled()
    return {**s.snapshot(), "started": task is not None}


@router.delete("")
async def api_search_cancel(request: Request) -> dict[str, Any]:
    s = _mgr(request).search
    s.cancel()
    return s.snapshot()


@router.get("/pages")
async def api_search_pages(
    request: Request,
    q: str = Query(...),
    max_pages: int = Query(3, ge=1, le=50),
) -> dict[str, Any]:
    s = _mgr(request).search
    items: list[dict[str, Any]] = []
    total = 0
    pages = 0
    async for page in s.pages(q):
        items.extend(dict(x) for x in page.items)
        total = page.total
        pages += 1
        if pages >= max_pages:
            break
    return {"query": q, "pages": pages, "total": total, "items": items}


@router.get("/history")
def api_search_history(request: Request, limit: int = Query(10, ge=1, le=100)) -> dict[str, Any]:
    h = _mgr(request).search.history
    if h is None:
        return {"recent": [], "popular": []}
    return {"recent": h.recent(limit), "popular": [{"term": t, "count": n} for t, n in h.popular(limit)]}


@router.delete("/history")
def api_search_history_clear(request: Request) -> dict[str, Any]:
    h = _mgr(request).search.history
    if h is not None:
        h.clear()
    return {"ok": True}
