# /services/transfer.py
# Tsundoku - list import/export endpoints
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import time
from typing import Any, Callable, Literal

from fastapi import APIRouter, Body, FastAPI, Query, Request, Response
from pydantic import BaseModel

from td_platform.engine import ListManager
from td_platform.engine._transfer import EXPORT_FORMATS, SOURCE_FORMATS

router = APIRouter(prefix="/api/transfer", tags=["transfer"])

_MEDIA = {"json": "application/json; charset=utf-8", "csv": "text/csv; charset=utf-8"}


class ImportIn(BaseModel):
    source_format: Literal["json", "csv", "myanimelist"] = "json"
    data: Any
    options: dict[str, Any] | None = None
    server_side: bool = False


def _mgr(request: Request) -> ListManager:
    return request.app.state.lists


def _file_response(filename: str, fmt: str, content: str) -> Response:
    return Response(
        content=content.encode("utf-8"),
        media_type=_MEDIA.get(fmt, "application/octet-stream"),
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "Cache-Control": "no-store",
        },
    )


@router.get("/formats")
def api_transfer_formats() -> dict[str, Any]:
    return {"import": list(SOURCE_FORMATS), "export": list(EXPORT_FORMATS)}


@router.get("/export")
async def api_transfer_export(
    request: Request,
    format: Literal["json", "csv"] = Query("json"),
    remote: bool = Query(False, description="Ask the store for its own export instead of the local snapshot"),
) -> Response:
    mgr = _mgr(request)
    content = await mgr.export(format, remote=remote)
    ts = time.strftime("%Y%m%d")
    return _file_response(f"{mgr.content_type}-list-{ts}.{format}", format, content)


@router.post("/import")
async def api_transfer_import(request: Request, payload: ImportIn = Body(...)) -> dict[str, Any]:
    res = await _mgr(request).import_list(
        payload.data, payload.source_format, payload.options, server_side=payload.server_side,
    )
    return {"ok": res.error_count == 0, **res.to_dict()}


def register(app: FastAPI, load_config: Callable[[], dict]) -> None:
    app.include_router(router)
