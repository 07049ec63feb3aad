from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from _logging import log
from td_platform.engine._errors import ListError, ListValidationError, TransientRemoteError

from .listsAPI import router as lists_router
from .searchAPI import router as search_router

__all__ = [
    "lists_router",
    "search_router",
    "register",
    "register_errors",
]

_log = log.child("api")


def register_errors(app: FastAPI) -> None:
    @app.exception_handler(ListValidationError)
    async def _validation(_: Request, exc: ListValidationError) -> JSONResponse:
        return JSONResponse({"ok": False, **exc.to_dict()}, status_code=400)

    @app.exception_handler(TransientRemoteError)
    async def _remote(request: Request, exc: TransientRemoteError) -> JSONResponse:
        _log.warn("remote store error", extra={"path": request.url.path, "error": str(exc)})
        return JSONResponse({"ok": False, **exc.to_dict(), "status": exc.status}, status_code=502)

    @app.exception_handler(ListError)
    async def _list_error(_: Request, exc: ListError) -> JSONResponse:
        # ImportFormatError and other caller-side failures
        return JSONResponse({"ok": False, **exc.to_dict()}, status_code=400)


def register(app: FastAPI) -> None:
    register_errors(app)
    app.include_router(lists_router)
    app.include_router(search_router)
