# tsundoku.py
# Tsundoku - anime/manga list manager web service.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Mapping

import uvicorn
from fastapi import FastAPI

import api
import services
from _logging import log
from td_platform.config_base import CONFIG_BASE, load_config
from td_platform.engine import ListManager
from td_platform.engine._errors import ListError
from td_platform.modules_registry import build_store

__VERSION__ = "1.0.0"

_log = log.child("app")


def _apply_logging(cfg: Mapping[str, Any]) -> None:
    rt = dict(cfg.get("runtime") or {})
    log.set_level("debug" if rt.get("debug") else str(rt.get("log_level") or "info"))
    if rt.get("log_json_path"):
        log.enable_json(str(rt["log_json_path"]))


def create_app(cfg: Mapping[str, Any] | None = None, *, store: Any = None) -> FastAPI:
    """Build the app. `store` overrides the backend named in the config (tests, embedding)."""
    conf = dict(cfg) if cfg is not None else load_config()

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        remote = store if store is not None else build_store(conf)
        mgr = ListManager(remote=remote, config=conf)
        app.state.lists = mgr
        try:
            n = await mgr.refresh()
            _log.info("list loaded", extra={"entries": n, "backend": (conf.get("store") or {}).get("backend")})
        except ListError as e:
            _log.warn("initial list load failed; starting empty", extra={"error": str(e)})
        try:
            await mgr.refresh_custom_lists()
        except ListError as e:
            _log.warn("custom lists not loaded", extra={"error": str(e)})
        try:
            yield
        finally:
            await mgr.aclose()

    app = FastAPI(title="Tsundoku", version=__VERSION__, lifespan=_lifespan)
    api.register(app)
    services.register(app, load_config)

    @app.get("/api/health", tags=["meta"])
    def api_health() -> dict[str, Any]:
        mgr = getattr(app.state, "lists", None)
        return {"ok": True, "version": __VERSION__, "entries": len(mgr.store) if mgr else 0}

    return app


def main() -> None:
    cfg = load_config()
    _apply_logging(cfg)
    srv = dict(cfg.get("server") or {})
    host, port = str(srv.get("host") or "0.0.0.0"), int(srv.get("port") or 8797)
    debug = bool((cfg.get("runtime") or {}).get("debug"))

    print("\nTsundoku running:")
    print(f"  Local:   http://127.0.0.1:{port}")
    print(f"  Bind:    {host}:{port}")
    print(f"  Config:  {CONFIG_BASE() / 'config.json'} (JSON)\n")

    uvicorn.run(
        create_app(cfg),
        host=host,
        port=port,
        log_level=("debug" if debug else "warning"),
    )


if __name__ == "__main__":
    main()
