# /providers/store/_mod_common.py
# Tsundoku - shared async HTTP helpers for store adapters
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import urlparse

import httpx

from td_platform.engine._errors import RemoteAuthError, TransientRemoteError

from ._log import log as kvlog

__all__ = [
    "build_client",
    "default_label",
    "parse_rate_limit",
    "parse_content_range",
    "safe_json",
    "request_with_retries",
    "raise_for_status",
]

EmitFn = Callable[[str, Mapping[str, Any]], None]
RETRY_ON: tuple[int, ...] = (429, 500, 502, 503, 504)


def default_label(method: str, url: str) -> str:
    segs = [s for s in (urlparse(url).path or "/").split("/") if s]
    if segs[:2] == ["rest", "v1"]:
        segs = segs[2:]
    head = ":".join(segs[:2]) or "unknown"
    return f"{head}:{method.lower()}"


def build_client(
    store: str,
    *,
    base_url: str = "",
    headers: Mapping[str, str] | None = None,
    timeout: float = 10.0,
    emit: EmitFn | None = None,
    emit_hits: bool | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """AsyncClient with shared defaults; optionally emits one `api:hit` event per response."""
    hits = bool(os.getenv("TD_API_HITS")) if emit_hits is None else bool(emit_hits)

    async def _on_response(resp: httpx.Response) -> None:
        if not (hits and emit):
            return
        req = resp.request
        emit("api:hit", {"store": store, "feature": default_label(req.method, str(req.url)), "status": resp.status_code})

    hdrs = {"Accept": "application/json", "User-Agent": "Tsundoku/1.0"}
    hdrs.update(headers or {})
    return httpx.AsyncClient(
        base_url=base_url,
        headers=hdrs,
        timeout=httpx.Timeout(timeout),
        follow_redirects=True,
        event_hooks={"response": [_on_response]},
        transport=transport,
    )


def parse_rate_limit(h: Mapping[str, Any]) -> dict[str, int | None]:
    def _i(x: Any) -> int | None:
        try:
            return int(x)
        except (TypeError, ValueError):
            return None

    return {
        "limit": _i(h.get("X-RateLimit-Limit") or h.get("RateLimit-Limit")),
        "remaining": _i(h.get("X-RateLimit-Remaining") or h.get("RateLimit-Remaining")),
        "reset": _i(h.get("X-RateLimit-Reset") or h.get("RateLimit-Reset")),
    }


def parse_content_range(value: str | None) -> int | None:
    """Total from a PostgREST `Content-Range: 0-19/123` header."""
    if not value or "/" not in value:
        return None
    total = value.rsplit("/", 1)[1].strip()
    return int(total) if total.isdigit() else None


def safe_json(resp: httpx.Response) -> Any:
    text = resp.text or ""
    if not text.strip():
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return {}


def raise_for_status(store: str, op: str, resp: httpx.Response) -> None:
    if resp.status_code < 400:
        return
    body = safe_json(resp)
    msg = body.get("message") if isinstance(body, Mapping) else None
    text = f"{op} failed: HTTP {resp.status_code}" + (f" ({msg})" if msg else "")
    kvlog(store, op, "warn", "request failed", status=resp.status_code, message=msg)
    if resp.status_code in (401, 403):
        raise RemoteAuthError(text, status=resp.status_code, op=op)
    raise TransientRemoteError(text, status=resp.status_code, op=op)


async def request_with_retries(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    store: str = "REST",
    op: str = "request",
    max_retries: int = 3,
    retry_on: tuple[int, ...] = RETRY_ON,
    backoff_base: float = 0.5,
    **kwargs: Any,
) -> httpx.Response:
    """Retry 429/5xx and transport errors with exponential backoff, honouring Retry-After."""
    attempts = max(1, int(max_retries))
    for i in range(attempts):
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            if i >= attempts - 1:
                raise TransientRemoteError(f"{op} failed: {e!r}", op=op) from e
            kvlog(store, op, "debug", "transport error; retrying", attempt=i + 1, error=repr(e))
            await asyncio.sleep(backoff_base * (2**i))
            continue
        if resp.status_code in retry_on and i < attempts - 1:
            wait = backoff_base * (2**i)
            ra = resp.headers.get("Retry-After")
            if resp.status_code == 429 and ra:
                try:
                    wait = max(wait, float(ra))
                except ValueError:
                    pass
            kvlog(store, op, "debug", "retrying", status=resp.status_code, attempt=i + 1, wait=wait)
            await asyncio.sleep(wait)
            continue
        return resp
    raise TransientRemoteError(f"{op} failed after retries: {method} {url}", op=op)
