# /providers/store/_mod_REST.py
# Tsundoku - PostgREST (Supabase) list store over httpx
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

import httpx

from td_platform.engine._errors import ListValidationError, TransientRemoteError

from ._log import log as kvlog
from ._mod_common import build_client, parse_content_range, raise_for_status, request_with_retries, safe_json

__VERSION__ = "1.0.0"
__all__ = ["RESTStore", "OPS", "get_manifest", "row_to_entry", "entry_to_row", "row_to_custom_list"]

STORE = "REST"
TABLE = "/rest/v1/user_lists"
TITLES = "/rest/v1/titles"
CUSTOM_LISTS = "/rest/v1/custom_lists"
RPC = "/rest/v1/rpc"
ENTRY_SELECT = "*,title:titles(title,episodes,chapters)"
CUSTOM_LIST_SELECT = "*,items:custom_list_items(count)"
SEARCH_ORDER = {
    "relevance": "popularity.desc.nullslast",
    "popularity": "popularity.desc.nullslast",
    "score": "score.desc.nullslast",
    "title": "title.asc",
}


def get_manifest() -> Mapping[str, Any]:
    return {
        "name": STORE,
        "label": "PostgREST / Supabase",
        "version": __VERSION__,
        "persistent": True,
        "features": {"search": True, "import_batch": True, "export_all": True, "custom_lists": True},
    }


def row_to_entry(row: Mapping[str, Any]) -> dict[str, Any]:
    """Database row (with embedded title) -> engine record."""
    d = dict(row)
    d["catalog_item_id"] = d.pop("title_id", d.get("catalog_item_id"))
    title = d.pop("title", None)
    if isinstance(title, Mapping):
        d["title"] = title.get("title")
        d["unit_count"] = title.get("episodes") if d.get("media_type") == "anime" else title.get("chapters")
    elif title is not None:
        d["title"] = title
    d.pop("user_id", None)
    return d


def entry_to_row(data: Mapping[str, Any]) -> dict[str, Any]:
    d = {k: v for k, v in data.items() if k not in ("title", "unit_count", "id")}
    if "catalog_item_id" in d:
        d["title_id"] = d.pop("catalog_item_id")
    return d


def row_to_custom_list(row: Mapping[str, Any]) -> dict[str, Any]:
    """custom_lists row; an embedded `items(count)` aggregate becomes item_count."""
    d = dict(row)
    items = d.pop("items", None)
    if isinstance(items, list):
        if len(items) == 1 and isinstance(items[0], Mapping) and set(items[0]) == {"count"}:
            d["item_count"] = int(items[0]["count"] or 0)
        else:
            d["item_count"] = len(items)
    d.pop("user_id", None)
    return d


class RESTStore:
    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        access_token: str = "",
        user_id: str = "",
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_base: float = 0.5,
        transport: httpx.AsyncBaseTransport | None = None,
        emit: Any = None,
    ):
        if not base_url:
            raise ListValidationError("store.base_url is required for the rest backend")
        headers = {"apikey": api_key} if api_key else {}
        if access_token or api_key:
            headers["Authorization"] = f"Bearer {access_token or api_key}"
        self.user_id = user_id
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.client = build_client(STORE, base_url=base_url.rstrip("/"), headers=headers,
                                   timeout=timeout, emit=emit, transport=transport)

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any], **kw: Any) -> "RESTStore":
        st = dict(cfg.get("store") or {})
        return cls(
            str(st.get("base_url") or ""),
            api_key=str(st.get("api_key") or ""),
            access_token=str(st.get("access_token") or ""),
            user_id=str(st.get("user_id") or ""),
            timeout=float(st.get("timeout") or 10.0),
            max_retries=int(st.get("max_retries") or 3),
            backoff_base=float(st.get("backoff_base") or 0.5),
            **kw,
        )

    async def _call(self, op: str, method: str, url: str, **kw: Any) -> httpx.Response:
        resp = await request_with_retries(
            self.client, method, url, store=STORE, op=op,
            max_retries=self.max_retries, backoff_base=self.backoff_base, **kw,
        )
        raise_for_status(STORE, op, resp)
        kvlog(STORE, op, "debug", "ok", status=resp.status_code)
        return resp

    def _one(self, op: str, resp: httpx.Response) -> dict[str, Any]:
        body = safe_json(resp)
        if isinstance(body, list):
            body = body[0] if body else {}
        if not isinstance(body, Mapping) or not body.get("id"):
            raise TransientRemoteError(f"{op} returned no row", status=resp.status_code, op=op)
        return row_to_entry(body)

    async def fetch_entries(self, media_type: str | None = None) -> list[dict[str, Any]]:
        params = {"select": ENTRY_SELECT, "user_id": f"eq.{self.user_id}", "order": "sort_order.asc"}
        if media_type and media_type != "both":
            params["media_type"] = f"eq.{media_type}"
        resp = await self._call("fetch", "GET", TABLE, params=params)
        body = safe_json(resp)
        return [row_to_entry(r) for r in body] if isinstance(body, list) else []

    async def create_entry(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        row = {**entry_to_row(payload), "user_id": self.user_id}
        resp = await self._call("create", "POST", TABLE, params={"select": ENTRY_SELECT}, json=row,
                                headers={"Prefer": "return=representation"})
        return self._one("create", resp)

    async def update_entry(self, entry_id: str, delta: Mapping[str, Any]) -> dict[str, Any]:
        resp = await self._call("update", "PATCH", TABLE, params={"id": f"eq.{entry_id}", "select": ENTRY_SELECT},
                                json=entry_to_row(delta), headers={"Prefer": "return=representation"})
        return self._one("update", resp)

    async def delete_entry(self, entry_id: str) -> None:
        await self._call("delete", "DELETE", TABLE, params={"id": f"eq.{entry_id}"})

    async def bulk_update(self, ids: Sequence[str], delta: Mapping[str, Any]) -> None:
        await self._call("bulk_update", "POST", f"{RPC}/bulk_update_user_list_items",
                         json={"item_ids": list(ids), "update_data": entry_to_row(delta)})

    async def bulk_delete(self, ids: Sequence[str]) -> None:
        await self._call("bulk_delete", "DELETE", TABLE, params={"id": f"in.({','.join(ids)})"})

    async def bulk_set_order(self, updates: Sequence[Mapping[str, Any]]) -> None:
        await self._call("reorder", "POST", f"{RPC}/bulk_update_list_sort_order",
                         json={"updates": [dict(u) for u in updates]})

    async def query(self, filters: Mapping[str, Any], page: int, page_size: int, sort: str) -> dict[str, Any]:
        q = str(filters.get("search") or "").replace(",", " ").replace("*", " ").strip()
        params: dict[str, str] = {
            "select": "*",
            "or": f"(title.ilike.*{q}*,title_english.ilike.*{q}*)",
            "order": SEARCH_ORDER.get(sort, SEARCH_ORDER["relevance"]),
        }
        ct = filters.get("content_type")
        if ct and ct != "both":
            params["content_type"] = f"eq.{ct}"
        start = max(0, (page - 1) * page_size)
        resp = await self._call("search", "GET", TITLES, params=params,
                                headers={"Prefer": "count=exact", "Range-Unit": "items",
                                         "Range": f"{start}-{start + page_size - 1}"})
        items = safe_json(resp)
        items = items if isinstance(items, list) else []
        total = parse_content_range(resp.headers.get("Content-Range"))
        if total is None:
            total = start + len(items)
        return {"items": items, "total_count": total, "has_more": start + len(items) < total}

    async def import_batch(self, records: Sequence[Mapping[str, Any]], options: Mapping[str, Any]) -> dict[str, Any]:
        resp = await self._call("import", "POST", f"{RPC}/import_user_list", json={
            "user_id": self.user_id,
            "import_data": {"source_type": "json", "data": [entry_to_row(r) for r in records], "options": dict(options)},
        })
        body = safe_json(resp)
        return dict(body) if isinstance(body, Mapping) else {}

    async def export_all(self, fmt: str) -> str:
        resp = await self._call("export", "POST", f"{RPC}/export_user_list",
                                json={"user_id": self.user_id, "content_type": "both", "export_format": fmt})
        body = safe_json(resp)
        return body if isinstance(body, str) else json.dumps(body, ensure_ascii=False, indent=2)

    async def fetch_custom_lists(self) -> list[dict[str, Any]]:
        params = {"select": CUSTOM_LIST_SELECT, "user_id": f"eq.{self.user_id}", "order": "sort_order.asc"}
        resp = await self._call("custom_lists", "GET", CUSTOM_LISTS, params=params)
        body = safe_json(resp)
        return [row_to_custom_list(r) for r in body] if isinstance(body, list) else []

    async def create_custom_list(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        row = {**dict(payload), "user_id": self.user_id}
        resp = await self._call("create_custom_list", "POST", CUSTOM_LISTS, params={"select": "*"}, json=row,
                                headers={"Prefer": "return=representation"})
        body = safe_json(resp)
        if isinstance(body, list):
            body = body[0] if body else {}
        if not isinstance(body, Mapping) or not body.get("id"):
            raise TransientRemoteError("create_custom_list returned no row", status=resp.status_code, op="create_custom_list")
        return row_to_custom_list(body)

    async def aclose(self) -> None:
        await self.client.aclose()


OPS = RESTStore
