# Tsundoku test scripts
from __future__ import annotations

from typing import Any

import pytest
from fastapi.testclient import TestClient

from tsundoku import create_app

CFG: dict[str, Any] = {
    "runtime": {"auto_refresh": False},
    "lists": {"content_type": "both"},
    "search": {"debounce_ms": 0, "min_query_length": 2, "page_size": 1},
    "store": {"backend": "memory"},
}


@pytest.fixture()
def client(store, config_base):
    with TestClient(create_app(CFG, store=store)) as c:
        yield c


def _ids(res) -> list[str]:
    return [x["id"] for x in res.json()["items"]]


def test_health_and_initial_load(client: TestClient) -> None:
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["entries"] == 3

    r = client.get("/api/lists")
    assert r.status_code == 200
    assert r.headers["Cache-Control"] == "no-store"
    body = r.json()
    assert _ids(r) == ["a", "b", "c"]
    assert body["count"] == 3 and body["total"] == 3
    assert body["items"][0]["state"] == "confirmed"
    assert body["items"][0]["status_label"] == "Completed"
    assert body["flags"]["is_pending"] is False


def test_filter_and_sort_params(client: TestClient) -> None:
    assert _ids(client.get("/api/lists", params={"status": "completed", "score_min": 8})) == ["a"]
    assert _ids(client.get("/api/lists", params={"sort": "title", "direction": "desc"})) == ["b", "c", "a"]
    assert _ids(client.get("/api/lists", params={"q": "pending"})) == ["c"]
    assert _ids(client.get("/api/lists", params={"media_type": "manga"})) == ["c"]
    r = client.get("/api/lists", params={"sort": "popularity"})
    assert r.status_code == 400
    assert r.json()["error"] == "ListValidationError"


def test_entry_lifecycle(client: TestClient) -> None:
    r = client.post("/api/lists/entries", json={
        "catalog_item_id": "t-naruto", "media_type": "anime", "status_id": "watching", "progress": 3,
    })
    assert r.status_code == 201
    new_id = r.json()["id"]
    assert r.json()["entry"]["title"] == "Naruto"
    assert r.json()["temp_id"].startswith("temp-")

    r = client.get(f"/api/lists/entries/{new_id}")
    assert r.status_code == 200 and r.json()["progress"] == 3

    r = client.patch(f"/api/lists/entries/{new_id}", json={"progress": 4, "score": 7.5})
    assert r.status_code == 200
    assert r.json()["entry"]["score"] == 7.5

    r = client.delete(f"/api/lists/entries/{new_id}")
    assert r.status_code == 200
    assert client.get(f"/api/lists/entries/{new_id}").status_code == 404


def test_validation_errors_are_400(client: TestClient) -> None:
    r = client.patch("/api/lists/entries/b", json={"sort_order": 9})
    assert r.status_code == 400
    assert r.json()["ok"] is False
    r = client.patch("/api/lists/entries/b", json={"progress": 500})
    assert r.status_code == 400
    r = client.post("/api/lists/entries", json={"catalog_item_id": "x", "media_type": "novel", "status_id": "watching"})
    assert r.status_code == 400
    r = client.post("/api/lists/reorder", json={"ids": ["a", "a"]})
    assert r.status_code == 400


def test_remote_failure_is_502_and_rolled_back(client: TestClient, store) -> None:
    store.fail.add("update")
    r = client.patch("/api/lists/entries/a", json={"score": 1})
    assert r.status_code == 502
    assert r.json()["retryable"] is True
    r = client.get("/api/lists/entries/a")
    assert r.json()["score"] == 9
    assert r.json()["state"] == "reverted"
    assert client.get("/api/lists/flags").json()["last_error"] == "update refused"


def test_reorder_and_move(client: TestClient, store) -> None:
    r = client.post("/api/lists/reorder", json={"ids": ["c", "a", "b"]})
    assert r.status_code == 200
    assert r.json()["positions"] == {"c": 0, "a": 1, "b": 2}
    assert _ids(client.get("/api/lists")) == ["c", "a", "b"]

    r = client.post("/api/lists/move", json={"from_index": 0, "to_index": 2})
    assert r.status_code == 200
    assert _ids(client.get("/api/lists")) == ["a", "b", "c"]
    assert len(store.ops("bulk_set_order")) == 2


def test_selection_and_bulk(client: TestClient) -> None:
    r = client.post("/api/lists/bulk", json={"ids": ["a", "b"], "delta": {"is_favorite": True}})
    assert r.status_code == 200 and r.json()["count"] == 2
    assert client.get("/api/lists/stats").json()["favorites"] == 2

    assert client.post("/api/lists/selection", json={"ids": ["a", "c"]}).json()["ids"] == ["a", "c"]
    assert client.post("/api/lists/selection", json={"ids": ["c"], "mode": "toggle"}).json()["ids"] == ["a"]
    r = client.post("/api/lists/bulk/delete", json={})
    assert r.status_code == 200
    assert r.json()["ids"] == ["a"]
    assert r.json()["selection"] == []
    assert _ids(client.get("/api/lists")) == ["b", "c"]


def test_statuses_endpoint(client: TestClient) -> None:
    ids = [s["id"] for s in client.get("/api/lists/statuses", params={"media_type": "manga"}).json()]
    assert "reading" in ids and "watching" not in ids


def test_export_and_import(client: TestClient) -> None:
    r = client.get("/api/transfer/export", params={"format": "csv"})
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    disp = r.headers["Content-Disposition"]
    assert disp.startswith('attachment; filename="both-list-') and disp.endswith('.csv"')

    r = client.post("/api/transfer/import", json={
        "source_format": "json",
        "data": [
            {"catalog_item_id": "t-mushishi", "media_type": "anime", "status": "completed", "score": 9},
            {"catalog_item_id": "", "media_type": "anime", "status": "completed"},
        ],
    })
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is False
    assert (body["success_count"], body["error_count"]) == (1, 1)
    assert client.get("/api/lists").json()["total"] == 4

    r = client.post("/api/transfer/import", json={"source_format": "json", "data": "{broken"})
    assert r.status_code == 400
    assert r.json()["error"] == "ImportFormatError"

    assert client.get("/api/transfer/formats").json()["import"] == ["json", "csv", "myanimelist"]


def test_search_flow(client: TestClient, config_base) -> None:
    r = client.put("/api/search/query", json={"query": "naruto", "wait": True})
    assert r.status_code == 200
    body = r.json()
    assert body["state"] == "settled"
    assert body["total"] == 2 and len(body["items"]) == 1 and body["has_more"] is True

    r = client.post("/api/search/more", json={"wait": True})
    assert r.json()["started"] is True
    assert len(r.json()["items"]) == 2
    assert r.json()["has_more"] is False

    r = client.post("/api/search/more", json={"wait": True})
    assert r.json()["started"] is False

    r = client.get("/api/search/pages", params={"q": "naruto"})
    assert r.json()["pages"] == 2 and len(r.json()["items"]) == 2

    hist = client.get("/api/search/history").json()
    assert hist["recent"][0]["query"] == "naruto"
    assert (config_base / "search_history.json").exists()

    assert client.put("/api/search/query", json={"query": "naruto", "scope": "movies"}).status_code == 400
    assert client.delete("/api/search").json()["state"] == "cancelled"
    assert client.delete("/api/search/history").json() == {"ok": True}


def test_custom_lists_endpoints(client: TestClient, store) -> None:
    r = client.post("/api/lists/custom", json={"name": "Comfy rewatches", "is_public": True})
    assert r.status_code == 201
    created = r.json()["list"]
    assert created["sort_order"] == 0 and created["is_public"] is True
    assert created["share_token"]

    r = client.post("/api/lists/custom", json={"name": "comfy REWATCHES"})
    assert r.status_code == 400
    assert r.json()["error"] == "ListValidationError"

    body = client.get("/api/lists/custom").json()
    assert body["count"] == 1
    assert body["items"][0]["id"] == created["id"]

    store.fail.add("create_custom_list")
    assert client.post("/api/lists/custom", json={"name": "Seasonal"}).status_code == 502
    assert client.get("/api/lists/custom", params={"reload": False}).json()["count"] == 1
