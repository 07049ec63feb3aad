# Tsundoku test scripts
from __future__ import annotations

import asyncio
import csv
import io
import json

import pytest

from td_platform.engine import ImportFormatError
from td_platform.engine._mutations import is_temp_id
from td_platform.engine._transfer import EXPORT_FORMAT, EXPORT_VERSION, normalize_record
from td_platform.engine._types import ImportOptions

MAL_XML = """<?xml version="1.0" encoding="UTF-8" ?>
<myanimelist>
  <myinfo><user_name>someone</user_name></myinfo>
  <anime>
    <series_animedb_id>1</series_animedb_id>
    <series_title><![CDATA[Cowboy Bebop]]></series_title>
    <series_episodes>26</series_episodes>
    <my_watched_episodes>26</my_watched_episodes>
    <my_start_date>2024-05-01</my_start_date>
    <my_score>10</my_score>
    <my_status>2</my_status>
    <my_comments><![CDATA[all-time favourite]]></my_comments>
    <my_tags><![CDATA[space, jazz]]></my_tags>
  </anime>
  <manga>
    <manga_mangadb_id>2</manga_mangadb_id>
    <manga_title><![CDATA[Berserk]]></manga_title>
    <manga_chapters>0</manga_chapters>
    <my_read_chapters>350</my_read_chapters>
    <my_start_date>0000-00-00</my_start_date>
    <my_score>0</my_score>
    <my_status>Reading</my_status>
  </manga>
</myanimelist>
"""


def test_malformed_records_do_not_abort_the_batch(make_manager) -> None:
    records = [
        {"catalog_item_id": "t-naruto", "media_type": "anime", "status": "Watching", "progress": 10, "score": 7},
        {"title_id": "t-mushishi", "content_type": "anime", "status": "Plan to Watch"},
        {"media_type": "anime", "status": "completed"},
        {"catalog_item_id": "t-x", "media_type": "movie", "status": "completed"},
        {"catalog_item_id": "t-naruto-m", "media_type": "manga", "status": "reading", "score": 42},
        "not a record",
    ]

    async def scenario():
        mgr = make_manager()
        await mgr.refresh()
        res = await mgr.import_list(json.dumps(records), "json")
        return mgr, res

    mgr, res = asyncio.run(scenario())
    assert (res.success_count, res.error_count, res.skipped_count) == (2, 4, 0)
    assert [e["index"] for e in res.errors] == [2, 3, 4, 5]
    naruto = mgr.store.by_catalog_item("t-naruto", "anime")
    assert naruto.status_id == "watching" and naruto.progress == 10 and naruto.score == 7
    assert mgr.store.by_catalog_item("t-mushishi").status_id == "plan_to_watch"
    assert len(mgr.store) == 5
    assert not mgr.status["import"].is_pending


def test_remote_failure_counts_against_that_record_only(make_manager, store) -> None:
    records = [
        {"catalog_item_id": "t-naruto", "media_type": "anime", "status": "watching"},
        {"catalog_item_id": "t-mushishi", "media_type": "anime", "status": "watching"},
    ]

    async def scenario():
        mgr = make_manager()
        await mgr.refresh()
        store.fail_keys.add("t-naruto")
        return mgr, await mgr.import_list(records, "json")

    mgr, res = asyncio.run(scenario())
    assert (res.success_count, res.error_count) == (1, 1)
    assert "refused" in res.errors[0]["error"]
    assert not any(is_temp_id(k) for k in mgr.store.ids())
    assert mgr.store.by_catalog_item("t-naruto") is None


def test_cancelled_import_releases_pending_flag(make_manager, store) -> None:
    records = [{"catalog_item_id": "t-naruto", "media_type": "anime", "status": "watching"}]

    async def scenario():
        mgr = make_manager()
        await mgr.refresh()
        store.gates["create"] = asyncio.Event()
        task = asyncio.create_task(mgr.import_list(records, "json"))
        await asyncio.sleep(0.01)
        assert mgr.is_pending
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return mgr

    mgr = asyncio.run(scenario())
    assert not mgr.status["import"].is_pending
    assert not mgr.is_pending
    assert mgr.emitter.events("import:aborted")
    assert mgr.store.by_catalog_item("t-naruto") is None
    assert len(mgr.store) == 3


@pytest.mark.parametrize(
    "options, expected",
    [
        ({}, {"success_count": 1, "score": 9, "is_favorite": True}),
        ({"update_existing": True}, {"success_count": 1, "score": 6, "is_favorite": True}),
        ({"merge_duplicates": False}, {"skipped_count": 1, "score": 9, "is_favorite": False}),
    ],
)
@pytest.mark.parametrize("server_side", [False, True])
def test_duplicate_handling(make_manager, options, expected, server_side) -> None:
    dup = [{"catalog_item_id": "t-akira", "media_type": "anime", "status": "completed", "score": 6, "is_favorite": True}]

    async def scenario():
        mgr = make_manager()
        await mgr.refresh()
        res = await mgr.import_list(dup, "json", options, server_side=server_side)
        await mgr.settle()
        return mgr, res

    mgr, res = asyncio.run(scenario())
    a = mgr.get("a")
    assert a.score == expected["score"]
    assert a.is_favorite is expected["is_favorite"]
    for k in ("success_count", "skipped_count"):
        if k in expected:
            assert getattr(res, k) == expected[k]
    assert len(mgr.store) == 3


def test_identical_duplicate_is_skipped(make_manager, store) -> None:
    async def scenario():
        mgr = make_manager()
        await mgr.refresh()
        rec = {"catalog_item_id": "t-bebop", "media_type": "anime", "status_id": "watching", "score": 8}
        return await mgr.import_list([rec], "json", {"update_existing": True})

    res = asyncio.run(scenario())
    assert res.skipped_count == 1
    assert store.ops("update") == []


def test_import_toggles() -> None:
    rec = {"catalog_item_id": "t-1", "media_type": "anime", "status": "completed",
           "score": "8", "progress": "12", "created_at": "2024-01-02"}
    full = normalize_record(rec, ImportOptions())
    assert full["score"] == 8.0 and full["progress"] == 12 and full["created_at"].year == 2024
    bare = normalize_record(rec, ImportOptions.from_mapping({
        "importRatings": "false", "import_progress": False, "import_dates": "no",
    }))
    assert "score" not in bare and "progress" not in bare and "created_at" not in bare


def test_json_export_document(make_manager) -> None:
    async def scenario():
        mgr = make_manager()
        await mgr.refresh()
        return await mgr.export("json")

    doc = json.loads(asyncio.run(scenario()))
    assert doc["format"] == EXPORT_FORMAT
    assert doc["version"] == EXPORT_VERSION
    assert doc["total_items"] == 3
    assert [e["id"] for e in doc["entries"]] == ["a", "b", "c"]
    assert doc["entries"][0]["tags"] == ["classic", "cyberpunk"]
    assert doc["entries"][0]["created_at"] == "2025-01-10T00:00:00Z"


def test_csv_export_reimports_into_empty_list(make_manager, empty_store) -> None:
    async def scenario():
        src = make_manager()
        await src.refresh()
        text = await src.export("csv")
        dst = make_manager(remote=empty_store)
        await dst.refresh()
        res = await dst.import_list(text, "csv")
        return src, dst, text, res

    src, dst, text, res = asyncio.run(scenario())
    rows = list(csv.DictReader(io.StringIO(text)))
    assert rows[0]["tags"] == "classic;cyberpunk"
    assert rows[0]["is_favorite"] == "false"
    assert rows[0]["format_version"] == EXPORT_VERSION
    assert res.success_count == 3 and res.error_count == 0

    for old in src.store.entries():
        new = dst.store.by_catalog_item(old.catalog_item_id, old.media_type)
        assert new is not None
        for k in ("status_id", "progress", "score", "tags", "notes", "created_at"):
            assert getattr(new, k) == getattr(old, k), k


def test_myanimelist_xml_import(make_manager) -> None:
    async def scenario():
        mgr = make_manager()
        await mgr.refresh()
        return mgr, await mgr.import_list(MAL_XML, "myanimelist")

    mgr, res = asyncio.run(scenario())
    assert res.success_count == 2
    bebop = mgr.store.by_catalog_item("mal:1", "anime")
    assert bebop.status_id == "completed"
    assert bebop.progress == 26 and bebop.score == 10
    assert bebop.tags == frozenset({"space", "jazz"})
    assert bebop.notes == "all-time favourite"
    assert bebop.created_at.isoformat().startswith("2024-05-01")
    berserk = mgr.store.by_catalog_item("mal:2", "manga")
    assert berserk.status_id == "reading"
    assert berserk.score is None
    assert berserk.progress == 350


def test_unreadable_payloads_raise(make_manager) -> None:
    newer = json.dumps({"format": EXPORT_FORMAT, "version": "2.0", "entries": []})
    newer_csv = "catalog_item_id,media_type,status_id,format_version\nt-1,anime,completed,2.1\n"

    async def scenario():
        mgr = make_manager()
        for raw, fmt in ((newer, "json"), (newer_csv, "csv"), ("{oops", "json"), ("<a>", "myanimelist"),
                         ({"hello": 1}, "json"), ("[]", "yaml")):
            with pytest.raises(ImportFormatError):
                await mgr.import_list(raw, fmt)
        return mgr

    mgr = asyncio.run(scenario())
    assert len(mgr.store) == 0


def test_server_side_import_then_refresh(make_manager, store) -> None:
    records = [
        {"catalog_item_id": "t-naruto", "media_type": "anime", "status": "watching"},
        {"catalog_item_id": "t-akira", "media_type": "anime", "status": "completed"},
    ]

    async def scenario():
        mgr = make_manager()
        await mgr.refresh()
        res = await mgr.import_list(records, "json", server_side=True)
        await mgr.settle()
        return mgr, res

    mgr, res = asyncio.run(scenario())
    assert (res.success_count, res.skipped_count) == (1, 1)
    assert len(store.ops("fetch")) == 2
    assert mgr.store.by_catalog_item("t-naruto") is not None
