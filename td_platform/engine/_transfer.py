# td_platform/engine/_transfer.py
# list import (json/csv/MyAnimeList XML) and export (json/csv).
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import asyncio
import csv
import io
import json
import xml.etree.ElementTree as ET
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from packaging.version import InvalidVersion, Version

from _logging import log
from .. import statuses
from ._errors import ImportFormatError, ListError, ListValidationError, as_remote_error
from ._logging import Emitter
from ._mutations import MutationCoordinator, check_create, wire
from ._status import OpStatus
from ._store import EntityStore
from ._types import ImportOptions, ImportResult, ListEntry, iso, norm_keys, utc_now

_log = log.child("engine.transfer")

EXPORT_FORMAT = "tsundoku-list"
EXPORT_VERSION = "1.0"
SOURCE_FORMATS = ("json", "csv", "myanimelist")
EXPORT_FORMATS = ("json", "csv")

CSV_FIELDS = [
    "id", "catalog_item_id", "title", "media_type", "status_id", "progress", "unit_count",
    "score", "tags", "notes", "sort_order", "is_favorite", "is_pinned", "is_private",
    "created_at", "updated_at",
]

MERGE_FIELDS = ("status_id", "progress", "score", "tags", "notes", "is_favorite", "is_pinned", "is_private")


#--- Export --------------------------------------------------------------------
def export_document(entries: Iterable[ListEntry], *, content_type: str = "both") -> dict[str, Any]:
    rows = [e.to_dict() for e in entries]
    return {
        "format": EXPORT_FORMAT,
        "version": EXPORT_VERSION,
        "exported_at": iso(utc_now()),
        "content_type": content_type,
        "total_items": len(rows),
        "entries": rows,
    }


def export_entries(entries: Iterable[ListEntry], fmt: str = "json", *, content_type: str = "both") -> str:
    fmt = (fmt or "json").lower()
    if fmt == "json":
        return json.dumps(export_document(entries, content_type=content_type), ensure_ascii=False, indent=2)
    if fmt == "csv":
        buf = io.StringIO()
        w = csv.writer(buf, lineterminator="\n")
        w.writerow(CSV_FIELDS + ["format_version"])
        for e in entries:
            d = e.to_dict()
            d["tags"] = ";".join(d["tags"])
            w.writerow([_cell(d.get(k)) for k in CSV_FIELDS] + [EXPORT_VERSION])
        return buf.getvalue()
    raise ListValidationError(f"export format must be one of {', '.join(EXPORT_FORMATS)}")


def _cell(v: Any) -> str:
    if v is None:
        return ""
    if isinstance(v, bool):
        return "true" if v else "false"
    return str(v)


#--- Parsing -------------------------------------------------------------------
def check_version(raw: Any) -> None:
    try:
        got = Version(str(raw))
    except InvalidVersion as e:
        raise ImportFormatError(f"unreadable export version {raw!r}") from e
    if got.major != Version(EXPORT_VERSION).major:
        raise ImportFormatError(f"export version {got} is not supported (expected {EXPORT_VERSION})")


def parse_records(raw: str | bytes | Any, source_format: str) -> list[Any]:
    """Split a payload into per-record items. Only a wholly unreadable payload raises."""
    fmt = (source_format or "").lower()
    if fmt not in SOURCE_FORMATS:
        raise ImportFormatError(f"source format must be one of {', '.join(SOURCE_FORMATS)}")
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8-sig")
    if fmt == "json":
        return _parse_json(raw)
    if fmt == "csv":
        return _parse_csv(str(raw))
    return _parse_mal(str(raw))


def _parse_json(raw: Any) -> list[Any]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise ImportFormatError(f"invalid JSON: {e}") from e
    if isinstance(raw, list):
        return raw
    if isinstance(raw, Mapping):
        if raw.get("format") == EXPORT_FORMAT:
            check_version(raw.get("version"))
        for k in ("entries", "items", "data"):
            if isinstance(raw.get(k), list):
                return list(raw[k])
    raise ImportFormatError("JSON import must be a list or an export document")


def _parse_csv(raw: str) -> list[Any]:
    reader = csv.DictReader(io.StringIO(raw.lstrip("﻿")))
    if not reader.fieldnames:
        raise ImportFormatError("CSV import has no header row")
    rows = list(reader)
    versions = {r.get("format_version") for r in rows if r.get("format_version")}
    for v in versions:
        check_version(v)
    return [{k: v for k, v in r.items() if k and k != "format_version"} for r in rows]


_MAL_STATUS = {
    "1": "watching", "2": "completed", "3": "on_hold", "4": "dropped", "6": "plan_to_watch",
}


def _parse_mal(raw: str) -> list[Any]:
    try:
        root = ET.fromstring(raw.strip())
    except ET.ParseError as e:
        raise ImportFormatError(f"invalid MyAnimeList XML: {e}") from e
    out: list[Any] = []
    for node in root:
        if node.tag == "anime":
            mt, idk, titlek, unitk, progk = "anime", "series_animedb_id", "series_title", "series_episodes", "my_watched_episodes"
        elif node.tag == "manga":
            mt, idk, titlek, unitk, progk = "manga", "manga_mangadb_id", "manga_title", "manga_chapters", "my_read_chapters"
        else:
            continue
        t = lambda k: (node.findtext(k) or "").strip()  # noqa: E731
        mal_id = t(idk)
        score = t("my_score")
        status = t("my_status")
        out.append({
            "catalog_item_id": f"mal:{mal_id}" if mal_id else "",
            "title": t(titlek) or None,
            "media_type": mt,
            "status": _MAL_STATUS.get(status, status),
            "progress": t(progk) or 0,
            "unit_count": t(unitk) or None,
            "score": score if score not in ("", "0") else None,
            "tags": t("my_tags"),
            "notes": t("my_comments") or None,
            "created_at": _mal_date(t("my_start_date")),
        })
    return out


def _mal_date(v: str) -> str | None:
    return None if not v or v.startswith("0000") else v


def normalize_record(rec: Any, opts: ImportOptions) -> dict[str, Any]:
    """Turn one raw record into a validated create payload; raises ValueError when malformed."""
    if not isinstance(rec, Mapping):
        raise ListValidationError("record is not an object")
    d = norm_keys(rec)
    if "catalog_item_id" not in d and d.get("title_id"):
        d["catalog_item_id"] = d["title_id"]
    mt = str(d.get("media_type") or d.get("content_type") or "").strip().lower()
    raw_status = d.get("status_id") or d.get("status")
    status = statuses.resolve(raw_status, mt) or (str(raw_status) if raw_status else None)
    payload: dict[str, Any] = {
        "catalog_item_id": d.get("catalog_item_id"),
        "media_type": mt,
        "status_id": status,
    }
    for k in ("title", "unit_count", "tags", "notes", "is_favorite", "is_pinned", "is_private"):
        if d.get(k) not in (None, ""):
            payload[k] = d[k]
    if opts.import_ratings and d.get("score") not in (None, ""):
        payload["score"] = d["score"]
    if opts.import_progress and d.get("progress") not in (None, ""):
        payload["progress"] = d["progress"]
    if opts.import_dates and d.get("created_at") not in (None, ""):
        payload["created_at"] = d["created_at"]
    return check_create(payload)


def merge_delta(existing: ListEntry, payload: Mapping[str, Any], *, overwrite: bool) -> dict[str, Any]:
    """Fields to push onto an existing entry: all included ones, or only those still empty."""
    out: dict[str, Any] = {}
    for k in MERGE_FIELDS:
        if k not in payload:
            continue
        new, cur = payload[k], getattr(existing, k)
        if new == cur:
            continue
        if overwrite or cur in (None, "", 0, frozenset(), False):
            out[k] = new
    return out


#--- Adapter -------------------------------------------------------------------
class TransferAdapter:
    """Bulk import/export. Import records succeed or fail one by one; export is a full snapshot."""

    def __init__(
        self,
        store: EntityStore,
        coordinator: MutationCoordinator,
        remote: Any,
        *,
        emitter: Emitter | None = None,
        status: OpStatus | None = None,
        content_type: str = "both",
    ):
        self.store = store
        self.coordinator = coordinator
        self.remote = remote
        self.emitter = emitter or Emitter(None)
        self.status = status or OpStatus("import")
        self.content_type = content_type

    async def import_records(
        self,
        raw: str | bytes | Any,
        source_format: str,
        options: ImportOptions | Mapping[str, Any] | None = None,
        *,
        server_side: bool = False,
    ) -> ImportResult:
        opts = options if isinstance(options, ImportOptions) else ImportOptions.from_mapping(options)
        records = parse_records(raw, source_format)
        result = ImportResult()
        self.status.begin()
        self.emitter.emit("import:start", format=source_format, records=len(records))

        valid: list[tuple[int, dict[str, Any]]] = []
        for i, rec in enumerate(records):
            try:
                valid.append((i, normalize_record(rec, opts)))
            except (ValueError, TypeError) as e:
                self._record_error(result, i, e)

        try:
            if server_side:
                await self._import_server_side(valid, opts, result)
            else:
                for i, payload in valid:
                    await self._import_one(i, payload, opts, result)
        except (Exception, asyncio.CancelledError) as e:
            self.status.abandon()
            self.emitter.emit("import:aborted", success=result.success_count, error=str(e) or e.__class__.__name__)
            raise

        self.status.succeed()
        self.emitter.emit("import:done", **{k: v for k, v in result.to_dict().items() if k != "errors"})
        return result

    async def _import_one(self, i: int, payload: dict[str, Any], opts: ImportOptions, result: ImportResult) -> None:
        existing = self.store.by_catalog_item(payload["catalog_item_id"], payload["media_type"])
        try:
            if existing is None:
                await self.coordinator.create(payload)
                result.success_count += 1
                return
            if not opts.merge_duplicates:
                result.skipped_count += 1
                return
            delta = merge_delta(existing, payload, overwrite=opts.update_existing)
            if not delta:
                result.skipped_count += 1
                return
            await self.coordinator.update(existing.id, delta)
            result.success_count += 1
        except ListError as e:
            self._record_error(result, i, e)

    async def _import_server_side(self, valid: Sequence[tuple[int, dict[str, Any]]], opts: ImportOptions,
                                  result: ImportResult) -> None:
        body = [wire(p) for _, p in valid]
        try:
            res = await self.remote.import_batch(body, vars(opts))
        except Exception as e:
            err = as_remote_error(e, "import")
            result.error_count += len(valid)
            result.errors.append({"index": None, "error": str(err)})
            _log.warn("server-side import failed", extra={"records": len(valid), "error": str(err)})
            return
        res = norm_keys(res or {})
        result.success_count += int(res.get("success_count", res.get("successCount", 0)) or 0)
        failed = int(res.get("error_count", res.get("errorCount", 0)) or 0)
        result.error_count += failed
        result.skipped_count += int(res.get("skipped_count", res.get("skippedCount", 0)) or 0)
        for msg in res.get("errors") or []:
            result.errors.append({"index": None, "error": str(msg)})

    def _record_error(self, result: ImportResult, index: int, err: BaseException) -> None:
        result.error_count += 1
        result.errors.append({"index": index, "error": str(err) or err.__class__.__name__})
        self.emitter.emit("import:record_error", index=index, error=str(err))

    async def export(self, fmt: str = "json", *, remote: bool = False) -> str:
        if remote:
            try:
                return await self.remote.export_all(fmt)
            except Exception as e:
                err = as_remote_error(e, "export")
                if err is e:
                    raise
                raise err from e
        return export_entries(self.store.entries(), fmt, content_type=self.content_type)


__all__ = [
    "TransferAdapter", "export_entries", "export_document", "parse_records", "normalize_record",
    "merge_delta", "check_version", "EXPORT_FORMAT", "EXPORT_VERSION", "CSV_FIELDS",
]
