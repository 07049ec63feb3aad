# td_platform/engine/_history.py
# persisted search history.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import json
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from _logging import log

_log = log.child("engine.history")


@dataclass
class SearchHistory:
    path: Path | None = None
    max_items: int = 100
    items: list[dict[str, Any]] = field(default_factory=list)
    _loaded: bool = field(default=False, init=False, repr=False)

    @classmethod
    def at(cls, base_path: Path, max_items: int = 100) -> "SearchHistory":
        return cls(path=Path(base_path) / "search_history.json", max_items=max_items)

    def _read(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        if not self.path or not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text("utf-8"))
        except (OSError, ValueError) as e:
            _log.warn("search history unreadable; starting empty", extra={"path": str(self.path), "error": repr(e)})
            return
        if isinstance(data, list):
            self.items = [x for x in data if isinstance(x, dict) and x.get("query")][: self.max_items]

    def _write_atomic(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps(self.items, ensure_ascii=False, indent=2), "utf-8")
        tmp.replace(self.path)

    def add(self, query: str, *, scope: str = "both", result_count: int = 0) -> None:
        q = (query or "").strip()
        if not q:
            return
        self._read()
        self.items = [x for x in self.items if str(x.get("query", "")).casefold() != q.casefold()]
        self.items.insert(0, {"query": q, "scope": scope, "result_count": int(result_count), "ts": int(time.time())})
        del self.items[self.max_items:]
        self._write_atomic()

    def remove(self, query: str) -> bool:
        self._read()
        before = len(self.items)
        self.items = [x for x in self.items if str(x.get("query", "")).casefold() != (query or "").strip().casefold()]
        if len(self.items) == before:
            return False
        self._write_atomic()
        return True

    def clear(self) -> None:
        self.items = []
        self._loaded = True
        self._write_atomic()

    def recent(self, limit: int = 10) -> list[dict[str, Any]]:
        self._read()
        return [dict(x) for x in self.items[: max(0, limit)]]

    def popular(self, limit: int = 10) -> list[tuple[str, int]]:
        """Most frequent words across recorded queries."""
        self._read()
        words: Counter[str] = Counter()
        for x in self.items:
            words.update(w for w in str(x.get("query", "")).casefold().split() if len(w) > 1)
        return words.most_common(max(0, limit))
