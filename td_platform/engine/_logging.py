# td_platform/engine/_logging.py
# event emitter for the list engine.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import json
from collections import deque
from typing import Any, Callable

from _logging import log

_log = log.child("engine")


def default_sink(line: str) -> None:
    _log.debug(line)


class Emitter:
    """Serialises engine events as compact JSON lines and hands them to a callback.

    The last `keep` events stay in `recent` so the HTTP layer can show them.
    """

    def __init__(self, cb: Callable[[str], None] | None = default_sink, *, keep: int = 200):
        self.cb = cb
        self.recent: deque[dict[str, Any]] = deque(maxlen=max(1, keep))

    def emit(self, event: str, **data: Any) -> None:
        payload: dict[str, Any] = {"event": event}
        payload.update(data)
        self.recent.append(payload)
        if not self.cb:
            return
        try:
            self.cb(json.dumps(payload, separators=(",", ":"), default=str))
        except Exception as e:
            _log.warn("progress callback failed", extra={"event": event, "error": repr(e)})

    def info(self, line: str) -> None:
        if self.cb:
            self.cb(line)

    def dbg(self, enabled: bool, msg: str, **fields: Any) -> None:
        if not enabled:
            return
        if fields:
            self.emit("debug", msg=msg, **fields)
        else:
            self.info(f"[DEBUG] {msg}")

    def events(self, prefix: str = "") -> list[dict[str, Any]]:
        return [e for e in self.recent if str(e.get("event", "")).startswith(prefix)]
