# /providers/store/_log.py
# Tsundoku - key/value logger for store adapters
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import json
import os
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

_LEVELS: dict[str, int] = {
    "off": 99,
    "error": 40,
    "warn": 30,
    "warning": 30,
    "info": 20,
    "debug": 10,
    "trace": 5,
}

RESET = "\033[0m"
DIM = "\033[90m"
RED = "\033[91m"
YELLOW = "\033[33m"
BLUE = "\033[94m"

_LEVEL_COLOR: dict[str, str] = {
    "ERROR": RED,
    "WARN": YELLOW,
    "WARNING": YELLOW,
    "INFO": BLUE,
    "DEBUG": YELLOW,
    "TRACE": DIM,
}


def _env_bool(name: str) -> bool:
    return (os.getenv(name) or "").strip().lower() in ("1", "true", "yes", "on")


def _use_color(fmt: str) -> bool:
    if fmt == "json" or os.getenv("NO_COLOR") is not None:
        return False
    return (os.getenv("TD_LOG_COLOR") or "auto").strip().lower() not in ("0", "false", "no", "off")


def _level_num(level: str) -> int:
    return _LEVELS.get(str(level or "info").strip().lower(), 20)


def _env_level(store: str) -> int:
    s = str(store).strip().upper()
    v = os.getenv(f"TD_{s}_LOG_LEVEL") or os.getenv("TD_LOG_LEVEL") or ""
    if v.strip():
        return _level_num(v)
    if _env_bool("TD_DEBUG") or _env_bool(f"TD_{s}_DEBUG"):
        return _level_num("debug")
    return _level_num("info")


def _one_line(s: Any) -> str:
    t = str(s if s is not None else "")
    return " ".join(t.replace("\n", " ").replace("\r", " ").split())


def _kv(fields: Mapping[str, Any]) -> str:
    parts: list[str] = []
    for k in sorted(fields):
        v = fields[k]
        if v is None:
            continue
        vs = _one_line(v)
        if vs == "":
            continue
        if any(ch.isspace() for ch in vs) or any(ch in vs for ch in ['"', "=", ":"]):
            vs = json.dumps(vs, ensure_ascii=False)
        parts.append(f"{k}={vs}")
    return " ".join(parts)


def log(store: str, op: str, level: str, msg: str, **fields: Any) -> None:
    store_s = str(store).strip().upper()
    op_s = str(op).strip().lower()
    level_s = str(level).strip().upper()
    if _level_num(level_s) < _env_level(store_s):
        return

    fmt = (os.getenv("TD_LOG_FORMAT") or "kv").strip().lower()
    ts = datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")
    base = {"ts": ts, "store": store_s, "op": op_s, "level": level_s, "msg": _one_line(msg)}

    if fmt == "json":
        print(json.dumps({**base, **fields}, ensure_ascii=False, default=str), flush=True)
        return

    color = _use_color(fmt)
    head = f"{DIM}[{store_s}:{op_s}]{RESET}" if color else f"[{store_s}:{op_s}]"
    lvl = f"{_LEVEL_COLOR.get(level_s, '')}{level_s}{RESET}" if color else level_s
    line = f"{head} {lvl} {base['msg']}"
    tail = _kv(fields)
    print(f"{line} {tail}" if tail else line, flush=True)
