# td_platform/config_base.py
# Tsundoku - configuration file handling.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import copy
import json
import os
import secrets
import time
from pathlib import Path
from typing import Any, Dict

# ------------------------------------------------------------
# Base dir resolution
# ------------------------------------------------------------
def CONFIG_BASE() -> Path:
    """
    Determine the base directory for config and state files.

    Priority:
      1) $CONFIG_BASE if set
      2) /config (when running in a container that mounts /config)
      3) Project root (one level up from this package)
    """
    env = os.getenv("CONFIG_BASE")
    if env:
        return Path(env)

    if Path("/app").exists():
        return Path("/config")

    return Path(__file__).resolve().parents[1]


# Default config structure
DEFAULT_CFG: Dict[str, Any] = {
    # --- Runtime -------------------------------------------------------------
    "runtime": {
        "debug": False,                                 # Verbose engine events (also TD_DEBUG=1)
        "log_level": "info",                            # silent | error | warn | info | debug
        "log_json_path": "",                            # Optional JSON-lines log sink
        "auto_refresh": True,                           # Reload the list from the store after confirmed writes
    },

    # --- Remote store --------------------------------------------------------
    "store": {
        "backend": "memory",                            # "memory" (local, for demos/tests) | "rest"
        "base_url": "",                                 # e.g. https://<project>.supabase.co
        "api_key": "",                                  # Sent as `apikey` header
        "access_token": "",                             # User session token (Bearer)
        "user_id": "",                                  # Owner of the list rows
        "timeout": 10.0,                                # HTTP timeout (seconds)
        "max_retries": 3,                               # Retry budget for 429/5xx
        "backoff_base": 0.5,                            # First retry delay; doubles per attempt
    },

    # --- Lists ---------------------------------------------------------------
    "lists": {
        "content_type": "both",                         # anime | manga | both
        "optimistic_updates": True,                     # Apply writes locally before the store confirms
    },

    # --- Search --------------------------------------------------------------
    "search": {
        "debounce_ms": 300,                             # Quiet period after the last keystroke
        "min_query_length": 2,                          # Shorter queries never reach the store
        "page_size": 20,                                # Results per page
        "sort": "relevance",                            # relevance | popularity | score | title
        "cache_ttl_sec": 300,                           # 0 disables the result cache
        "history_size": 100,                            # Recent queries kept on disk
    },

    # --- Import defaults -----------------------------------------------------
    "import": {
        "merge_duplicates": True,
        "update_existing": False,
        "import_ratings": True,
        "import_progress": True,
        "import_dates": True,
    },

    # --- HTTP server ---------------------------------------------------------
    "server": {
        "host": "0.0.0.0",
        "port": 8797,
    },
}


# ------------------------------------------------------------
# Helpers: paths, IO, merging
# ------------------------------------------------------------
def _cfg_file() -> Path:
    return CONFIG_BASE() / "config.json"

def config_path() -> Path:
    return _cfg_file()


def _read_json(p: Path) -> Dict[str, Any]:
    with p.open("r", encoding="utf-8") as f:
        data = json.load(f)
    return data if isinstance(data, dict) else {}


def _write_json_atomic(p: Path, data: Dict[str, Any]) -> None:
    p.parent.mkdir(parents=True, exist_ok=True)
    suffix = f".{time.time_ns()}.{os.getpid()}.{secrets.token_hex(4)}.tmp"
    tmp = p.with_suffix(suffix)
    with tmp.open("w", encoding="utf-8", newline="\n") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
        f.write("\n")
    tmp.replace(p)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _normalize(cfg: Dict[str, Any]) -> Dict[str, Any]:
    lists = cfg.get("lists") or {}
    ct = str(lists.get("content_type") or "both").strip().lower()
    lists["content_type"] = ct if ct in ("anime", "manga", "both") else "both"

    search = cfg.get("search") or {}
    search["debounce_ms"] = max(0, int(search.get("debounce_ms") or 0))
    search["min_query_length"] = max(0, int(search.get("min_query_length") or 0))
    search["page_size"] = min(100, max(1, int(search.get("page_size") or 20)))

    store = cfg.get("store") or {}
    store["backend"] = str(store.get("backend") or "memory").strip().lower()
    store["base_url"] = str(store.get("base_url") or "").rstrip("/")
    return cfg


# ------------------------------------------------------------
# Public API
# ------------------------------------------------------------
def load_config() -> Dict[str, Any]:
    """Read config.json and fill in everything it leaves out from DEFAULT_CFG."""
    p = _cfg_file()
    user_cfg: Dict[str, Any] = _read_json(p) if p.exists() else {}
    return _normalize(_deep_merge(DEFAULT_CFG, user_cfg))


def save_config(cfg: Dict[str, Any]) -> None:
    _write_json_atomic(_cfg_file(), _normalize(_deep_merge(DEFAULT_CFG, dict(cfg or {}))))
