# td_platform/modules_registry.py
# Tsundoku - store backend registry.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

from importlib import import_module
from typing import Any, Mapping, Optional

MODULES = {
    "STORE": {
        "_mod_MEMORY": "providers.store._mod_MEMORY",
        "_mod_REST":   "providers.store._mod_REST",
    },
}


def get_store_module_path_by_name(name: str) -> Optional[str]:
    key = f"_mod_{(name or '').strip().upper()}"
    return MODULES["STORE"].get(key)


def load_store_ops(name: str) -> Optional[Any]:
    path = get_store_module_path_by_name(name)
    if not path:
        return None
    mod = import_module(path)
    return getattr(mod, "OPS", None)


def build_store(cfg: Mapping[str, Any], **kw: Any) -> Any:
    """Instantiate the backend named by `store.backend` (default: memory)."""
    name = str((cfg.get("store") or {}).get("backend") or "memory")
    ops = load_store_ops(name)
    if ops is None:
        raise ValueError(f"unknown store backend {name!r}; expected one of "
                         + ", ".join(k[5:].lower() for k in MODULES["STORE"]))
    return ops.from_config(cfg, **kw)
