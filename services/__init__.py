# services/__init__.py
from __future__ import annotations

from typing import Callable
from fastapi import FastAPI

from . import transfer

SERVICE_MODULES = (transfer,)

__all__ = [
    "transfer",
    "register",
]

def register(app: FastAPI, load_config: Callable[[], dict]) -> None:
    for mod in SERVICE_MODULES:
        fn = getattr(mod, "register", None)
        if callable(fn):
            fn(app, load_config)
