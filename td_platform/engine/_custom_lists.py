# td_platform/engine/_custom_lists.py
# user-curated custom lists: loading and creation.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from _logging import log
from ._errors import ListValidationError, as_remote_error
from ._logging import Emitter
from ._status import OpStatus
from ._types import CustomList

_log = log.child("engine.custom_lists")

NAME_MAX = 100
DESCRIPTION_MAX = 500


class CustomListRegistry:
    """Keeps the user's custom lists in sort order. Creation waits for the store to confirm."""

    def __init__(self, remote: Any, *, emitter: Emitter | None = None, status: OpStatus | None = None):
        self.remote = remote
        self.emitter = emitter or Emitter(None)
        self.status = status or OpStatus("custom_lists")
        self._lists: dict[str, CustomList] = {}

    def __len__(self) -> int:
        return len(self._lists)

    def lists(self) -> list[CustomList]:
        return sorted(self._lists.values(), key=lambda c: (c.sort_order, c.id))

    def get(self, list_id: str) -> CustomList | None:
        return self._lists.get(str(list_id))

    def by_name(self, name: str) -> CustomList | None:
        k = (name or "").strip().casefold()
        return next((c for c in self._lists.values() if c.name.casefold() == k), None)

    async def refresh(self) -> list[CustomList]:
        self.status.begin()
        try:
            rows = await self.remote.fetch_custom_lists()
        except asyncio.CancelledError:
            self.status.abandon()
            raise
        except Exception as e:
            err = as_remote_error(e, "custom lists")
            self.status.fail(err)
            self.emitter.emit("custom_lists:error", error=str(err))
            if err is e:
                raise
            raise err from e
        loaded: dict[str, CustomList] = {}
        for r in rows or []:
            try:
                c = CustomList.from_dict(r)
            except (TypeError, ValueError) as e:
                self.emitter.emit("custom_lists:skip", error=str(e))
                continue
            loaded[c.id] = c
        self._lists = loaded
        self.status.succeed()
        self.emitter.emit("custom_lists:loaded", count=len(loaded))
        return self.lists()

    def check_create(self, payload: Mapping[str, Any]) -> dict[str, Any]:
        name = str(payload.get("name") or "").strip()
        if not name:
            raise ListValidationError("custom list name is required")
        if len(name) > NAME_MAX:
            raise ListValidationError(f"custom list name is longer than {NAME_MAX} characters")
        if self.by_name(name) is not None:
            raise ListValidationError(f"a custom list named {name!r} already exists")
        desc = str(payload.get("description") or "").strip() or None
        if desc and len(desc) > DESCRIPTION_MAX:
            raise ListValidationError(f"description is longer than {DESCRIPTION_MAX} characters")
        return {
            "name": name,
            "description": desc,
            "is_public": bool(payload.get("is_public", False)),
            "is_collaborative": bool(payload.get("is_collaborative", False)),
            "sort_order": len(self._lists),
        }

    async def create(self, payload: Mapping[str, Any]) -> CustomList:
        body = self.check_create(payload)
        self.status.begin()
        self.emitter.emit("custom_lists:create:start", name=body["name"])
        try:
            raw = await self.remote.create_custom_list(body)
            created = CustomList.from_dict({**body, **dict(raw or {})})
        except asyncio.CancelledError:
            self.status.abandon()
            raise
        except Exception as e:
            err = as_remote_error(e, "create custom list")
            self.status.fail(err)
            _log.warn("custom list not created", extra={"name": body["name"], "error": str(err)})
            self.emitter.emit("custom_lists:create:error", name=body["name"], error=str(err))
            if err is e:
                raise
            raise err from e
        self._lists[created.id] = created
        self.status.succeed()
        self.emitter.emit("custom_lists:create:confirm", id=created.id, name=created.name)
        return created


__all__ = ["CustomListRegistry", "NAME_MAX", "DESCRIPTION_MAX"]
