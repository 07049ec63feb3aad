# td_platform/engine/_status.py
# observable per-operation status flags.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any


@dataclass
class OpStatus:
    name: str
    in_flight: int = 0
    last_error: str | None = None
    last_error_type: str | None = None
    last_error_at: float | None = None
    completed: int = 0
    failed: int = 0

    @property
    def is_pending(self) -> bool:
        return self.in_flight > 0

    def begin(self) -> None:
        self.in_flight += 1

    def succeed(self) -> None:
        self.in_flight = max(0, self.in_flight - 1)
        self.completed += 1
        self.last_error = None
        self.last_error_type = None

    def abandon(self) -> None:
        self.in_flight = max(0, self.in_flight - 1)

    def fail(self, err: BaseException) -> None:
        self.in_flight = max(0, self.in_flight - 1)
        self.failed += 1
        self.last_error = str(err) or err.__class__.__name__
        self.last_error_type = err.__class__.__name__
        self.last_error_at = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_pending": self.is_pending,
            "in_flight": self.in_flight,
            "last_error": self.last_error,
            "last_error_type": self.last_error_type,
            "completed": self.completed,
            "failed": self.failed,
        }
