# td_platform/engine/_errors.py
# error taxonomy for the list engine.
# Copyright (c) 2025-2026 Tsundoku
from __future__ import annotations

from typing import Any


class ListError(RuntimeError):
    """Base class for everything the engine raises on purpose."""

    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.__class__.__name__, "message": str(self), "retryable": self.retryable}


class ListValidationError(ListError, ValueError):
    """Caller passed an invalid target set or delta; nothing was applied."""


class TransientRemoteError(ListError):
    """Network or server failure. Local state has already been rolled back."""

    retryable = True

    def __init__(self, message: str, *, status: int | None = None, op: str | None = None):
        super().__init__(message)
        self.status = status
        self.op = op


class RemoteAuthError(TransientRemoteError):
    """The store refused the credentials; retrying will not help."""

    retryable = False


class ImportFormatError(ListError, ValueError):
    """The import payload could not be parsed at all."""


def as_remote_error(err: BaseException, op: str) -> ListError:
    """Engine errors pass through; anything else a store leaks becomes a TransientRemoteError."""
    if isinstance(err, ListError):
        return err
    return TransientRemoteError(f"{op} failed: {err!r}", op=op)


__all__ = [
    "ListError",
    "ListValidationError",
    "TransientRemoteError",
    "RemoteAuthError",
    "ImportFormatError",
    "as_remote_error",
]
