# Public surface of the list engine package.
from ._types import (
    CONFIRMED,
    PENDING,
    REVERTED,
    EDITABLE_FIELDS,
    CustomList,
    DateRange,
    ImportOptions,
    ImportResult,
    ListEntry,
    ListFilter,
    ListSort,
    Mutation,
    Range,
    RemoteStore,
    SearchPage,
)
from ._errors import (
    ImportFormatError,
    ListError,
    ListValidationError,
    RemoteAuthError,
    TransientRemoteError,
)
from ._bulk import Selection
from ._view import derive, stats
from .facade import ListManager

__all__ = [
    "ListManager", "ListEntry", "CustomList", "ListFilter", "ListSort", "Mutation", "Range", "DateRange",
    "ImportOptions", "ImportResult", "SearchPage", "RemoteStore", "Selection", "derive", "stats",
    "CONFIRMED", "PENDING", "REVERTED", "EDITABLE_FIELDS",
    "ListError", "ListValidationError", "TransientRemoteError", "RemoteAuthError", "ImportFormatError",
]
