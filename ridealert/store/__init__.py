"""Alert persistence backends."""

from ridealert.store.base import NEWEST_FIRST, AlertStore, SortSpec
from ridealert.store.exceptions import (
    DuplicateOpenAlertError,
    StaleWriteError,
    StoreError,
)
from ridealert.store.memory import InMemoryAlertStore

__all__ = [
    "NEWEST_FIRST",
    "AlertStore",
    "DuplicateOpenAlertError",
    "InMemoryAlertStore",
    "SortSpec",
    "StaleWriteError",
    "StoreError",
]
