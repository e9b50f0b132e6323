"""Alert store exceptions."""

from __future__ import annotations


class StoreError(Exception):
    """Base exception for persistence failures."""


class DuplicateOpenAlertError(StoreError):
    """Another open alert already exists for the trip."""


class StaleWriteError(StoreError):
    """The stored alert changed since it was read."""
