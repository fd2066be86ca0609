from __future__ import annotations

from typing import Dict, Optional


__all__ = [
    "StoreError",
    "NotFound",
    "EditConflict",
    "Unauthorized",
    "DuplicateEntry",
    "ValidationError",
    "TransientStoreFailure",
    "QueryTimeout",
    "OperationCancelled",
]


class StoreError(Exception):
    """Base class for every outcome a store operation can raise."""


class NotFound(StoreError):
    """The target row is absent, or absent within the required scope."""

    def __init__(self, message: str = "record not found"):
        super().__init__(message)


class EditConflict(StoreError):
    """The presented version no longer matches the stored one."""

    def __init__(self, message: str = "edit conflict"):
        super().__init__(message)


class Unauthorized(StoreError):
    """The row exists but the caller does not own it."""

    def __init__(self, message: str = "user is not authorized to perform this action"):
        super().__init__(message)


class DuplicateEntry(StoreError):
    """A uniqueness constraint (tag name, post/tag pair, user email) was hit."""

    def __init__(self, message: str = "duplicate entry", field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ValidationError(StoreError):
    """Field-level input rejection carrying every collected field error."""

    def __init__(self, errors: Dict[str, str]):
        super().__init__("; ".join(f"{key}: {value}" for key, value in errors.items()))
        self.errors = dict(errors)


class TransientStoreFailure(StoreError):
    """Timeouts, lost connections and any storage error we cannot classify."""


class QueryTimeout(TransientStoreFailure):
    """A round trip ran past its deadline."""


class OperationCancelled(TransientStoreFailure):
    """The caller cancelled the operation while it was in flight."""
