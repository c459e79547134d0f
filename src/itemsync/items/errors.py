"""Error taxonomy for item synchronization.

- ValidationError: a required attribute is missing or malformed. Raised before
  any store call and reported to the caller.
- StoreError: any failure reported by the external record store (terminal).
- UniquenessConflictError: save collided with a record sharing the natural key.
  The only store error that triggers the automatic retry-as-update.
- RecordNotFoundError: a load referenced a record the store does not know.
- NotificationError: failure inside the outbound notifier. Always swallowed
  after logging.

Recoverable per-attribute failures are not exceptions; they are collected as
AttributeWarning entries (see schemas.py).
"""

from __future__ import annotations


class SyncError(Exception):
    """Base class for all item synchronization errors."""


class ValidationError(SyncError):
    """Raised when a required attribute is missing or cannot be parsed.

    Attributes:
        field: Canonical name of the first offending attribute.
        reason: Human-readable explanation for ``field``.
        problems: Every offending attribute mapped to its reason, in policy
            order. Holds just ``{field: reason}`` when only one failed.
    """

    def __init__(self, field: str, reason: str, problems: dict[str, str] | None = None) -> None:
        self.field = field
        self.reason = reason
        self.problems = problems or {field: reason}
        super().__init__("; ".join(f"{name}: {why}" for name, why in self.problems.items()))


class StoreError(SyncError):
    """Raised when the external record store rejects or fails an operation.

    Attributes:
        operation: Store operation that failed (find, create, load, save).
        detail: Store-provided error detail, passed through verbatim.
    """

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Store {operation} failed: {detail}")


class UniquenessConflictError(StoreError):
    """Raised by save when another record already holds the natural key."""

    def __init__(self, natural_key: str, detail: str = "") -> None:
        self.natural_key = natural_key
        super().__init__(
            "save",
            detail or f"Uniqueness error: a record with natural key '{natural_key}' already exists",
        )


class RecordNotFoundError(StoreError):
    """Raised by load when the referenced record does not exist."""

    def __init__(self, ref: str) -> None:
        self.ref = ref
        super().__init__("load", f"Record '{ref}' not found")


class NotificationError(SyncError):
    """Raised inside the outbound notifier; never escapes OutboundNotifier.notify."""
