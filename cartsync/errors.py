"""
Cart Sync Errors

Error message constants and the exception taxonomy shared by the
repository, reconciler and mutation coordinator.
"""

from typing import Any

# Store errors
ERROR_STORE_UNAVAILABLE = "Cart store unavailable"
ERROR_READ_FAILED = "Could not read cart item"
ERROR_WRITE_FAILED = "Could not update cart"

# Session errors
ERROR_UNAUTHENTICATED = "You need to be logged in to use the cart"

# Mutation errors
ERROR_ITEM_BUSY = "Another update for this item is still in progress"

# Data errors
ERROR_MALFORMED_ENTRY = "Malformed cart entry"


class CartSyncError(Exception):
    """Base error for cart synchronization."""

    def __init__(
        self,
        message: str,
        code: str | None = None,
        retryable: bool = False,
        raw_error: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.retryable = retryable
        self.raw_error = raw_error


class StoreConnectionError(CartSyncError, ConnectionError):
    """Subscription channel could not be established or was lost."""

    def __init__(self, message: str = ERROR_STORE_UNAVAILABLE, raw_error: Any = None) -> None:
        super().__init__(message, code="STORE_UNAVAILABLE", retryable=True, raw_error=raw_error)


class ReadError(CartSyncError):
    """A single point read against the store failed."""

    def __init__(self, message: str = ERROR_READ_FAILED, raw_error: Any = None) -> None:
        super().__init__(message, code="READ_FAILED", retryable=True, raw_error=raw_error)


class WriteError(CartSyncError):
    """A single upsert or delete against the store failed."""

    def __init__(self, message: str = ERROR_WRITE_FAILED, raw_error: Any = None) -> None:
        super().__init__(message, code="WRITE_FAILED", retryable=True, raw_error=raw_error)


class ConflictError(CartSyncError):
    """Another mutation is already pending for the same line item."""

    def __init__(self, product_id: str, pending: Any = None) -> None:
        super().__init__(ERROR_ITEM_BUSY, code="ITEM_BUSY", retryable=True)
        self.product_id = product_id
        self.pending = pending


class UnauthenticatedError(CartSyncError):
    """No authenticated identity for the session."""

    def __init__(self, message: str = ERROR_UNAUTHENTICATED) -> None:
        super().__init__(message, code="UNAUTHENTICATED", retryable=False)


class MalformedDataError(CartSyncError):
    """Advisory: a snapshot entry failed validation and was dropped.

    Collected as a diagnostic on the reconciled update, never raised out of
    reconciliation.
    """

    def __init__(self, entry_key: str, reason: str) -> None:
        super().__init__(f"{ERROR_MALFORMED_ENTRY} {entry_key!r}: {reason}", code="MALFORMED_ENTRY")
        self.entry_key = entry_key
        self.reason = reason
