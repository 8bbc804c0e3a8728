"""
Custom exceptions for SheetStock.

Exception Hierarchy:
    SheetStockError (base)
    ├── ValidationError          - Bad input shape/values (never retried)
    ├── InsufficientStockError   - Not enough on-hand sheets for a line
    ├── NotFoundError            - Referenced document does not exist
    │   └── SnapshotNotFoundError - Unknown snapshot identifier
    ├── StoreUnavailableError    - Document store I/O failure (caller may retry)
    ├── BatchLimitExceededError  - Batch larger than the store ceiling
    └── PartialMigrationError    - Backup/restore/import failed mid-way

Usage:
    Validation and business-rule errors are surfaced verbatim to the caller.
    StoreUnavailableError is transient; the core never retries on its own.
    PartialMigrationError names the collection and phase that failed so the
    operator knows which Backup/Restore to re-run from the top.
"""

from typing import Optional, Dict, Any


class SheetStockError(Exception):
    """
    Base exception for all SheetStock errors.

    All custom exceptions inherit from this class, allowing callers to catch
    all application-specific errors with a single except clause if needed.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """
        Initialize the exception.

        Args:
            message: Human-readable error message
            details: Optional dictionary with additional context for debugging
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# =============================================================================
# INPUT / BUSINESS RULE ERRORS
# =============================================================================

class ValidationError(SheetStockError):
    """
    Input failed validation (non-positive quantity, unknown material, etc).

    Never retried. The message is meant to be shown to the user as-is.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else None
        super().__init__(message, details)
        self.field = field


class InsufficientStockError(SheetStockError):
    """
    Not enough on-hand sheets to satisfy one allocation line.

    Raised before anything is deleted, so the whole request is left
    uncommitted. The message names the material, length, requested and
    available quantities.
    """

    def __init__(
        self,
        material_type: str,
        length: int,
        requested: int,
        available: int,
        job: Optional[str] = None
    ):
        message = (
            f"Not enough stock for {requested}x {material_type} @ {length}\". "
            f"Only {available} available."
        )
        details = {
            "material_type": material_type,
            "length": length,
            "requested": requested,
            "available": available,
            "resolution": "Reduce the quantity or receive more stock first",
        }
        if job:
            details["job"] = job
        super().__init__(message, details)
        self.material_type = material_type
        self.length = length
        self.requested = requested
        self.available = available
        self.job = job


class NotFoundError(SheetStockError):
    """A referenced document (log, unit, material) does not exist."""

    def __init__(self, collection: str, doc_id: str):
        message = f"No document '{doc_id}' in {collection}"
        super().__init__(message, {"collection": collection, "id": doc_id})
        self.collection = collection
        self.doc_id = doc_id


class SnapshotNotFoundError(NotFoundError):
    """The requested snapshot is neither indexed nor discoverable by scan."""

    def __init__(self, snapshot_id: str):
        super().__init__("backups", snapshot_id)
        self.message = f"Snapshot not found: {snapshot_id}"
        self.snapshot_id = snapshot_id


# =============================================================================
# STORE ERRORS
# =============================================================================

class StoreUnavailableError(SheetStockError):
    """
    The document store could not be read or written.

    This is a transient I/O failure. Caller-level retry is appropriate;
    the services in this package never retry on their own.
    """

    def __init__(self, message: str = "Document store is not available", cause: Optional[Exception] = None):
        details = {
            "resolution": "Check store connectivity / file permissions and retry",
        }
        if cause is not None:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.cause = cause


class BatchLimitExceededError(SheetStockError):
    """
    A batched write was committed with more operations than the store allows.

    Nothing from the batch is written.
    """

    def __init__(self, operations: int, limit: int):
        message = f"Batch has {operations} operations, store limit is {limit}"
        super().__init__(message, {"operations": operations, "limit": limit})
        self.operations = operations
        self.limit = limit


class PartialMigrationError(SheetStockError):
    """
    A chunked backup, restore or import stopped part-way through.

    Chunks committed before the failure stay committed. The core does not
    heal this; the caller must re-run the operation from the top
    (BackfillIndex heals index-only failures).
    """

    def __init__(
        self,
        operation: str,
        snapshot_id: Optional[str],
        collection: str,
        phase: str,
        cause: Exception
    ):
        message = f"{operation.capitalize()} failed during {phase} of '{collection}': {cause}"
        details = {
            "operation": operation,
            "collection": collection,
            "phase": phase,
            "resolution": f"Re-run the {operation} from the beginning",
        }
        if snapshot_id:
            details["snapshot_id"] = snapshot_id
        super().__init__(message, details)
        self.operation = operation
        self.snapshot_id = snapshot_id
        self.collection = collection
        self.phase = phase
        self.cause = cause
