"""
Core module for SheetStock.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- document_store: Store interface, in-memory and JSON-file stores, chunked writes
- collections: Logical collection layout
"""

from .exceptions import (
    SheetStockError,
    ValidationError,
    InsufficientStockError,
    NotFoundError,
    SnapshotNotFoundError,
    StoreUnavailableError,
    BatchLimitExceededError,
    PartialMigrationError,
)
from .document_store import (
    Document,
    DocumentStore,
    InMemoryDocumentStore,
    JsonFileDocumentStore,
    WriteBatch,
    write_in_chunks,
)

__all__ = [
    "SheetStockError",
    "ValidationError",
    "InsufficientStockError",
    "NotFoundError",
    "SnapshotNotFoundError",
    "StoreUnavailableError",
    "BatchLimitExceededError",
    "PartialMigrationError",
    "Document",
    "DocumentStore",
    "InMemoryDocumentStore",
    "JsonFileDocumentStore",
    "WriteBatch",
    "write_in_chunks",
]
