"""
Document store used by every SheetStock service.

The services never talk to a global store handle. One store instance is
created at application startup and passed into each service constructor.

Data Model:
    - A collection is addressed by a slash-separated path with an odd
      number of segments: "inventory", "snapshots/<id>/inventory"
    - A document lives in exactly one collection and is addressed by id
    - Document data is a plain JSON-compatible dict

Guarantees:
    - WriteBatch.commit() is all-or-nothing, and refuses batches larger than
      max_batch_operations (BatchLimitExceededError, nothing written)
    - There are NO multi-batch transactions. Callers that move more
      documents than fit in one batch must chunk and accept that a crash
      between chunks leaves partial state.
    - Reads return deep copies, so callers cannot mutate stored state

Thread Safety:
    - All state changes happen under a single RLock
    - A batch is validated against a staged copy and swapped in at once

Implementations:
    InMemoryDocumentStore  - process-local, used for tests and demos
    JsonFileDocumentStore  - persisted to a JSON file after every write
"""

from __future__ import annotations

import copy
import json
import os
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from core.exceptions import (
    BatchLimitExceededError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

# Default per-request operation ceiling (mirrors hosted document stores)
DEFAULT_MAX_BATCH_OPERATIONS = 500


@dataclass(frozen=True)
class Document:
    """
    One document read from the store.

    The data dict is a private copy; mutating it never affects the store.
    """

    id: str
    """Store-assigned (or caller-chosen) document identifier."""

    path: str
    """Full path of the document: '<collection path>/<id>'."""

    data: Dict[str, Any]
    """Document fields."""

    @property
    def collection(self) -> str:
        """Path of the collection holding this document."""
        return self.path.rsplit("/", 1)[0]

    def to_dict(self) -> Dict[str, Any]:
        """Flatten into a single dict with the id under 'id'."""
        result = dict(self.data)
        result["id"] = self.id
        return result


# =============================================================================
# PATH VALIDATION
# =============================================================================

def validate_collection_path(path: str) -> str:
    """
    Check that a collection path is well formed.

    Raises:
        ValidationError: On empty segments or an even segment count
    """
    if not isinstance(path, str) or not path:
        raise ValidationError("Collection path must be a non-empty string", "collection")
    segments = path.split("/")
    if any(not s for s in segments):
        raise ValidationError(f"Collection path has an empty segment: '{path}'", "collection")
    if len(segments) % 2 == 0:
        raise ValidationError(f"'{path}' is a document path, not a collection path", "collection")
    return path


def validate_document_id(doc_id: str) -> str:
    """Check that a document id is non-empty and slash-free."""
    if not isinstance(doc_id, str) or not doc_id or "/" in doc_id:
        raise ValidationError(f"Invalid document id: {doc_id!r}", "id")
    return doc_id


def _sort_key(value: Any) -> Tuple[int, Any]:
    # Missing fields sort before present ones
    if value is None:
        return (0, "")
    return (1, value)


# =============================================================================
# WRITE BATCH
# =============================================================================

class WriteBatch:
    """
    Group of writes committed atomically.

    Usage:
        batch = store.batch()
        batch.delete("inventory", unit_id)
        batch.set("usage_logs", store.new_id(), log_doc)
        batch.commit()
    """

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._ops: List[Tuple[str, str, str, Optional[Dict[str, Any]], bool]] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._ops)

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> "WriteBatch":
        """Create or overwrite a document (or merge fields into it)."""
        self._ops.append((
            "set",
            validate_collection_path(collection),
            validate_document_id(doc_id),
            copy.deepcopy(data),
            merge,
        ))
        return self

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> "WriteBatch":
        """Merge fields into an existing document. Fails if it does not exist."""
        self._ops.append((
            "update",
            validate_collection_path(collection),
            validate_document_id(doc_id),
            copy.deepcopy(fields),
            True,
        ))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        """Delete a document. Deleting a missing document is a no-op."""
        self._ops.append((
            "delete",
            validate_collection_path(collection),
            validate_document_id(doc_id),
            None,
            False,
        ))
        return self

    def commit(self) -> int:
        """
        Apply every queued write at once.

        Returns:
            Number of operations applied

        Raises:
            BatchLimitExceededError: Too many operations (nothing written)
            NotFoundError: An update targets a missing document (nothing written)
            StoreUnavailableError: Persistence failed (nothing written)
        """
        if self._committed:
            raise RuntimeError("WriteBatch has already been committed")
        self._store._apply(self._ops)
        self._committed = True
        return len(self._ops)


# =============================================================================
# STORE INTERFACE
# =============================================================================

class DocumentStore(ABC):
    """
    Collection-scoped CRUD, equality queries and batched writes.

    Single-document writes are one-operation batches, so they share the
    batch's validation and atomicity rules.
    """

    def __init__(self, max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS):
        if max_batch_operations < 1:
            raise ValueError("max_batch_operations must be at least 1")
        self._max_batch_operations = max_batch_operations

    @property
    def max_batch_operations(self) -> int:
        """Hard ceiling on operations per batch commit."""
        return self._max_batch_operations

    def new_id(self) -> str:
        """Generate a fresh document id."""
        return uuid.uuid4().hex[:20]

    def batch(self) -> WriteBatch:
        """Start a new atomic batch."""
        return WriteBatch(self)

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        """Create a document with a store-assigned id and return the id."""
        doc_id = self.new_id()
        self.batch().set(collection, doc_id, data).commit()
        return doc_id

    def set(self, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = False) -> None:
        self.batch().set(collection, doc_id, data, merge=merge).commit()

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self.batch().update(collection, doc_id, fields).commit()

    def delete(self, collection: str, doc_id: str) -> None:
        self.batch().delete(collection, doc_id).commit()

    def flush(self) -> None:
        """Persist any buffered state (no-op for purely in-memory stores)."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """Read one document, or None if it does not exist."""

    @abstractmethod
    def list_documents(self, collection: str) -> List[Document]:
        """Read every document of a collection, ordered by id."""

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        """
        Equality-filtered, ordered, limited read.

        Documents with equal order_by values are ordered by id ascending.
        """

    @abstractmethod
    def collection_group(self, name: str) -> List[Document]:
        """Every document in any collection whose last segment is `name`."""

    @abstractmethod
    def _apply(self, ops: List[Tuple[str, str, str, Optional[Dict[str, Any]], bool]]) -> None:
        """Apply a batch of operations atomically."""


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class InMemoryDocumentStore(DocumentStore):
    """
    Thread-safe, process-local document store.

    State is a dict of collection path -> {doc id -> data}. Empty
    collections are dropped, as in hosted document stores.
    """

    def __init__(
        self,
        max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS,
        initial_state: Optional[Dict[str, Dict[str, Dict[str, Any]]]] = None
    ):
        super().__init__(max_batch_operations)
        self._lock = threading.RLock()
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = copy.deepcopy(initial_state or {})

    def get(self, collection: str, doc_id: str) -> Optional[Document]:
        validate_collection_path(collection)
        validate_document_id(doc_id)
        with self._lock:
            data = self._collections.get(collection, {}).get(doc_id)
            if data is None:
                return None
            return Document(doc_id, f"{collection}/{doc_id}", copy.deepcopy(data))

    def list_documents(self, collection: str) -> List[Document]:
        validate_collection_path(collection)
        with self._lock:
            docs = self._collections.get(collection, {})
            return [
                Document(doc_id, f"{collection}/{doc_id}", copy.deepcopy(docs[doc_id]))
                for doc_id in sorted(docs)
            ]

    def query(
        self,
        collection: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Document]:
        if limit is not None and limit < 0:
            raise ValidationError("Query limit cannot be negative", "limit")

        docs = self.list_documents(collection)
        if filters:
            docs = [
                d for d in docs
                if all(d.data.get(field) == value for field, value in filters.items())
            ]
        if order_by:
            # list_documents() is already id-ordered and sorted() is stable
            docs = sorted(docs, key=lambda d: _sort_key(d.data.get(order_by)), reverse=descending)
        if limit is not None:
            docs = docs[:limit]
        return docs

    def collection_group(self, name: str) -> List[Document]:
        validate_document_id(name)
        with self._lock:
            result = []
            for path in sorted(self._collections):
                if path.rsplit("/", 1)[-1] != name:
                    continue
                docs = self._collections[path]
                for doc_id in sorted(docs):
                    result.append(Document(doc_id, f"{path}/{doc_id}", copy.deepcopy(docs[doc_id])))
            return result

    def dump(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        """Deep copy of the entire store state."""
        with self._lock:
            return copy.deepcopy(self._collections)

    def _apply(self, ops: List[Tuple[str, str, str, Optional[Dict[str, Any]], bool]]) -> None:
        if len(ops) > self.max_batch_operations:
            raise BatchLimitExceededError(len(ops), self.max_batch_operations)
        if not ops:
            return

        with self._lock:
            # Stage against shallow copies of only the touched collections
            staged: Dict[str, Dict[str, Dict[str, Any]]] = {}

            for kind, collection, doc_id, payload, merge in ops:
                if collection not in staged:
                    staged[collection] = dict(self._collections.get(collection, {}))
                docs = staged[collection]
                current = docs.get(doc_id)

                if kind == "delete":
                    docs.pop(doc_id, None)
                elif kind == "update":
                    if current is None:
                        raise NotFoundError(collection, doc_id)
                    merged = dict(current)
                    merged.update(payload)
                    docs[doc_id] = merged
                elif merge and current is not None:
                    merged = dict(current)
                    merged.update(payload)
                    docs[doc_id] = merged
                else:
                    docs[doc_id] = payload

            new_state = dict(self._collections)
            for collection, docs in staged.items():
                if docs:
                    new_state[collection] = docs
                else:
                    new_state.pop(collection, None)

            self._commit_state(new_state)

    def _commit_state(self, new_state: Dict[str, Dict[str, Dict[str, Any]]]) -> None:
        self._collections = new_state


# =============================================================================
# JSON FILE IMPLEMENTATION
# =============================================================================

class JsonFileDocumentStore(InMemoryDocumentStore):
    """
    In-memory store persisted to a single JSON file.

    The file is rewritten (via a temp file + atomic rename) after every
    successful batch. If the write fails the batch is not applied in
    memory either, and StoreUnavailableError is raised.
    """

    def __init__(self, path: str, max_batch_operations: int = DEFAULT_MAX_BATCH_OPERATIONS):
        self._path = Path(path)
        super().__init__(max_batch_operations, initial_state=self._load())
        logger.info(f"JsonFileDocumentStore opened: {self._path}")

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                payload = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailableError(f"Cannot read store file {self._path}", cause=e) from e
        return payload.get("collections", {})

    def _write(self, state: Dict[str, Dict[str, Dict[str, Any]]]) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump({"collections": state}, f, indent=1, sort_keys=True)
            os.replace(tmp_path, self._path)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to persist store to {self._path}: {e}")
            raise StoreUnavailableError(f"Cannot write store file {self._path}", cause=e) from e

    def _commit_state(self, new_state: Dict[str, Dict[str, Dict[str, Any]]]) -> None:
        self._write(new_state)
        super()._commit_state(new_state)

    def flush(self) -> None:
        with self._lock:
            self._write(self._collections)


def iter_chunks(items: Iterable[Any], size: int) -> Iterable[List[Any]]:
    """
    Split items into lists of at most `size` elements.

    Used by every chunked write so chunk sizes stay under the batch ceiling.
    """
    if size < 1:
        raise ValueError("Chunk size must be at least 1")
    chunk: List[Any] = []
    for item in items:
        chunk.append(item)
        if len(chunk) >= size:
            yield chunk
            chunk = []
    if chunk:
        yield chunk


def write_in_chunks(
    store: DocumentStore,
    operations: List[Tuple[str, str, str, Optional[Dict[str, Any]]]],
    chunk_size: Optional[int] = None,
    on_chunk: Optional[Callable[[int, int], None]] = None,
) -> int:
    """
    Commit operations as a sequence of batches.

    Each batch is atomic; the sequence is not. When everything fits in a
    single batch the whole write is atomic.

    Args:
        store: Target store
        operations: (kind, collection, doc_id, payload) with kind in
            'set', 'merge', 'update', 'delete'
        chunk_size: Operations per batch (default: the store ceiling)
        on_chunk: Called after each commit with (done, total)

    Returns:
        Number of operations committed
    """
    size = min(chunk_size or store.max_batch_operations, store.max_batch_operations)
    total = len(operations)
    done = 0
    for chunk in iter_chunks(operations, size):
        batch = store.batch()
        for kind, collection, doc_id, payload in chunk:
            if kind == "set":
                batch.set(collection, doc_id, payload)
            elif kind == "merge":
                batch.set(collection, doc_id, payload, merge=True)
            elif kind == "update":
                batch.update(collection, doc_id, payload)
            elif kind == "delete":
                batch.delete(collection, doc_id)
            else:
                raise ValueError(f"Unknown batch operation: {kind}")
        batch.commit()
        done += len(chunk)
        logger.debug(f"Committed chunk: {done}/{total} operations")
        if on_chunk is not None:
            on_chunk(done, total)
    return done
