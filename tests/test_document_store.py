"""
Unit tests for the document store and chunked writes.
"""

import json
import pytest
from unittest.mock import Mock

from core.document_store import (
    InMemoryDocumentStore,
    JsonFileDocumentStore,
    iter_chunks,
    validate_collection_path,
    write_in_chunks,
)
from core.exceptions import (
    BatchLimitExceededError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)


# Fixtures

@pytest.fixture
def store():
    """Small-ceiling in-memory store."""
    return InMemoryDocumentStore(max_batch_operations=5)


@pytest.fixture
def seeded_store(store):
    """Store with a handful of inventory documents."""
    store.set("inventory", "b", {"materialType": "16GA-CRS", "createdAt": "2024-01-02T00:00:00.000Z"})
    store.set("inventory", "a", {"materialType": "16GA-CRS", "createdAt": "2024-01-02T00:00:00.000Z"})
    store.set("inventory", "c", {"materialType": "14GA-HRPO", "createdAt": "2024-01-01T00:00:00.000Z"})
    store.set("inventory", "d", {"materialType": "16GA-CRS"})
    return store


class TestPaths:
    """Collection path validation."""

    def test_top_level_and_nested_paths_are_valid(self):
        """Odd segment counts address collections."""
        assert validate_collection_path("inventory") == "inventory"
        assert validate_collection_path("snapshots/2024-01-01T00-00-00/inventory")

    def test_document_path_is_rejected(self):
        """An even segment count is a document path."""
        with pytest.raises(ValidationError):
            validate_collection_path("snapshots/2024-01-01T00-00-00")

    def test_empty_segment_is_rejected(self):
        """Double slashes are malformed."""
        with pytest.raises(ValidationError):
            validate_collection_path("snapshots//inventory")

    def test_slash_in_document_id_is_rejected(self, store):
        """Ids cannot contain a slash."""
        with pytest.raises(ValidationError):
            store.set("inventory", "a/b", {})


class TestReadsAndWrites:
    """Single-document CRUD."""

    def test_get_returns_copy(self, store):
        """Mutating a read result never touches stored data."""
        store.set("materials", "16GA-CRS", {"density": 0.2833})
        doc = store.get("materials", "16GA-CRS")
        doc.data["density"] = 99
        assert store.get("materials", "16GA-CRS").data["density"] == 0.2833

    def test_get_missing_returns_none(self, store):
        """Missing documents read as None."""
        assert store.get("materials", "nope") is None

    def test_add_assigns_id(self, store):
        """add() returns the new id and the document is readable."""
        doc_id = store.add("usage_logs", {"job": "J1"})
        assert store.get("usage_logs", doc_id).data == {"job": "J1"}

    def test_set_merge_keeps_existing_fields(self, store):
        """merge=True only overwrites the given fields."""
        store.set("materials", "m", {"a": 1, "b": 2})
        store.set("materials", "m", {"b": 3}, merge=True)
        assert store.get("materials", "m").data == {"a": 1, "b": 3}

    def test_update_missing_document_raises(self, store):
        """update() requires an existing document."""
        with pytest.raises(NotFoundError):
            store.update("materials", "missing", {"a": 1})

    def test_delete_missing_is_noop(self, store):
        """Deleting a document that does not exist is fine."""
        store.delete("materials", "missing")
        assert store.list_documents("materials") == []

    def test_document_to_dict_includes_id(self, store):
        """Document.to_dict flattens the id into the data."""
        store.set("materials", "m", {"a": 1})
        doc = store.get("materials", "m")
        assert doc.to_dict() == {"a": 1, "id": "m"}
        assert doc.collection == "materials"


class TestQueries:
    """Filtering, ordering and collection groups."""

    def test_list_documents_ordered_by_id(self, seeded_store):
        """Plain listing is id-ordered."""
        ids = [d.id for d in seeded_store.list_documents("inventory")]
        assert ids == ["a", "b", "c", "d"]

    def test_query_equality_filter(self, seeded_store):
        """Only matching documents are returned."""
        docs = seeded_store.query("inventory", filters={"materialType": "14GA-HRPO"})
        assert [d.id for d in docs] == ["c"]

    def test_query_order_ties_broken_by_id(self, seeded_store):
        """Equal order_by values keep id order; missing values sort first."""
        docs = seeded_store.query("inventory", order_by="createdAt")
        assert [d.id for d in docs] == ["d", "c", "a", "b"]

    def test_query_descending_with_limit(self, seeded_store):
        """Descending order and a limit combine."""
        docs = seeded_store.query("inventory", order_by="createdAt", descending=True, limit=1)
        assert len(docs) == 1
        assert docs[0].data["createdAt"] == "2024-01-02T00:00:00.000Z"

    def test_negative_limit_rejected(self, seeded_store):
        """A negative limit is a validation error."""
        with pytest.raises(ValidationError):
            seeded_store.query("inventory", limit=-1)

    def test_collection_group_spans_snapshots(self, store):
        """collection_group finds same-named collections at any depth."""
        store.set("inventory", "live", {})
        store.set("snapshots/2024-01-01T00-00-00/inventory", "old", {})
        paths = [d.path for d in store.collection_group("inventory")]
        assert paths == ["inventory/live", "snapshots/2024-01-01T00-00-00/inventory/old"]


class TestBatches:
    """Atomic batch commits and the operation ceiling."""

    def test_batch_commits_all(self, store):
        """All queued writes land together."""
        batch = store.batch()
        batch.set("inventory", "1", {}).set("inventory", "2", {}).delete("inventory", "3")
        assert batch.commit() == 3
        assert len(store.list_documents("inventory")) == 2

    def test_batch_over_limit_writes_nothing(self, store):
        """Exceeding the ceiling raises and leaves the store untouched."""
        batch = store.batch()
        for i in range(6):
            batch.set("inventory", str(i), {})
        with pytest.raises(BatchLimitExceededError) as exc_info:
            batch.commit()
        assert exc_info.value.limit == 5
        assert store.list_documents("inventory") == []

    def test_failed_update_rolls_back_whole_batch(self, store):
        """A failing op inside a batch discards the earlier ops."""
        batch = store.batch()
        batch.set("inventory", "1", {})
        batch.update("inventory", "missing", {"a": 1})
        with pytest.raises(NotFoundError):
            batch.commit()
        assert store.get("inventory", "1") is None

    def test_batch_cannot_be_committed_twice(self, store):
        """A committed batch is spent."""
        batch = store.batch().set("inventory", "1", {})
        batch.commit()
        with pytest.raises(RuntimeError):
            batch.commit()

    def test_emptied_collection_disappears(self, store):
        """Deleting the last document drops the collection."""
        store.set("inventory", "1", {})
        store.delete("inventory", "1")
        assert "inventory" not in store.dump()


class TestChunkedWrites:
    """iter_chunks and write_in_chunks."""

    def test_iter_chunks_sizes(self):
        """Chunks are full except possibly the last."""
        assert [len(c) for c in iter_chunks(range(7), 3)] == [3, 3, 1]

    def test_iter_chunks_rejects_zero(self):
        """Chunk size must be positive."""
        with pytest.raises(ValueError):
            list(iter_chunks([1], 0))

    def test_write_in_chunks_respects_ceiling(self, store):
        """Twelve ops on a ceiling of five commit as 5 + 5 + 2."""
        ops = [("set", "inventory", str(i), {"n": i}) for i in range(12)]
        progress = Mock()
        done = write_in_chunks(store, ops, chunk_size=50, on_chunk=progress)
        assert done == 12
        assert len(store.list_documents("inventory")) == 12
        assert [c.args for c in progress.call_args_list] == [(5, 12), (10, 12), (12, 12)]

    def test_write_in_chunks_op_kinds(self, store):
        """merge, update and delete map onto batch operations."""
        store.set("materials", "m", {"a": 1})
        store.set("materials", "gone", {})
        write_in_chunks(store, [
            ("merge", "materials", "m", {"b": 2}),
            ("update", "materials", "m", {"c": 3}),
            ("delete", "materials", "gone", None),
        ])
        assert store.get("materials", "m").data == {"a": 1, "b": 2, "c": 3}
        assert store.get("materials", "gone") is None

    def test_unknown_op_kind(self, store):
        """Unknown kinds are programming errors."""
        with pytest.raises(ValueError):
            write_in_chunks(store, [("upsert", "materials", "m", {})])


class TestJsonFileStore:
    """File-backed persistence."""

    def test_state_survives_reopen(self, tmp_path):
        """Data written by one instance is read by the next."""
        path = tmp_path / "store.json"
        first = JsonFileDocumentStore(str(path))
        first.set("materials", "16GA-CRS", {"density": 0.2833})

        second = JsonFileDocumentStore(str(path))
        assert second.get("materials", "16GA-CRS").data == {"density": 0.2833}

    def test_file_layout(self, tmp_path):
        """The file holds a single 'collections' mapping."""
        path = tmp_path / "store.json"
        JsonFileDocumentStore(str(path)).set("inventory", "u1", {"length": 96})
        payload = json.loads(path.read_text(encoding="utf-8"))
        assert payload == {"collections": {"inventory": {"u1": {"length": 96}}}}

    def test_corrupt_file_raises_unavailable(self, tmp_path):
        """An unreadable store file is a StoreUnavailableError."""
        path = tmp_path / "store.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StoreUnavailableError):
            JsonFileDocumentStore(str(path))

    def test_failed_write_leaves_memory_unchanged(self, tmp_path, monkeypatch):
        """When persisting fails the batch is not applied in memory."""
        store = JsonFileDocumentStore(str(tmp_path / "store.json"))
        store.set("inventory", "u1", {})

        def boom(state):
            raise StoreUnavailableError("disk full")

        monkeypatch.setattr(store, "_write", boom)
        with pytest.raises(StoreUnavailableError):
            store.set("inventory", "u2", {})
        assert store.get("inventory", "u2") is None
        assert store.get("inventory", "u1") is not None
