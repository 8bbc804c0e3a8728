"""
Unit tests for FIFO allocation.

Covers immediate allocation, all-or-nothing failure, deterministic
tie-breaking, scheduled usage and chunked commits above the batch ceiling.
"""

import pytest
from datetime import datetime, timedelta, timezone

from core.document_store import InMemoryDocumentStore
from core.exceptions import InsufficientStockError, NotFoundError, ValidationError
from services.allocation_service import AllocationService


NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


# Fixtures

@pytest.fixture
def store():
    """In-memory store with the catalog seeded."""
    store = InMemoryDocumentStore()
    store.set("materials", "16GA-CRS", {"category": "Cold Rolled", "thickness": 0.0598, "density": 0.2833})
    store.set("materials", "14GA-HRPO", {"category": "Hot Rolled", "thickness": 0.0747, "density": 0.2833})
    return store


@pytest.fixture
def service(store):
    """Allocation service with a fixed clock."""
    return AllocationService(store, clock=lambda: NOW)


def add_units(store, count, material="16GA-CRS", length=96, status="On Hand", start=0, prefix="u"):
    """Add `count` sheets, one day apart, oldest first."""
    ids = []
    for i in range(count):
        created = datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(days=start + i)
        doc_id = f"{prefix}{start + i:03d}"
        store.set("inventory", doc_id, {
            "materialType": material,
            "length": length,
            "status": status,
            "supplier": "Ryerson",
            "costPerPound": 1.1,
            "width": 48,
            "createdAt": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        })
        ids.append(doc_id)
    return ids


def request(*lines, job="J-100", customer="ACME"):
    return {"jobs": [{
        "job": job,
        "customer": customer,
        "lines": [{"materialType": m, "length": length, "quantity": q} for m, length, q in lines],
    }]}


class TestAllocate:
    """Immediate allocation."""

    def test_oldest_sheets_are_consumed(self, store, service):
        """Allocating 4 of 10 deletes the 4 oldest and logs qty -4."""
        ids = add_units(store, 10)
        result = service.allocate(request(("16GA-CRS", 96, 4)))

        assert result.deleted_unit_ids == ids[:4]
        remaining = [d.id for d in store.list_documents("inventory")]
        assert remaining == ids[4:]

        log = store.get("usage_logs", result.log_ids[0]).data
        assert log["qty"] == -4
        assert log["status"] == "Completed"
        assert log["kind"] == "usage"
        assert log["job"] == "J-100"
        assert [d["originalId"] for d in log["details"]] == ids[:4]
        assert all(d["qty"] == 1 for d in log["details"])

    def test_insufficient_stock_deletes_nothing(self, store, service):
        """Asking for 5 with 2 on hand fails with the exact numbers."""
        add_units(store, 2)
        with pytest.raises(InsufficientStockError) as exc_info:
            service.allocate(request(("16GA-CRS", 96, 5)))

        error = exc_info.value
        assert error.material_type == "16GA-CRS"
        assert error.length == 96
        assert error.requested == 5
        assert error.available == 2
        assert "16GA-CRS" in error.message
        assert len(store.list_documents("inventory")) == 2
        assert store.list_documents("usage_logs") == []

    def test_multi_line_request_is_atomic(self, store, service):
        """A short second line leaves the first line's sheets untouched."""
        add_units(store, 5)
        add_units(store, 1, material="14GA-HRPO", prefix="h")
        with pytest.raises(InsufficientStockError):
            service.allocate(request(("16GA-CRS", 96, 3), ("14GA-HRPO", 96, 2)))
        assert len(store.list_documents("inventory")) == 6
        assert store.list_documents("usage_logs") == []

    def test_jobs_share_the_same_pool(self, store, service):
        """Two jobs cannot both claim the same sheets."""
        add_units(store, 3)
        payload = {"jobs": [
            {"job": "A", "lines": [{"materialType": "16GA-CRS", "length": 96, "quantity": 2}]},
            {"job": "B", "lines": [{"materialType": "16GA-CRS", "length": 96, "quantity": 2}]},
        ]}
        with pytest.raises(InsufficientStockError) as exc_info:
            service.allocate(payload)
        assert exc_info.value.available == 1
        assert exc_info.value.job == "B"
        assert len(store.list_documents("inventory")) == 3

    def test_one_log_per_job(self, store, service):
        """Each job gets its own log with its own sheets."""
        ids = add_units(store, 4)
        payload = {"jobs": [
            {"job": "A", "lines": [{"materialType": "16GA-CRS", "length": 96, "quantity": 1}]},
            {"job": "B", "lines": [{"materialType": "16GA-CRS", "length": 96, "quantity": 2}]},
        ]}
        result = service.allocate(payload)
        assert len(result.log_ids) == 2
        assert result.counts_by_job == {"A": 1, "B": 2}
        log_b = store.get("usage_logs", result.log_ids[1]).data
        assert [d["originalId"] for d in log_b["details"]] == ids[1:3]

    def test_equal_created_at_breaks_ties_by_id(self, store, service):
        """Sheets created in the same instant are taken in id order."""
        for doc_id in ("zz", "aa", "mm"):
            store.set("inventory", doc_id, {
                "materialType": "16GA-CRS", "length": 96, "status": "On Hand",
                "createdAt": "2024-01-01T00:00:00.000Z",
            })
        result = service.allocate(request(("16GA-CRS", 96, 2)))
        assert result.deleted_unit_ids == ["aa", "mm"]

    def test_ordered_sheets_are_not_allocated(self, store, service):
        """Only On Hand sheets are eligible."""
        add_units(store, 3, status="Ordered")
        with pytest.raises(InsufficientStockError) as exc_info:
            service.allocate(request(("16GA-CRS", 96, 1)))
        assert exc_info.value.available == 0

    def test_other_lengths_are_not_allocated(self, store, service):
        """Length must match exactly."""
        add_units(store, 3, length=120)
        with pytest.raises(InsufficientStockError):
            service.allocate(request(("16GA-CRS", 96, 1)))

    def test_unknown_material_rejected(self, store, service):
        """Materials must exist in the catalog."""
        with pytest.raises(ValidationError):
            service.allocate(request(("9GA-NOPE", 96, 1)))

    def test_non_positive_quantity_rejected(self, store, service):
        """Zero quantities never reach the store."""
        add_units(store, 3)
        with pytest.raises(ValidationError):
            service.allocate(request(("16GA-CRS", 96, 0)))
        assert len(store.list_documents("inventory")) == 3

    def test_line_that_is_not_an_object_rejected(self, store, service):
        """A bare string in lines is a ValidationError and nothing is written."""
        add_units(store, 2)
        with pytest.raises(ValidationError):
            service.allocate({"jobs": [{"job": "J", "lines": ["16GA-CRS"]}]})
        assert len(store.list_documents("inventory")) == 2

    def test_large_allocation_is_chunked(self):
        """Requests above the batch ceiling still commit, in chunks."""
        store = InMemoryDocumentStore(max_batch_operations=5)
        store.set("materials", "16GA-CRS", {"thickness": 0.0598, "density": 0.2833})
        service = AllocationService(store, clock=lambda: NOW)
        add_units(store, 8)

        result = service.allocate(request(("16GA-CRS", 96, 7)))
        assert result.total_deleted == 7
        assert len(store.list_documents("inventory")) == 1
        assert len(store.list_documents("usage_logs")) == 1


class TestScheduledUsage:
    """schedule / fulfill / fulfill_due."""

    def test_schedule_does_not_touch_stock(self, store, service):
        """A scheduled log records placeholder details only."""
        add_units(store, 3)
        payload = request(("16GA-CRS", 96, 2))
        payload["jobs"][0]["usedAt"] = "2024-07-01T00:00:00.000Z"
        [log_id] = service.schedule(payload)

        log = store.get("usage_logs", log_id).data
        assert log["status"] == "Scheduled"
        assert log["qty"] == -2
        assert log["usedAt"] == "2024-07-01T00:00:00.000Z"
        assert all("originalId" not in d for d in log["details"])
        assert len(store.list_documents("inventory")) == 3

    def test_fulfill_consumes_and_completes(self, store, service):
        """Fulfilment deletes sheets and snapshots them into the log."""
        ids = add_units(store, 3)
        [log_id] = service.schedule(request(("16GA-CRS", 96, 2)))
        result = service.fulfill(log_id)

        assert result.deleted_unit_ids == ids[:2]
        log = store.get("usage_logs", log_id).data
        assert log["status"] == "Completed"
        assert [d["originalId"] for d in log["details"]] == ids[:2]

    def test_fulfill_completed_log_rejected(self, store, service):
        """Only scheduled logs can be fulfilled."""
        add_units(store, 1)
        result = service.allocate(request(("16GA-CRS", 96, 1)))
        with pytest.raises(ValidationError):
            service.fulfill(result.log_ids[0])

    def test_fulfill_missing_log(self, service):
        """Unknown log ids are NotFoundError."""
        with pytest.raises(NotFoundError):
            service.fulfill("missing")

    def test_fulfill_due_skips_future_and_short(self, store, service):
        """Past-due logs are fulfilled; short ones stay scheduled."""
        add_units(store, 2)
        due = request(("16GA-CRS", 96, 2), job="due")
        due["jobs"][0]["usedAt"] = "2024-05-01T00:00:00.000Z"
        short = request(("16GA-CRS", 96, 1), job="short")
        short["jobs"][0]["usedAt"] = "2024-05-02T00:00:00.000Z"
        future = request(("16GA-CRS", 96, 1), job="future")
        future["jobs"][0]["usedAt"] = "2024-12-01T00:00:00.000Z"

        [due_id] = service.schedule(due)
        [short_id] = service.schedule(short)
        [future_id] = service.schedule(future)

        outcome = service.fulfill_due()
        assert outcome == {"fulfilled": [due_id], "skipped": [short_id]}
        assert store.get("usage_logs", short_id).data["status"] == "Scheduled"
        assert store.get("usage_logs", future_id).data["status"] == "Scheduled"
