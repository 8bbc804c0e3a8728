"""
Integration tests for the Flask routes.

Each test gets a fresh app over an in-memory store (TestingConfig: batch
ceiling 5, chunk size 3, background due work disabled).
"""

import pytest

from app import create_app, status_for
from core.document_store import InMemoryDocumentStore
from core.exceptions import (
    InsufficientStockError,
    PartialMigrationError,
    SnapshotNotFoundError,
    ValidationError,
)


# Fixtures

@pytest.fixture
def store():
    return InMemoryDocumentStore(max_batch_operations=5)


@pytest.fixture
def app(store):
    """App wired to the test store."""
    app = create_app("config.TestingConfig", store=store)
    return app


@pytest.fixture
def client(app):
    """Test client with the catalog seeded."""
    client = app.test_client()
    response = client.post("/api/materials", json={
        "category": "Cold Rolled",
        "materials": [
            {"name": "16GA-CRS", "thickness": 0.0598, "density": 0.2833},
            {"name": "14GA-CRS", "thickness": 0.0747, "density": 0.2833},
        ],
    })
    assert response.status_code == 201
    return client


def add_stock(client, qty96, job="PO-1", supplier="Ryerson", status="On Hand"):
    response = client.post("/api/inventory/group", json={"jobs": [{
        "jobName": job,
        "supplier": supplier,
        "status": status,
        "items": [{"materialType": "16GA-CRS", "costPerPound": 0.55, "qty96": qty96}],
    }]})
    assert response.status_code == 201
    return response.get_json()["unitIds"]


def use_stock(client, quantity, job="J-100"):
    return client.post("/api/logs/use", json={"jobs": [{
        "job": job,
        "customer": "ACME",
        "lines": [{"materialType": "16GA-CRS", "length": 96, "quantity": quantity}],
    }]})


class TestAppFactory:
    """create_app wiring and error mapping."""

    def test_health(self, client):
        """Health reports the store type and the disabled due-work thread."""
        response = client.get("/health")
        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "ok"
        assert data["store"] == "InMemoryDocumentStore"
        assert data["environment"] == "testing"
        assert data["dueWorkRunning"] is False
        assert data["time"].endswith("Z")

    def test_services_share_one_store(self, app, store):
        """Every service is built over the injected store."""
        assert app.config["DOCUMENT_STORE"] is store
        assert app.config["ALLOCATION_SERVICE"].store is store
        assert app.config["INVENTORY_SERVICE"].store is store
        assert app.config["SNAPSHOT_SERVICE"].chunk_size == 3
        assert app.config["DUE_WORK_SERVICE"] is None

    def test_store_built_from_config(self):
        """Without an injected store, TestingConfig yields an in-memory one."""
        app = create_app("config.TestingConfig")
        assert isinstance(app.config["DOCUMENT_STORE"], InMemoryDocumentStore)
        assert app.config["DOCUMENT_STORE"].max_batch_operations == 5

    def test_status_mapping(self):
        """Application errors map onto HTTP status codes."""
        assert status_for(ValidationError("bad")) == 400
        assert status_for(SnapshotNotFoundError("x")) == 404
        assert status_for(InsufficientStockError("16GA-CRS", 96, 5, 2)) == 409
        assert status_for(PartialMigrationError("restore", "x", "inventory", "write", OSError())) == 500

    def test_unknown_route_is_json(self, client):
        """Werkzeug errors are rendered as JSON too."""
        response = client.get("/api/nowhere")
        assert response.status_code == 404
        assert "error" in response.get_json()


class TestInventoryRoutes:
    """Materials, groups and corrections."""

    def test_materials_listed(self, client):
        """Seeded materials and their category are returned."""
        data = client.get("/api/materials").get_json()
        assert set(data["materials"]) == {"16GA-CRS", "14GA-CRS"}
        assert data["categories"] == ["Cold Rolled"]

    def test_single_material(self, client):
        """One material can be added on its own."""
        response = client.post("/api/materials", json={
            "key": "20GA-GALV", "category": "Galvanized", "thickness": 0.0359, "density": 0.2833,
        })
        assert response.status_code == 201
        assert "20GA-GALV" in response.get_json()["materials"]

    def test_group_text_is_sanitized(self, client):
        """HTML in free-text fields is stripped before storage."""
        add_stock(client, 2, job="<script>alert(1)</script>PO-9", supplier="<b>Ryerson</b>")
        units = client.get("/api/inventory").get_json()["units"]
        assert {u["supplier"] for u in units} == {"Ryerson"}
        assert all("<" not in u["job"] for u in units)

    def test_summary(self, client):
        """Summary splits on-hand and incoming counts."""
        add_stock(client, 3)
        add_stock(client, 2, status="Ordered")
        data = client.get("/api/inventory/summary").get_json()
        assert data["onHand"]["16GA-CRS"]["96"] == 3
        assert data["incoming"]["16GA-CRS"]["totalCount"] == 2
        assert data["costBySupplier"][0]["name"] == "Ryerson"
        assert data["analyticsByCategory"]["Cold Rolled"][0]["quantity"] == 5

    def test_receive_and_delete_group(self, client):
        """Ordered groups can be received and then deleted."""
        unit_ids = add_stock(client, 2, status="Ordered")
        response = client.post("/api/inventory/receive", json={"unitIds": unit_ids})
        assert sorted(response.get_json()["received"]) == sorted(unit_ids)

        response = client.delete("/api/inventory/group", json={"unitIds": unit_ids})
        assert response.status_code == 200
        assert response.get_json()["logId"]
        assert client.get("/api/inventory").get_json()["units"] == []

    def test_adjust_count(self, client):
        """Manual counts are corrected and logged."""
        add_stock(client, 1)
        response = client.post("/api/inventory/adjust", json={
            "materialType": "16GA-CRS", "length": 96, "count": 4,
        })
        assert response.status_code == 200
        assert response.get_json()["logId"]
        assert len(client.get("/api/inventory").get_json()["units"]) == 4

    def test_bad_unit_ids(self, client):
        """unitIds must be a list of strings."""
        response = client.post("/api/inventory/receive", json={"unitIds": "abc"})
        assert response.status_code == 400
        assert response.get_json()["details"]["field"] == "unitIds"


class TestLogRoutes:
    """Allocation and usage logs."""

    def test_malformed_lines_are_400(self, client):
        """A line that is not an object is a bad request, not a server error."""
        add_stock(client, 1)
        response = client.post("/api/logs/use", json={"jobs": [{"job": "J", "lines": ["16GA-CRS"]}]})
        assert response.status_code == 400

    def test_use_stock(self, client):
        """Allocation returns 201 with the consumed sheet ids."""
        unit_ids = add_stock(client, 4)
        response = use_stock(client, 3)
        assert response.status_code == 201
        data = response.get_json()
        assert data["totalDeleted"] == 3
        assert set(data["deletedUnitIds"]) <= set(unit_ids)
        logs = client.get("/api/logs").get_json()["logs"]
        assert logs[0]["qty"] == -3

    def test_insufficient_stock_is_conflict(self, client):
        """Short stock is a 409 naming the numbers; nothing is deleted."""
        add_stock(client, 2)
        response = use_stock(client, 5)
        assert response.status_code == 409
        details = response.get_json()["details"]
        assert details["material_type"] == "16GA-CRS"
        assert details["requested"] == 5
        assert details["available"] == 2
        assert len(client.get("/api/inventory").get_json()["units"]) == 2

    def test_missing_body_is_bad_request(self, client):
        """Allocation requires a JSON body."""
        response = client.post("/api/logs/use", data="x", content_type="text/plain")
        assert response.status_code == 400

    def test_schedule_and_fulfill(self, client):
        """Scheduled usage is fulfilled on request."""
        add_stock(client, 2)
        response = client.post("/api/logs/schedule", json={"jobs": [{
            "job": "J-200",
            "usedAt": "2099-01-01",
            "lines": [{"materialType": "16GA-CRS", "length": 96, "quantity": 2}],
        }]})
        assert response.status_code == 201
        [log_id] = response.get_json()["logIds"]

        assert client.get("/api/logs?status=Scheduled").get_json()["logs"][0]["id"] == log_id
        response = client.post(f"/api/logs/{log_id}/fulfill")
        assert response.get_json()["totalDeleted"] == 2

    def test_reverse_and_delete(self, client):
        """Reversal returns sheets; deleting a missing log is 404."""
        add_stock(client, 2)
        log_id = use_stock(client, 2).get_json()["logIds"][0]
        response = client.post(f"/api/logs/{log_id}/reverse")
        assert len(response.get_json()["unitIds"]) == 2
        assert client.delete(f"/api/logs/{log_id}").status_code == 404


class TestLedgerRoutes:
    """Ledger JSON and CSV."""

    def test_ledger_rows(self, client):
        """One addition row for what is left and one removal row for what was used."""
        add_stock(client, 3)
        use_stock(client, 1)
        data = client.get("/api/ledger/16GA-CRS").get_json()
        assert data["materialType"] == "16GA-CRS"
        removals = [row for row in data["rows"] if not row["isAddition"]]
        additions = [row for row in data["rows"] if row["isAddition"]]
        assert len(removals) == 1 and len(additions) == 1
        assert removals[0]["96"] == -1
        assert additions[0]["96"] == 2

    def test_ledger_csv(self, client):
        """The CSV is served as an attachment."""
        add_stock(client, 1)
        response = client.get("/api/ledger/16GA-CRS/csv")
        assert response.mimetype == "text/csv"
        assert "attachment" in response.headers["Content-Disposition"]
        assert response.get_data(as_text=True).startswith("Date,Job")

    def test_category_ledgers(self, client):
        """Every material of the category gets a ledger."""
        data = client.get("/api/ledger/category/Cold%20Rolled").get_json()
        assert set(data["ledgers"]) == {"16GA-CRS", "14GA-CRS"}


class TestBackupRoutes:
    """Snapshots, restore and export/import."""

    def test_backup_restore_cycle(self, client):
        """A restore undoes changes made after the backup."""
        add_stock(client, 4)
        response = client.post("/api/backups", json={})
        assert response.status_code == 201
        snapshot_id = response.get_json()["snapshotId"]

        use_stock(client, 4)
        assert client.get("/api/inventory").get_json()["units"] == []

        response = client.post(f"/api/backups/{snapshot_id}/restore")
        assert response.status_code == 200
        body = response.get_json()
        assert body["restored"]["inventory"] == 4
        assert body["progress"][-1]["overallPercent"] == 100.0
        assert len(client.get("/api/inventory").get_json()["units"]) == 4

        listing = client.get("/api/backups").get_json()
        assert listing["snapshots"][0]["id"] == snapshot_id
        assert listing["latest"]["id"] == snapshot_id

    def test_restore_unknown_snapshot(self, client):
        """Unknown snapshots are 404."""
        response = client.post("/api/backups/2020-01-01T00-00-00/restore")
        assert response.status_code == 404

    def test_malformed_snapshot_id_is_400(self, client):
        """Restore ids must be in the snapshot id format."""
        response = client.post("/api/backups/latest/restore")
        assert response.status_code == 400

    def test_empty_collection_list_rejected(self, client):
        """An explicit empty list is not widened to the defaults."""
        response = client.post("/api/backups", json={"collections": []})
        assert response.status_code == 400

    def test_reserved_collection_rejected(self, client):
        """Snapshot bookkeeping collections cannot be backed up."""
        response = client.post("/api/backups", json={"collections": ["backups"]})
        assert response.status_code == 400

    def test_export_import(self, client):
        """An export can be imported back with replace."""
        add_stock(client, 2)
        response = client.get("/api/backups/export?collections=inventory")
        assert "attachment" in response.headers["Content-Disposition"]
        payload = response.get_json()
        assert len(payload["data"]["inventory"]) == 2

        use_stock(client, 2)
        response = client.post("/api/backups/import?replace=1", json=payload)
        assert response.status_code == 200
        assert response.get_json()["restored"] == {"inventory": 2}
        assert len(client.get("/api/inventory").get_json()["units"]) == 2

    def test_backfill(self, client):
        """Backfill on a consistent index creates nothing."""
        client.post("/api/backups", json={})
        data = client.post("/api/backups/backfill").get_json()
        assert data["created"] == []
        assert data["latestSet"] is False


class TestMaintenanceRoutes:
    """Repair tasks."""

    def test_unknown_task(self, client):
        """Unknown tasks are 404."""
        assert client.post("/api/maintenance/defrag").status_code == 404

    def test_rebuild_catalog(self, client, store):
        """Orphaned materials get catalog entries."""
        store.set("inventory", "u1", {"materialType": "20GA-GALV", "length": 96, "status": "On Hand"})
        data = client.post("/api/maintenance/rebuild-catalog").get_json()
        assert data["task"] == "rebuild-catalog"
        assert data["result"]["keys"] == ["20GA-GALV"]

    def test_due_work_inline(self, client):
        """With no background thread, due work runs in the request."""
        add_stock(client, 1, status="Ordered")
        store_units = client.get("/api/inventory").get_json()["units"]
        assert store_units[0]["status"] == "Ordered"
        data = client.post("/api/maintenance/due-work").get_json()
        # No arrival date, so nothing is due
        assert data["result"] == {"received": [], "fulfilled": [], "skipped": []}

    def test_rename_material(self, client):
        """Renames go through the repair service."""
        response = client.post("/api/maintenance/rename-material", json={
            "oldKey": "14GA-CRS", "newKey": "14GA-CR",
        })
        assert response.status_code == 200
        assert response.get_json()["result"]["materialsDeleted"] == 1
