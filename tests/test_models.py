"""
Unit tests for the data models and timestamp helpers.
"""

import pytest
from datetime import datetime, timezone

from core.exceptions import ValidationError
from models.allocation import AllocationRequest, parse_quantity
from models.inventory import (
    InventoryUnit,
    MaterialCatalogEntry,
    UnitStatus,
    gauge_from_material,
    sheet_cost,
    sheet_weight,
    thickness_from_material,
)
from models.ledger import LedgerRow, length_key
from models.snapshot import (
    RestorePhase,
    RestoreProgress,
    generate_snapshot_id,
    is_snapshot_id,
    snapshot_id_to_datetime,
)
from models.timestamps import parse_timestamp, to_date_string, to_iso
from models.usage_log import LogKind, LogStatus, UsageLogEntry, detail_from_unit


class TestTimestamps:
    """Canonical UTC strings."""

    def test_to_iso_has_millis_and_z(self):
        """Stored timestamps end in .mmmZ."""
        dt = datetime(2024, 3, 1, 14, 5, 9, 120000, tzinfo=timezone.utc)
        assert to_iso(dt) == "2024-03-01T14:05:09.120Z"

    def test_naive_datetime_treated_as_utc(self):
        """A naive datetime is assumed to already be UTC."""
        assert to_iso(datetime(2024, 3, 1)) == "2024-03-01T00:00:00.000Z"

    def test_parse_accepts_z_offsets_and_dates(self):
        """All stored variants parse to the same aware datetime."""
        expected = datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert parse_timestamp("2024-03-01T00:00:00.000Z") == expected
        assert parse_timestamp("2024-03-01T01:00:00+01:00") == expected
        assert parse_timestamp("2024-03-01") == expected

    def test_parse_garbage_returns_none(self):
        """Unparseable and empty values are None."""
        assert parse_timestamp("soon") is None
        assert parse_timestamp("") is None
        assert parse_timestamp(None) is None

    def test_date_string(self):
        """Date strings use the UTC calendar date."""
        assert to_date_string(datetime(2024, 3, 1, 23, 0, tzinfo=timezone.utc)) == "2024-03-01"


class TestInventoryModels:
    """Sheets and the material catalog."""

    def test_status_parse_variants(self):
        """Spacing, underscores and case are ignored."""
        assert UnitStatus.parse("On Hand") is UnitStatus.ON_HAND
        assert UnitStatus.parse("on_hand") is UnitStatus.ON_HAND
        assert UnitStatus.parse("ORDERED") is UnitStatus.ORDERED

    def test_status_parse_unknown(self):
        """Unknown statuses are validation errors."""
        with pytest.raises(ValidationError):
            UnitStatus.parse("Lost")

    def test_gauge_from_material(self):
        """Gauge keys and decimal keys both produce a display gauge."""
        assert gauge_from_material("16GA-CRS") == "16"
        assert gauge_from_material("ALUM 0.040") == '0.040"'
        assert gauge_from_material("Mystery") == "N/A"

    def test_thickness_from_material(self):
        """Thickness comes from the gauge table or the decimal in the key."""
        assert thickness_from_material("16GA-CRS") == 0.0598
        assert thickness_from_material("ALUM 0.040") == 0.04
        assert thickness_from_material("Mystery") == 0.0

    def test_unit_round_trip_keeps_unknown_fields(self):
        """Fields the model does not know survive from_dict/to_dict."""
        data = {
            "materialType": "16GA-CRS",
            "length": 96,
            "status": "On Hand",
            "createdAt": "2024-01-01T00:00:00.000Z",
            "supplier": "Ryerson",
            "heatNumber": "H-77",
            "__v": 0,
        }
        unit = InventoryUnit.from_dict(data, doc_id="u1")
        assert unit.id == "u1"
        assert unit.gauge == "16"
        result = unit.to_dict(include_id=True)
        assert result["heatNumber"] == "H-77"
        assert "__v" not in result
        assert result["id"] == "u1"

    def test_correction_units(self):
        """Manual-edit and returned sheets are corrections."""
        manual = InventoryUnit("16GA-CRS", 96, UnitStatus.ON_HAND, "", supplier="Manual Edit")
        returned = InventoryUnit("16GA-CRS", 96, UnitStatus.ON_HAND, "", supplier="Rescheduled Return")
        legacy = InventoryUnit("16GA-CRS", 96, UnitStatus.ON_HAND, "", job="MODIFICATION: count")
        real = InventoryUnit("16GA-CRS", 96, UnitStatus.ON_HAND, "", supplier="Ryerson", job="J-1")
        assert manual.is_correction and returned.is_correction and legacy.is_correction
        assert not real.is_correction

    def test_sheet_weight_and_cost(self):
        """Weight is width x length x thickness x density."""
        material = MaterialCatalogEntry("16GA-CRS", "Cold Rolled", 0.06, 0.28)
        unit = InventoryUnit("16GA-CRS", 100, UnitStatus.ON_HAND, "", width=50, cost_per_pound=2.0)
        assert sheet_weight(unit, material) == pytest.approx(50 * 100 * 0.06 * 0.28)
        assert sheet_cost(unit, material) == pytest.approx(50 * 100 * 0.06 * 0.28 * 2.0)
        assert sheet_cost(unit, None) == 0.0

    def test_unknown_stored_status_round_trips(self):
        """An unrecognised status is kept, and the sheet is not counted as on hand."""
        unit = InventoryUnit.from_dict({"materialType": "16GA-CRS", "length": 96, "status": "Reserved"})
        assert unit.status is UnitStatus.ON_HAND
        assert not unit.is_on_hand
        assert unit.to_dict()["status"] == "Reserved"

    def test_malformed_numbers_default(self):
        """Bad stored numbers fall back to defaults instead of raising."""
        unit = InventoryUnit.from_dict({
            "materialType": "16GA-CRS", "length": "long", "width": "wide", "costPerPound": "cheap",
        })
        assert (unit.length, unit.width, unit.cost_per_pound) == (0, 48, 0.0)
        assert InventoryUnit.from_dict({"length": "96"}).length == 96


class TestUsageLogModels:
    """Usage log classification and shape."""

    def test_explicit_kind_wins(self):
        """A stored kind overrides the job prefix."""
        assert LogKind.classify("usage", "MODIFICATION: x") is LogKind.USAGE

    def test_legacy_prefixes(self):
        """Old documents are classified from their job prefix."""
        assert LogKind.classify(None, "MODIFICATION: 16GA") is LogKind.CORRECTION
        assert LogKind.classify(None, "DELETION: Ryerson") is LogKind.GROUP_DELETION
        assert LogKind.classify(None, "J-100") is LogKind.USAGE

    def test_empty_status_is_completed(self):
        """Logs without a status are completed usage."""
        assert LogStatus.parse("") is LogStatus.COMPLETED
        assert LogStatus.parse("scheduled") is LogStatus.SCHEDULED

    def test_detail_from_unit(self):
        """Details strip store fields and point back at the sheet."""
        detail = detail_from_unit("u1", {"materialType": "16GA-CRS", "length": 96, "_id": "x"})
        assert detail == {"materialType": "16GA-CRS", "length": 96, "qty": 1, "originalId": "u1"}

    def test_reversal_flag(self):
        """Non-negative corrections are reversals; usage never is."""
        log = UsageLogEntry.from_dict({"job": "MODIFICATION: x", "qty": 3})
        assert log.kind is LogKind.CORRECTION
        assert log.is_reversal
        usage = UsageLogEntry.from_dict({"job": "J-1", "qty": -3})
        assert not usage.is_reversal

    def test_to_dict_writes_kind(self):
        """Serialized logs carry the explicit kind."""
        log = UsageLogEntry("J-1", "ACME", "u", "c", -2)
        assert log.to_dict()["kind"] == "usage"
        assert log.to_dict()["status"] == "Completed"

    def test_archived_status(self):
        """Archived logs parse and are flagged."""
        log = UsageLogEntry.from_dict({"job": "J-1", "qty": -1, "status": "Archived"})
        assert log.status is LogStatus.ARCHIVED
        assert log.is_archived

    def test_unknown_stored_status_round_trips(self):
        """An unrecognised status reads as completed and is written back unchanged."""
        log = UsageLogEntry.from_dict({"job": "J-1", "qty": "-2", "status": "Voided"})
        assert log.status is LogStatus.COMPLETED
        assert log.qty == -2
        assert log.to_dict()["status"] == "Voided"
        with pytest.raises(ValidationError):
            LogStatus.parse("Voided")


class TestAllocationRequest:
    """Request parsing and quantity validation."""

    def test_parse_quantity(self):
        """Whole positive numbers only (zero when allowed)."""
        assert parse_quantity("3", "quantity") == 3
        assert parse_quantity(0, "qty96", allow_zero=True) == 0
        for bad in (0, -1, 2.5, True, "x", None):
            with pytest.raises(ValidationError):
                parse_quantity(bad, "quantity")

    def test_lines_shape(self):
        """Explicit lines parse into AllocationLines."""
        request = AllocationRequest.from_dict({"jobs": [{
            "job": "J-100", "customer": "ACME",
            "lines": [{"materialType": "16GA-CRS", "length": 96, "quantity": 4}],
        }]})
        assert request.total_quantity == 4
        assert request.jobs[0].lines[0].key == ("16GA-CRS", 96)

    def test_items_shape_skips_blanks(self):
        """Order-form items expand per standard length, blanks and zeros skipped."""
        request = AllocationRequest.from_dict({"jobs": [{
            "jobName": "J-100",
            "items": [{"materialType": "16GA-CRS", "qty96": 4, "qty120": "", "qty144": 0}],
        }]})
        job = request.jobs[0]
        assert job.job == "J-100"
        assert [(line.length, line.quantity) for line in job.lines] == [(96, 4)]

    def test_job_without_quantities_rejected(self):
        """A job with nothing to allocate is invalid."""
        with pytest.raises(ValidationError):
            AllocationRequest.from_dict({"jobs": [{"job": "J", "items": [{"materialType": "X"}]}]})

    def test_missing_jobs_rejected(self):
        """Requests need a non-empty jobs list."""
        with pytest.raises(ValidationError):
            AllocationRequest.from_dict({"jobs": []})

    @pytest.mark.parametrize("job", [
        {"job": "J", "lines": ["16GA-CRS"]},
        {"job": "J", "lines": {"materialType": "16GA-CRS", "length": 96, "quantity": 1}},
        {"job": "J", "items": ["16GA-CRS"]},
        {"job": "J", "items": "16GA-CRS"},
    ])
    def test_malformed_lines_rejected(self, job):
        """Lines and items must be lists of objects."""
        with pytest.raises(ValidationError):
            AllocationRequest.from_dict({"jobs": [job]})


class TestLedgerAndSnapshotModels:
    """Ledger rows and snapshot ids."""

    def test_length_key(self):
        """Non-standard lengths land in the custom column."""
        assert length_key(96) == "96"
        assert length_key("144") == "144"
        assert length_key(100) == "custom"
        assert length_key(None) == "custom"

    def test_row_flattens_counts(self):
        """Count columns sit at the top level of the dict."""
        row = LedgerRow(id="g", job="J", customer="", date=None, is_addition=True, is_future=False)
        row.counts["96"] = 3
        row.counts["custom"] = 1
        data = row.to_dict()
        assert data["96"] == 3
        assert data["custom"] == 1
        assert data["total"] == 4

    def test_snapshot_id_round_trip(self):
        """Snapshot ids encode the UTC creation second."""
        dt = datetime(2024, 5, 6, 7, 8, 9, tzinfo=timezone.utc)
        snapshot_id = generate_snapshot_id(dt)
        assert snapshot_id == "2024-05-06T07-08-09"
        assert is_snapshot_id(snapshot_id)
        assert snapshot_id_to_datetime(snapshot_id) == dt
        assert snapshot_id_to_datetime("nope") is None

    def test_overall_percent(self):
        """Overall progress spreads evenly across collections."""
        progress = RestoreProgress("inventory", 1, 2, RestorePhase.WRITE_PROGRESS, 5, 10, 50.0)
        assert progress.overall_percent == 75.0
        assert progress.to_dict()["phase"] == "write-progress"
