"""
Inventory mutations outside of allocation.

Covers the material catalog, order groups (one unit document per physical
sheet), receiving, group deletion, manual count corrections and usage
reversal.

Write Strategy:
    Every multi-document mutation is collected into a list of operations
    first and committed through write_in_chunks(). When the operations fit
    under the store's batch ceiling this is one atomic batch; larger
    mutations are chunked and logged at WARNING.

Provenance:
    Synthetic documents written here are tagged explicitly:
    - Correction units: supplier "Manual Edit" / "Rescheduled Return",
      job prefixed MODIFICATION
    - Correction logs: kind=correction
    - Group deletion logs: kind=group_deletion, job prefixed DELETION
    The prefixes are still written so older readers classify them the same.

Usage:
    service = InventoryService(store)
    unit_ids = service.add_order_group([{
        "jobName": "J-100", "supplier": "Acme Steel", "status": "Ordered",
        "arrivalDate": "2025-04-01",
        "items": [{"materialType": "16GA-CRS", "qty96": 10, "costPerPound": 0.55}],
    }])
    service.receive_group(unit_ids)
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from core import collections as coll
from core.document_store import Document, DocumentStore, write_in_chunks
from core.exceptions import NotFoundError, ValidationError
from models.allocation import parse_quantity
from models.inventory import (
    CORRECTION_JOB_PREFIX,
    DEFAULT_WIDTH,
    DELETION_JOB_PREFIX,
    STANDARD_LENGTHS,
    SUPPLIER_MANUAL_EDIT,
    SUPPLIER_RESCHEDULED_RETURN,
    InventoryUnit,
    MaterialCatalogEntry,
    UnitStatus,
    gauge_from_material,
)
from models.timestamps import Clock, parse_timestamp, to_date_string, to_iso, utc_now
from models.usage_log import LogKind, LogStatus, UsageLogEntry, detail_from_unit
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)


def _non_negative_float(value: Any, field_name: str) -> float:
    if value in (None, ""):
        return 0.0
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a number", field_name)
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field_name} must be a number, got {value!r}", field_name)
    if number < 0:
        raise ValidationError(f"{field_name} cannot be negative, got {number}", field_name)
    return number


class InventoryService:
    """
    Catalog and stock maintenance against the injected store.

    Attributes:
        store: Document store handle shared with the other services
    """

    def __init__(self, store: DocumentStore, clock: Optional[Clock] = None):
        """
        Initialize inventory service.

        Args:
            store: Document store shared with the other services
            clock: Returns the current aware datetime (for tests)
        """
        self._store = store
        self._clock = clock or utc_now

    @property
    def store(self) -> DocumentStore:
        return self._store

    # =========================================================================
    # MATERIAL CATALOG
    # =========================================================================

    def add_material(
        self,
        key: str,
        category: str,
        thickness: Any,
        density: Any,
    ) -> MaterialCatalogEntry:
        """
        Create or replace one catalog entry.

        Slashes in the key are replaced with '-' since keys are document ids.

        Raises:
            ValidationError: Empty key/category or negative/non-numeric values
        """
        entry = self._catalog_entry(key, category, thickness, density)
        self._store.set(coll.MATERIALS, entry.key, entry.to_dict())
        logger.info(f"Material saved: {entry.key} ({entry.category})")
        return entry

    def add_category(self, category: str, materials: List[Dict[str, Any]]) -> List[MaterialCatalogEntry]:
        """Create a category together with its materials in one write."""
        if not isinstance(materials, list) or not materials:
            raise ValidationError("A category needs at least one material", "materials")
        entries = [
            self._catalog_entry(m.get("name") or m.get("key"), category, m.get("thickness"), m.get("density"))
            for m in materials
        ]
        self._write([("set", coll.MATERIALS, e.key, e.to_dict()) for e in entries])
        logger.info(f"Category '{category}' saved with {len(entries)} material(s)")
        return entries

    def list_materials(self) -> List[MaterialCatalogEntry]:
        return [
            MaterialCatalogEntry.from_dict(doc.id, doc.data)
            for doc in self._store.list_documents(coll.MATERIALS)
        ]

    def categories(self) -> List[str]:
        return sorted({m.category for m in self.list_materials() if m.category})

    @staticmethod
    def _catalog_entry(key: Any, category: Any, thickness: Any, density: Any) -> MaterialCatalogEntry:
        key = str(key or "").strip().replace("/", "-")
        category = str(category or "").strip()
        if not key:
            raise ValidationError("Material key is required", "key")
        if not category:
            raise ValidationError("Category is required", "category")
        return MaterialCatalogEntry(
            key=key,
            category=category,
            thickness=_non_negative_float(thickness, "thickness"),
            density=_non_negative_float(density, "density"),
        )

    # =========================================================================
    # ORDER GROUPS
    # =========================================================================

    def add_order_group(self, jobs: List[Dict[str, Any]]) -> List[str]:
        """
        Create one unit document per physical sheet.

        Every unit created by one call shares a createdAt, which is what
        groups them into one ledger addition.

        Args:
            jobs: [{jobName, supplier, status, arrivalDate, items: [
                   {materialType, costPerPound, width, qty96, qty120, qty144,
                    customLength, qtyCustom}]}]

        Returns:
            Ids of the created units

        Raises:
            ValidationError: Unknown material, negative cost, bad quantities
        """
        now = self._clock()
        units = self._build_group_units(jobs, to_iso(now), now)
        operations = []
        unit_ids = []
        for unit in units:
            unit_id = self._store.new_id()
            unit_ids.append(unit_id)
            operations.append(("set", coll.INVENTORY, unit_id, unit.to_dict()))
        self._write(operations)

        logger.info(f"Order group added: {len(unit_ids)} sheet(s) in {len(jobs)} job(s)")
        return unit_ids

    def edit_order_group(self, unit_ids: List[str], jobs: List[Dict[str, Any]]) -> List[str]:
        """
        Replace an existing order group, keeping its original createdAt.

        The old units are deleted and the new ones created in the same write,
        so the group keeps its place in FIFO order.
        """
        old_docs = self._load_units(unit_ids)
        created_at = min(doc.data.get("createdAt") or "" for doc in old_docs) or to_iso(self._clock())
        units = self._build_group_units(jobs, created_at, self._clock())

        operations = [("delete", coll.INVENTORY, doc.id, None) for doc in old_docs]
        new_ids = []
        for unit in units:
            unit_id = self._store.new_id()
            new_ids.append(unit_id)
            operations.append(("set", coll.INVENTORY, unit_id, unit.to_dict()))
        self._write(operations)

        logger.info(f"Order group edited: {len(old_docs)} sheet(s) replaced by {len(new_ids)}")
        return new_ids

    def receive_group(self, unit_ids: List[str]) -> List[str]:
        """
        Move Ordered units to On Hand and stamp dateReceived.

        Units already On Hand are left as they are.

        Returns:
            Ids of the units that changed status
        """
        docs = self._load_units(unit_ids)
        received_on = to_date_string(self._clock())
        operations = []
        for doc in docs:
            if UnitStatus.from_stored(doc.data.get("status")) != UnitStatus.ORDERED:
                continue
            operations.append(("update", coll.INVENTORY, doc.id, {
                "status": UnitStatus.ON_HAND.value,
                "dateReceived": received_on,
            }))
        self._write(operations)

        if operations:
            logger.info(f"Received {len(operations)} sheet(s)")
        return [op[2] for op in operations]

    def auto_receive_due(self, now: Optional[datetime] = None) -> List[str]:
        """Receive every Ordered unit whose arrivalDate has passed."""
        now = now or self._clock()
        due = []
        for doc in self._store.query(coll.INVENTORY, {"status": UnitStatus.ORDERED.value}):
            arrival = parse_timestamp(doc.data.get("arrivalDate"))
            if arrival is not None and arrival <= now:
                due.append(doc.id)
        if not due:
            return []
        return self.receive_group(due)

    def delete_group(self, unit_ids: List[str], record_log: bool = True) -> Optional[str]:
        """
        Delete an order group.

        Args:
            unit_ids: Units of the group
            record_log: Write a group_deletion audit log with unit snapshots

        Returns:
            Id of the audit log, or None when record_log is False

        Raises:
            NotFoundError: One of the units does not exist (nothing deleted)
        """
        docs = self._load_units(unit_ids)
        operations = [("delete", coll.INVENTORY, doc.id, None) for doc in docs]

        log_id = None
        if record_log:
            first = docs[0].data
            label = first.get("job") or first.get("supplier") or "stock"
            now_iso = to_iso(self._clock())
            log = UsageLogEntry(
                job=f"{DELETION_JOB_PREFIX}: {label}",
                customer=first.get("supplier") or "",
                used_at=now_iso,
                created_at=now_iso,
                qty=-len(docs),
                details=[detail_from_unit(doc.id, doc.data) for doc in docs],
                status=LogStatus.COMPLETED,
                kind=LogKind.GROUP_DELETION,
            )
            log_id = self._store.new_id()
            operations.append(("set", coll.USAGE_LOGS, log_id, log.to_dict()))

        self._write(operations)
        logger.info(f"Deleted order group of {len(docs)} sheet(s)")
        return log_id

    # =========================================================================
    # CORRECTIONS
    # =========================================================================

    def set_on_hand_count(self, material_type: str, length: Any, count: Any) -> Optional[str]:
        """
        Correct the on-hand count of one material/length to `count`.

        Missing sheets are added as "Manual Edit" units; surplus sheets are
        removed oldest first. Either way one correction log records the
        signed difference.

        Returns:
            Id of the correction log, or None when the count already matches
        """
        length = parse_quantity(length, "length")
        count = parse_quantity(count, "count", allow_zero=True)
        if material_type not in self._known_materials():
            raise ValidationError(f"Unknown material: {material_type}", "materialType")

        on_hand = self._store.query(
            coll.INVENTORY,
            {"materialType": material_type, "length": length, "status": UnitStatus.ON_HAND.value},
            order_by="createdAt",
        )
        delta = count - len(on_hand)
        if delta == 0:
            return None

        now = self._clock()
        now_iso = to_iso(now)
        operations = []
        details = []

        if delta > 0:
            for _ in range(delta):
                unit = InventoryUnit(
                    material_type=material_type,
                    length=length,
                    status=UnitStatus.ON_HAND,
                    created_at=now_iso,
                    supplier=SUPPLIER_MANUAL_EDIT,
                    gauge=gauge_from_material(material_type),
                    job=f"{CORRECTION_JOB_PREFIX}: manual count",
                    date_received=to_date_string(now),
                )
                unit_id = self._store.new_id()
                operations.append(("set", coll.INVENTORY, unit_id, unit.to_dict()))
                details.append(detail_from_unit(unit_id, unit.to_dict()))
        else:
            for doc in on_hand[:-delta]:
                operations.append(("delete", coll.INVENTORY, doc.id, None))
                details.append(detail_from_unit(doc.id, doc.data))

        log = UsageLogEntry(
            job=f"{CORRECTION_JOB_PREFIX}: {material_type} {length}\" set to {count}",
            customer=SUPPLIER_MANUAL_EDIT,
            used_at=now_iso,
            created_at=now_iso,
            qty=delta,
            details=details,
            status=LogStatus.COMPLETED,
            kind=LogKind.CORRECTION,
        )
        log_id = self._store.new_id()
        operations.append(("set", coll.USAGE_LOGS, log_id, log.to_dict()))
        self._write(operations)

        logger.info(f"On-hand count of {material_type} @ {length}\" corrected by {delta:+d} to {count}")
        return log_id

    def reverse_usage(self, log_id: str, reschedule_to: Optional[str] = None) -> List[str]:
        """
        Put the sheets of a completed usage log back into stock.

        Returned sheets keep their original createdAt, so they return to
        their old FIFO position. They are marked "Rescheduled Return" and
        remember the original supplier under originalSupplier.

        Args:
            log_id: Completed usage log to reverse
            reschedule_to: When given, the log becomes a Scheduled log for
                this date instead of being deleted

        Returns:
            Ids of the units put back

        Raises:
            NotFoundError: No such log
            ValidationError: Log is scheduled, not a usage log, or bad date
        """
        doc = self._store.get(coll.USAGE_LOGS, log_id)
        if doc is None:
            raise NotFoundError(coll.USAGE_LOGS, log_id)
        log = UsageLogEntry.from_dict(doc.data, doc.id)
        if log.is_scheduled:
            raise ValidationError(f"Log {log_id} is scheduled; nothing to reverse", "status")
        if log.kind != LogKind.USAGE:
            raise ValidationError(f"Log {log_id} is a {log.kind.value} log and cannot be reversed", "kind")

        scheduled_for = None
        if reschedule_to:
            parsed = parse_timestamp(reschedule_to)
            if parsed is None:
                raise ValidationError(f"Invalid reschedule date: {reschedule_to!r}", "usedAt")
            scheduled_for = to_iso(parsed)

        now = self._clock()
        operations = []
        unit_ids = []
        placeholders = []
        for detail in log.details:
            unit_data = {k: v for k, v in detail.items() if k not in ("qty", "originalId")}
            unit_data["originalSupplier"] = detail.get("supplier") or ""
            unit_data["supplier"] = SUPPLIER_RESCHEDULED_RETURN
            unit_data["status"] = UnitStatus.ON_HAND.value
            unit_data["createdAt"] = detail.get("createdAt") or to_iso(now)
            unit_data["dateReceived"] = detail.get("dateReceived") or to_date_string(now)
            unit_data.setdefault("width", DEFAULT_WIDTH)

            original_id = detail.get("originalId")
            if (
                original_id
                and "/" not in str(original_id)
                and original_id not in unit_ids
                and self._store.get(coll.INVENTORY, original_id) is None
            ):
                unit_id = original_id
            else:
                unit_id = self._store.new_id()
            unit_ids.append(unit_id)
            operations.append(("set", coll.INVENTORY, unit_id, unit_data))
            placeholders.append({
                "materialType": detail.get("materialType"),
                "length": detail.get("length"),
                "qty": 1,
            })

        if scheduled_for:
            operations.append(("update", coll.USAGE_LOGS, log_id, {
                "status": LogStatus.SCHEDULED.value,
                "usedAt": scheduled_for,
                "details": placeholders,
                "qty": -len(placeholders),
            }))
        else:
            operations.append(("delete", coll.USAGE_LOGS, log_id, None))
        self._write(operations)

        action = f"rescheduled to {scheduled_for}" if scheduled_for else "deleted"
        logger.info(f"Reversed usage log {log_id}: {len(unit_ids)} sheet(s) returned, log {action}")
        return unit_ids

    # =========================================================================
    # READS / LOG MAINTENANCE
    # =========================================================================

    def delete_log(self, log_id: str) -> None:
        """Delete one usage log. Stock is not touched."""
        if self._store.get(coll.USAGE_LOGS, log_id) is None:
            raise NotFoundError(coll.USAGE_LOGS, log_id)
        self._store.delete(coll.USAGE_LOGS, log_id)
        logger.info(f"Usage log deleted: {log_id}")

    def list_units(
        self,
        material_type: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[InventoryUnit]:
        """Units ordered oldest first (FIFO order), optionally filtered."""
        filters: Dict[str, Any] = {}
        if material_type:
            filters["materialType"] = material_type
        if status:
            filters["status"] = UnitStatus.parse(status).value
        return [
            InventoryUnit.from_dict(doc.data, doc.id)
            for doc in self._store.query(coll.INVENTORY, filters, order_by="createdAt")
        ]

    def list_logs(self, status: Optional[str] = None) -> List[UsageLogEntry]:
        """Usage logs, newest first."""
        filters = {"status": LogStatus.parse(status).value} if status else None
        return [
            UsageLogEntry.from_dict(doc.data, doc.id)
            for doc in self._store.query(coll.USAGE_LOGS, filters, order_by="createdAt", descending=True)
        ]

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _known_materials(self) -> set:
        return {doc.id for doc in self._store.list_documents(coll.MATERIALS)}

    def _load_units(self, unit_ids: List[str]) -> List[Document]:
        if not isinstance(unit_ids, list) or not unit_ids:
            raise ValidationError("At least one unit id is required", "unitIds")
        docs = []
        for unit_id in dict.fromkeys(unit_ids):
            doc = self._store.get(coll.INVENTORY, unit_id)
            if doc is None:
                raise NotFoundError(coll.INVENTORY, unit_id)
            docs.append(doc)
        return docs

    def _build_group_units(
        self,
        jobs: List[Dict[str, Any]],
        created_at: str,
        now: datetime,
    ) -> List[InventoryUnit]:
        if not isinstance(jobs, list) or not jobs:
            raise ValidationError("At least one job is required", "jobs")
        known = self._known_materials()
        units: List[InventoryUnit] = []

        for job in jobs:
            if not isinstance(job, dict):
                raise ValidationError("Each job must be an object", "jobs")
            status = UnitStatus.parse(job.get("status") or UnitStatus.ON_HAND.value)
            supplier = str(job.get("supplier") or "").strip()
            if not supplier:
                raise ValidationError("supplier is required", "supplier")
            job_name = str(job.get("jobName", job.get("job")) or "").strip() or None

            arrival_date = None
            date_received = None
            if status == UnitStatus.ORDERED:
                raw_arrival = job.get("arrivalDate")
                parsed = parse_timestamp(raw_arrival) if raw_arrival else None
                if raw_arrival and parsed is None:
                    raise ValidationError(f"Invalid arrivalDate: {raw_arrival!r}", "arrivalDate")
                arrival_date = to_iso(parsed) if parsed else None
            else:
                date_received = to_date_string(now)

            items = job.get("items")
            if not isinstance(items, list) or not items:
                raise ValidationError("Each job needs at least one item", "items")

            for item in items:
                if not isinstance(item, dict):
                    raise ValidationError("Each item must be an object", "items")
                material_type = str(item.get("materialType") or "").strip()
                if material_type not in known:
                    raise ValidationError(f"Unknown material: {material_type}", "materialType")
                cost = _non_negative_float(item.get("costPerPound"), "costPerPound")
                width = parse_quantity(item.get("width") or DEFAULT_WIDTH, "width")

                for length, quantity in self._item_lengths(item):
                    for _ in range(quantity):
                        units.append(InventoryUnit(
                            material_type=material_type,
                            length=length,
                            status=status,
                            created_at=created_at,
                            supplier=supplier,
                            gauge=gauge_from_material(material_type),
                            cost_per_pound=cost,
                            width=width,
                            job=job_name,
                            arrival_date=arrival_date,
                            date_received=date_received,
                        ))

        if not units:
            raise ValidationError("Order group has no sheets", "items")
        return units

    @staticmethod
    def _item_lengths(item: Dict[str, Any]) -> List[tuple]:
        lengths = []
        for length in STANDARD_LENGTHS:
            raw = item.get(f"qty{length}")
            if raw in (None, ""):
                continue
            quantity = parse_quantity(raw, f"qty{length}", allow_zero=True)
            if quantity:
                lengths.append((length, quantity))

        if item.get("customLength") not in (None, ""):
            custom_length = parse_quantity(item["customLength"], "customLength")
            quantity = parse_quantity(item.get("qtyCustom") or 0, "qtyCustom", allow_zero=True)
            if quantity:
                lengths.append((custom_length, quantity))
        return lengths

    def _write(self, operations: list) -> None:
        if not operations:
            return
        if len(operations) > self._store.max_batch_operations:
            logger.warning(
                f"Inventory change needs {len(operations)} writes, above the batch limit of "
                f"{self._store.max_batch_operations}; committing in chunks"
            )
        write_in_chunks(self._store, operations)
