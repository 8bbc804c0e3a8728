"""
Transaction ledger reconciliation and inventory read models.

The ledger for a material merges two independent event streams into one
newest-first list of LedgerRows:

    Additions - sheets still in the inventory collection, grouped by
                (createdAt, job or "stock", supplier). Correction sheets
                (job prefixed MODIFICATION, or supplier "Manual Edit" /
                "Rescheduled Return") are left out so they never
                double-count as arrivals.
    Removals  - usage logs whose details mention the material, one row per
                log. Non-negative corrections (reversals) are left out.

Ordering:
    Descending by effective date: arrivalDate (else createdAt) for
    additions, usedAt (else createdAt) for removals. Future arrivals and
    back-dated usage therefore interleave by the date that matters to the
    reader, not by insertion time.

build_ledger() is a pure function. LedgerService re-reads the store on
every call; nothing here is cached.
"""

from __future__ import annotations

import csv
import io
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from core import collections as coll
from core.document_store import DocumentStore
from models.inventory import (
    InventoryUnit,
    MaterialCatalogEntry,
    STANDARD_LENGTHS,
    UnitStatus,
    coerce_int,
    sheet_cost,
)
from models.ledger import CUSTOM_LENGTH_KEY, LedgerRow, empty_counts, length_key
from models.timestamps import parse_timestamp
from models.usage_log import UsageLogEntry
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)

UnitLike = Union[InventoryUnit, Dict[str, Any]]
LogLike = Union[UsageLogEntry, Dict[str, Any]]


def _as_unit(unit: UnitLike) -> InventoryUnit:
    if isinstance(unit, InventoryUnit):
        return unit
    return InventoryUnit.from_dict(unit)


def _as_log(log: LogLike) -> UsageLogEntry:
    if isinstance(log, UsageLogEntry):
        return log
    return UsageLogEntry.from_dict(log)


# =============================================================================
# LEDGER
# =============================================================================

def build_ledger(
    material_type: str,
    units: Iterable[UnitLike],
    logs: Iterable[LogLike],
) -> List[LedgerRow]:
    """
    Reconcile additions and removals of one material.

    Args:
        material_type: Catalog key to build the ledger for
        units: Current inventory (any materials; filtered here)
        logs: Usage logs (any materials; filtered here)

    Returns:
        Rows sorted newest effective date first
    """
    rows = _addition_rows(material_type, units) + _removal_rows(material_type, logs)
    # Stable sort keeps input order among equal dates
    rows.sort(key=lambda row: row.sort_date or _OLDEST, reverse=True)
    return rows


def build_ledgers(
    material_types: Iterable[str],
    units: Iterable[UnitLike],
    logs: Iterable[LogLike],
) -> Dict[str, List[LedgerRow]]:
    """Ledger for each material, sharing one parse of units and logs."""
    unit_list = [_as_unit(u) for u in units]
    log_list = [_as_log(entry) for entry in logs]
    return {m: build_ledger(m, unit_list, log_list) for m in material_types}


def _addition_rows(material_type: str, units: Iterable[UnitLike]) -> List[LedgerRow]:
    groups: "OrderedDict[str, LedgerRow]" = OrderedDict()
    arrival: Dict[str, Optional[str]] = {}

    for raw in units:
        unit = _as_unit(raw)
        if unit.material_type != material_type or unit.is_correction:
            continue

        key = f"{unit.created_at}-{unit.job or 'stock'}-{unit.supplier}"
        row = groups.get(key)
        if row is None:
            row = LedgerRow(
                id=key,
                job=unit.job or unit.supplier,
                customer=unit.supplier,
                date=None,
                is_addition=True,
                is_future=False,
                is_deletable=True,
                is_fulfillable=False,
                kind="addition",
            )
            groups[key] = row
            arrival[key] = None

        if unit.status == UnitStatus.ORDERED:
            row.is_future = True
        if unit.arrival_date and not arrival[key]:
            arrival[key] = unit.arrival_date
        row.counts[length_key(unit.length)] += 1
        row.details.append(unit.to_dict(include_id=True))

    for key, row in groups.items():
        created_at = row.details[0].get("createdAt")
        row.date = arrival[key] or created_at
        row.sort_date = parse_timestamp(row.date)

    return list(groups.values())


def _removal_rows(material_type: str, logs: Iterable[LogLike]) -> List[LedgerRow]:
    rows = []
    for raw in logs:
        log = _as_log(raw)
        if not log.involves_material(material_type):
            continue
        if log.is_reversal or log.is_archived:
            continue

        row = LedgerRow(
            id=log.id or "",
            job=log.job,
            customer=log.customer or "N/A",
            date=log.used_at or log.created_at,
            is_addition=False,
            is_future=log.is_scheduled,
            is_deletable=True,
            is_fulfillable=log.is_scheduled,
            kind=log.kind.value,
            details=[dict(d) for d in log.details],
        )
        for detail in log.details:
            if detail.get("materialType") == material_type:
                qty = abs(coerce_int(detail.get("qty"), 1)) or 1
                row.counts[length_key(detail.get("length"))] -= qty
        row.sort_date = parse_timestamp(row.date)
        rows.append(row)
    return rows


def ledger_to_csv(rows: Iterable[LedgerRow]) -> str:
    """Render ledger rows as CSV text (header row included)."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    length_columns = [str(length) for length in STANDARD_LENGTHS] + [CUSTOM_LENGTH_KEY]
    writer.writerow(
        ["Date", "Job", "Customer/Supplier", "Type", "Status"]
        + [f'{c}"' if c != CUSTOM_LENGTH_KEY else "Custom" for c in length_columns]
        + ["Total"]
    )
    for row in rows:
        writer.writerow(
            [
                row.date or "",
                row.job,
                row.customer,
                "Addition" if row.is_addition else "Removal",
                "Future" if row.is_future else "",
            ]
            + [row.counts.get(c, 0) for c in length_columns]
            + [row.total]
        )
    return buffer.getvalue()


# =============================================================================
# INVENTORY SUMMARIES
# =============================================================================

def inventory_summary(
    units: Iterable[UnitLike],
    material_types: Optional[Iterable[str]] = None,
) -> Dict[str, Dict[str, int]]:
    """
    On-hand sheet counts per material and length column.

    Materials outside material_types are ignored when it is given.
    """
    unit_list = [_as_unit(u) for u in units]
    if material_types is None:
        material_types = sorted({u.material_type for u in unit_list})
    summary = {m: empty_counts() for m in material_types}
    for unit in unit_list:
        if unit.is_on_hand and unit.material_type in summary:
            summary[unit.material_type][length_key(unit.length)] += 1
    return summary


def incoming_summary(
    units: Iterable[UnitLike],
    material_types: Optional[Iterable[str]] = None,
) -> Dict[str, Dict[str, Any]]:
    """Ordered (not yet received) sheet counts and latest expected arrival."""
    unit_list = [_as_unit(u) for u in units]
    if material_types is None:
        material_types = sorted({u.material_type for u in unit_list})
    summary: Dict[str, Dict[str, Any]] = {
        m: {"lengths": empty_counts(), "totalCount": 0, "latestArrivalDate": None}
        for m in material_types
    }
    for unit in unit_list:
        entry = summary.get(unit.material_type)
        if entry is None or unit.status != UnitStatus.ORDERED:
            continue
        entry["lengths"][length_key(unit.length)] += 1
        entry["totalCount"] += 1
        arrival = parse_timestamp(unit.arrival_date)
        latest = parse_timestamp(entry["latestArrivalDate"])
        if arrival and (latest is None or arrival > latest):
            entry["latestArrivalDate"] = unit.arrival_date
    return summary


def cost_by_supplier(
    units: Iterable[UnitLike],
    materials: Dict[str, MaterialCatalogEntry],
) -> List[Dict[str, Any]]:
    """Value of current stock per supplier: [{"name", "value"}, ...]."""
    totals: "OrderedDict[str, float]" = OrderedDict()
    for raw in units:
        unit = _as_unit(raw)
        if not unit.supplier or unit.cost_per_pound <= 0:
            continue
        cost = sheet_cost(unit, materials.get(unit.material_type))
        totals[unit.supplier] = totals.get(unit.supplier, 0.0) + cost
    return [{"name": name, "value": round(value, 2)} for name, value in totals.items()]


def analytics_by_category(
    units: Iterable[UnitLike],
    materials: Dict[str, MaterialCatalogEntry],
) -> Dict[str, List[Dict[str, Any]]]:
    """Sheet count and stock value per material, grouped by catalog category."""
    per_material: "OrderedDict[str, Dict[str, float]]" = OrderedDict()
    for raw in units:
        unit = _as_unit(raw)
        entry = per_material.setdefault(unit.material_type, {"quantity": 0, "cost": 0.0})
        entry["quantity"] += 1
        entry["cost"] += sheet_cost(unit, materials.get(unit.material_type))

    result: Dict[str, List[Dict[str, Any]]] = {}
    for material_type, entry in per_material.items():
        material = materials.get(material_type)
        # Orphaned materials have no category to report under
        if material is None or not material.category:
            continue
        result.setdefault(material.category, []).append({
            "name": material_type,
            "quantity": int(entry["quantity"]),
            "cost": round(entry["cost"], 2),
        })
    return result


# =============================================================================
# STORE-BACKED READ SERVICE
# =============================================================================

class LedgerService:
    """
    Read-side projections over the live store.

    Every method re-queries the store; there is no cache to go stale.
    """

    def __init__(self, store: DocumentStore):
        self._store = store

    def units(self) -> List[InventoryUnit]:
        return [
            InventoryUnit.from_dict(doc.data, doc.id)
            for doc in self._store.query(coll.INVENTORY, order_by="createdAt", descending=True)
        ]

    def logs(self) -> List[UsageLogEntry]:
        return [
            UsageLogEntry.from_dict(doc.data, doc.id)
            for doc in self._store.query(coll.USAGE_LOGS, order_by="createdAt", descending=True)
        ]

    def materials(self) -> Dict[str, MaterialCatalogEntry]:
        return {
            doc.id: MaterialCatalogEntry.from_dict(doc.id, doc.data)
            for doc in self._store.list_documents(coll.MATERIALS)
        }

    def ledger_for(self, material_type: str) -> List[LedgerRow]:
        """Ledger rows of one material, newest first."""
        rows = build_ledger(material_type, self.units(), self.logs())
        logger.debug(f"Ledger for {material_type}: {len(rows)} rows")
        return rows

    def ledgers_for_category(self, category: str) -> Dict[str, List[LedgerRow]]:
        """Ledger of every catalog material in one category."""
        material_types = [
            key for key, entry in sorted(self.materials().items())
            if entry.category == category
        ]
        return build_ledgers(material_types, self.units(), self.logs())

    def inventory_summary(self) -> Dict[str, Dict[str, int]]:
        return inventory_summary(self.units(), sorted(self.materials()))

    def incoming_summary(self) -> Dict[str, Dict[str, Any]]:
        return incoming_summary(self.units(), sorted(self.materials()))

    def ledger_csv(self, material_type: str) -> str:
        return ledger_to_csv(self.ledger_for(material_type))

    def cost_by_supplier(self) -> List[Dict[str, Any]]:
        return cost_by_supplier(self.units(), self.materials())

    def analytics_by_category(self) -> Dict[str, List[Dict[str, Any]]]:
        return analytics_by_category(self.units(), self.materials())
