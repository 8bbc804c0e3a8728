"""
Inventory data models.

An InventoryUnit is ONE physical sheet stored as one document in the
"inventory" collection. Units are created in bulk when an order group is
placed (one document per sheet, not per line item) and destroyed only by
allocation or by explicit group deletion.

Store field names are camelCase (materialType, createdAt, ...); the
dataclasses expose snake_case attributes and convert in to_dict/from_dict.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from core.exceptions import ValidationError


# Standard sheet lengths (inches). Anything else counts as "custom".
STANDARD_LENGTHS = (96, 120, 144)

# Sheet width assumed when a unit does not record one (inches)
DEFAULT_WIDTH = 48

# Synthetic supplier values written by inventory corrections. Units carrying
# them are adjustments, not real arrivals.
SUPPLIER_MANUAL_EDIT = "Manual Edit"
SUPPLIER_RESCHEDULED_RETURN = "Rescheduled Return"
CORRECTION_SUPPLIERS = frozenset({SUPPLIER_MANUAL_EDIT, SUPPLIER_RESCHEDULED_RETURN})

# Job prefixes of synthetic entries (kept for documents written before
# logs carried an explicit kind)
CORRECTION_JOB_PREFIX = "MODIFICATION"
DELETION_JOB_PREFIX = "DELETION"

# Nominal sheet-steel thickness (inches) by gauge number
GAUGE_THICKNESS_IN = {
    10: 0.1345,
    11: 0.1196,
    12: 0.1046,
    14: 0.0747,
    16: 0.0598,
    18: 0.0478,
    20: 0.0359,
    22: 0.0299,
    24: 0.0239,
    26: 0.0179,
    28: 0.0149,
}

# Fields owned by the store rather than the sheet itself
STORE_INTERNAL_FIELDS = frozenset({"id", "_id", "__v"})


def coerce_int(value: Any, default: int = 0) -> int:
    """Whole number from a stored value, or default when missing or malformed."""
    if value is None or value == "":
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def coerce_float(value: Any, default: float = 0.0) -> float:
    """Float from a stored value, or default when missing or malformed."""
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


_GAUGE_RE = re.compile(r"^(\d{2})GA")
_DECIMAL_THICKNESS_RE = re.compile(r"(\d\.\d+)")


class UnitStatus(Enum):
    """
    Lifecycle of a sheet.

    Lifecycle:
        ORDERED -> ON_HAND -> (deleted by allocation)
    """

    ORDERED = "Ordered"
    """Placed with a supplier, not yet in the shop. Has arrivalDate."""

    ON_HAND = "On Hand"
    """Physically in stock. Has dateReceived. Eligible for allocation."""

    @classmethod
    def parse(cls, value: Any) -> "UnitStatus":
        """Accept 'On Hand', 'OnHand', 'on_hand', 'Ordered' (any case)."""
        if isinstance(value, cls):
            return value
        normalized = str(value or "").replace(" ", "").replace("_", "").lower()
        for status in cls:
            if status.value.replace(" ", "").lower() == normalized:
                return status
        raise ValidationError(f"Unknown unit status: {value!r}", "status")

    @classmethod
    def from_stored(cls, value: Any) -> Optional["UnitStatus"]:
        """Like parse, but None for an unrecognised stored value."""
        try:
            return cls.parse(value)
        except ValidationError:
            return None


def gauge_from_material(material_type: str) -> str:
    """
    Derive the display gauge from a material key.

    '16GA-CRS' -> '16', 'ALUM 0.040' -> '0.040"', otherwise 'N/A'.
    """
    material_type = material_type or ""
    match = _GAUGE_RE.match(material_type)
    if match:
        return match.group(1)
    thickness_match = _DECIMAL_THICKNESS_RE.search(material_type)
    if thickness_match:
        return thickness_match.group(1) + '"'
    return "N/A"


def thickness_from_material(material_type: str) -> float:
    """
    Best-guess sheet thickness in inches from a material key.

    Gauge keys use the nominal gauge table, decimal keys are taken as
    inches. Returns 0.0 when nothing can be inferred.
    """
    material_type = material_type or ""
    match = _GAUGE_RE.match(material_type)
    if match:
        return GAUGE_THICKNESS_IN.get(int(match.group(1)), 0.0)
    thickness_match = _DECIMAL_THICKNESS_RE.search(material_type)
    if thickness_match:
        return float(thickness_match.group(1))
    return 0.0


@dataclass(frozen=True)
class MaterialCatalogEntry:
    """
    One material of the catalog ("materials" collection, keyed by material).

    Used only to compute weight and cost; never mutated by allocation.
    """

    key: str
    """Catalog key, e.g. '16GA-CRS'. Also the document id."""

    category: str
    """Display grouping, e.g. 'Galvanized'."""

    thickness: float
    """Thickness in inches."""

    density: float
    """Density in lb/in^3."""

    def to_dict(self) -> Dict[str, Any]:
        """Document fields (the key is the document id)."""
        return {
            "category": self.category,
            "thickness": self.thickness,
            "density": self.density,
        }

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> "MaterialCatalogEntry":
        return cls(
            key=key,
            category=data.get("category", ""),
            thickness=coerce_float(data.get("thickness")),
            density=coerce_float(data.get("density")),
        )


@dataclass
class InventoryUnit:
    """
    One physical sheet.

    Invariant: an ORDERED unit has no date_received; a unit moving to
    ON_HAND gains one.
    """

    material_type: str
    length: int
    status: UnitStatus
    created_at: str
    supplier: str = ""
    gauge: str = ""
    cost_per_pound: float = 0.0
    width: int = DEFAULT_WIDTH
    job: Optional[str] = None
    arrival_date: Optional[str] = None
    date_received: Optional[str] = None
    id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    """Fields this model does not know about, kept for round-tripping."""

    _FIELD_MAP = {
        "materialType": "material_type",
        "length": "length",
        "status": "status",
        "createdAt": "created_at",
        "supplier": "supplier",
        "gauge": "gauge",
        "costPerPound": "cost_per_pound",
        "width": "width",
        "job": "job",
        "arrivalDate": "arrival_date",
        "dateReceived": "date_received",
    }

    @property
    def is_on_hand(self) -> bool:
        return self.status == UnitStatus.ON_HAND and "status" not in self.extra

    @property
    def is_correction(self) -> bool:
        """Whether this unit was created by a correction rather than a real arrival."""
        return (
            (self.job or "").startswith(CORRECTION_JOB_PREFIX)
            or self.supplier in CORRECTION_SUPPLIERS
        )

    def _stored_status(self) -> str:
        # An unrecognised status read from the store is written back as-is
        if self.status == UnitStatus.ON_HAND and "status" in self.extra:
            return self.extra["status"]
        return self.status.value

    def to_dict(self, include_id: bool = False) -> Dict[str, Any]:
        """Convert to the store document shape."""
        result = dict(self.extra)
        result.update({
            "materialType": self.material_type,
            "gauge": self.gauge,
            "supplier": self.supplier,
            "costPerPound": self.cost_per_pound,
            "width": self.width,
            "length": self.length,
            "status": self._stored_status(),
            "job": self.job,
            "arrivalDate": self.arrival_date,
            "dateReceived": self.date_received,
            "createdAt": self.created_at,
        })
        if include_id and self.id:
            result["id"] = self.id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any], doc_id: Optional[str] = None) -> "InventoryUnit":
        """
        Create from a store document.

        Args:
            data: Document fields (may include 'id')
            doc_id: Document id, overrides data['id'] when given
        """
        extra = {
            k: v for k, v in data.items()
            if k not in cls._FIELD_MAP and k not in STORE_INTERNAL_FIELDS
        }
        raw_status = data.get("status") or UnitStatus.ON_HAND.value
        status = UnitStatus.from_stored(raw_status)
        if status is None:
            # Unrecognised: read as On Hand but never counted or allocated
            status = UnitStatus.ON_HAND
            extra["status"] = raw_status
        return cls(
            id=doc_id or data.get("id"),
            material_type=data.get("materialType", ""),
            length=coerce_int(data.get("length")),
            status=status,
            created_at=data.get("createdAt") or "",
            supplier=data.get("supplier") or "",
            gauge=data.get("gauge") or gauge_from_material(data.get("materialType", "")),
            cost_per_pound=coerce_float(data.get("costPerPound")),
            width=coerce_int(data.get("width"), DEFAULT_WIDTH) or DEFAULT_WIDTH,
            job=data.get("job"),
            arrival_date=data.get("arrivalDate"),
            date_received=data.get("dateReceived"),
            extra=extra,
        )


def sheet_weight(unit: InventoryUnit, material: Optional[MaterialCatalogEntry]) -> float:
    """Weight of one sheet in pounds (0 when the material is unknown)."""
    if material is None:
        return 0.0
    width = unit.width or DEFAULT_WIDTH
    return width * unit.length * material.thickness * material.density


def sheet_cost(unit: InventoryUnit, material: Optional[MaterialCatalogEntry]) -> float:
    """Cost of one sheet: weight x cost per pound."""
    if material is None or unit.cost_per_pound <= 0:
        return 0.0
    return sheet_weight(unit, material) * unit.cost_per_pound
